import os

# Must be set before stickerlens.database is imported anywhere.
os.environ.setdefault("STICKERLENS_DATABASE_URL", "sqlite://")
