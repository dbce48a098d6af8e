from sqlalchemy import Column, Date, Float, Integer, String, UniqueConstraint

from stickerlens.database import Base


class StockSplit(Base):
    """Forward split registry used to restate per-share history on today's share basis."""

    __tablename__ = "stock_splits"
    __table_args__ = (UniqueConstraint("ticker", "effective_date", name="uq_stock_splits_ticker_date"),)

    id = Column(Integer, primary_key=True, index=True)
    ticker = Column(String, index=True, nullable=False)
    effective_date = Column(Date, nullable=False)
    ratio = Column(Float, nullable=False)
    source = Column(String, default="manual")
