import csv
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session

from stickerlens.database import Base, SessionLocal, engine
from stickerlens.repositories import splits_repo

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

NULL_VALUES = {"", "null", "none", "na", "nan", "n/a"}
DEFAULT_CSV = Path(__file__).resolve().parents[2] / "data_exports" / "splits.csv"


def parse_date(value: str) -> date:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1]
    if "T" in text:
        return datetime.fromisoformat(text).date()
    return date.fromisoformat(text)


def parse_ratio(value: str) -> float:
    """'4', '4.0' or '4:1' / '4-for-1' style ratios."""
    text = value.strip().lower().replace("-for-", ":").replace("/", ":")
    if ":" in text:
        new, old = (float(p) for p in text.split(":", 1))
        if old == 0:
            raise ValueError(f"cannot parse ratio: {value!r}")
        return new / old
    return float(text)


def read_split_rows(csv_path: Path) -> tuple[list[dict[str, Any]], int]:
    """CSV columns: ticker,effective_date,ratio[,source]. Returns (records, skipped)."""
    records: list[dict[str, Any]] = []
    skipped = 0

    with csv_path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        for line_no, row in enumerate(reader, start=2):
            ticker = (row.get("ticker") or "").strip().upper()
            raw_date = (row.get("effective_date") or "").strip()
            raw_ratio = (row.get("ratio") or "").strip()
            if not ticker or raw_date.lower() in NULL_VALUES or raw_ratio.lower() in NULL_VALUES:
                skipped += 1
                logger.warning("%s:%s skipped row with empty ticker/date/ratio", csv_path.name, line_no)
                continue
            try:
                record = {
                    "ticker": ticker,
                    "effective_date": parse_date(raw_date),
                    "ratio": parse_ratio(raw_ratio),
                }
            except ValueError as exc:
                skipped += 1
                logger.warning("%s:%s skipped row: %s", csv_path.name, line_no, exc)
                continue
            source = (row.get("source") or "").strip()
            record["source"] = source or "csv_import"
            records.append(record)

    return records, skipped


def import_splits(session: Session, csv_path: Path) -> tuple[int, int]:
    records, skipped = read_split_rows(csv_path)
    written = splits_repo.upsert_splits(session, records)
    return written, skipped + (len(records) - written)


def run_import(csv_path: Path = DEFAULT_CSV) -> None:
    Base.metadata.create_all(bind=engine)
    if not csv_path.exists():
        logger.warning("Missing splits file: %s", csv_path)
        return

    with SessionLocal() as session:
        imported_count, skipped_count = import_splits(session, csv_path)
        logger.info("%s -> imported=%s skipped=%s", csv_path.name, imported_count, skipped_count)


if __name__ == "__main__":
    run_import(Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_CSV)
