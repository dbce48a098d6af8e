"""
StockSplit repository.

Idempotency key: (ticker, effective_date)

Upsert behavior:
  - For each record: look up (ticker, effective_date)
  - If exists: overwrite ratio/source with the incoming values
  - If not: insert
  - Records with a missing ticker, unparseable date or a non-positive ratio
    are skipped
"""

import logging
import math
from datetime import date
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stickerlens.models import StockSplit
from stickerlens.series import SplitEvent, parse_iso_date

logger = logging.getLogger(__name__)

DEFAULT_SPLITS: dict[str, list[tuple[str, float]]] = {
    "AAPL": [("2020-08-31", 4.0)],
}


def _row_to_dict(row: StockSplit) -> dict[str, Any]:
    return {
        "ticker": row.ticker,
        "effective_date": row.effective_date.isoformat(),
        "ratio": row.ratio,
        "source": row.source,
    }


def _valid_ratio(v: Any) -> bool:
    return isinstance(v, (int, float)) and math.isfinite(v) and v > 0


def upsert_splits(db: Session, records: list[dict[str, Any]]) -> int:
    """
    Upsert StockSplit records. Returns count of records written.
    Each record: {"ticker": str, "effective_date": "YYYY-MM-DD" | date, "ratio": float, "source"?: str}
    """
    if not records:
        return 0

    upserted = 0
    for record in records:
        ticker = str(record.get("ticker") or "").strip().upper()
        effective: date | None = parse_iso_date(record.get("effective_date"))
        ratio = record.get("ratio")
        if not ticker or effective is None or not _valid_ratio(ratio):
            logger.warning("[DB][Splits] skipping invalid record %s", record)
            continue

        existing = db.scalars(
            select(StockSplit).where(
                and_(StockSplit.ticker == ticker, StockSplit.effective_date == effective)
            )
        ).first()

        if existing:
            existing.ratio = float(ratio)
            existing.source = record.get("source") or existing.source
        else:
            db.add(StockSplit(
                ticker=ticker,
                effective_date=effective,
                ratio=float(ratio),
                source=record.get("source") or "manual",
            ))
        try:
            db.commit()
            upserted += 1
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("[DB][Splits] upsert failed for %s %s: %s", ticker, effective, exc)

    logger.info("[DB][Splits] upserted %d/%d records", upserted, len(records))
    return upserted


def get_split_events(db: Session, ticker: str) -> list[SplitEvent]:
    """Split events for a ticker, oldest first."""
    rows = db.scalars(
        select(StockSplit)
        .where(StockSplit.ticker == ticker.strip().upper())
        .order_by(StockSplit.effective_date.asc())
    ).all()
    return [SplitEvent(effective_date=r.effective_date, ratio=r.ratio) for r in rows]


def list_splits(db: Session, ticker: str) -> list[dict[str, Any]]:
    rows = db.scalars(
        select(StockSplit)
        .where(StockSplit.ticker == ticker.strip().upper())
        .order_by(StockSplit.effective_date.asc())
    ).all()
    return [_row_to_dict(r) for r in rows]


def seed_default_splits(db: Session) -> int:
    """Insert the built-in split registry when the table is empty."""
    if db.scalars(select(StockSplit).limit(1)).first() is not None:
        return 0
    records = [
        {"ticker": ticker, "effective_date": d, "ratio": ratio, "source": "builtin"}
        for ticker, splits in DEFAULT_SPLITS.items()
        for d, ratio in splits
    ]
    return upsert_splits(db, records)
