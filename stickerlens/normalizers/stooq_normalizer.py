"""
Stooq CSV normalizers.

Daily history (https://stooq.com/q/d/l/?s={sym}&i=d):
  header "Date,Open,High,Low,Close,Volume", usually oldest-first.
  Rows are kept when the date parses and the close is finite; output is
  sorted ascending by date.

Latest quote (https://stooq.com/q/l/?s={sym}&i=d):
  either a header row containing "close" followed by one data row, or a
  headerless row "Symbol,Date,Time,Open,High,Low,Close,Volume"
  (close is column 7). "N/D" values mean no data.
"""

import csv
import io
import logging
import math

from stickerlens.series import DailyClose, parse_iso_date

logger = logging.getLogger(__name__)

_HEADERLESS_CLOSE_INDEX: int = 6


def _num_or_null(v: str | None) -> float | None:
    if v is None:
        return None
    try:
        f = float(v.strip())
    except ValueError:
        return None
    return f if math.isfinite(f) else None


def _rows(csv_text: str) -> list[list[str]]:
    reader = csv.reader(io.StringIO(csv_text.replace("\r", "")))
    return [[c.strip() for c in row] for row in reader if any(c.strip() for c in row)]


def parse_daily_history(symbol: str, csv_text: str) -> list[DailyClose]:
    rows = _rows(csv_text)
    if len(rows) < 2:
        return []

    header = [h.lower() for h in rows[0]]
    if "date" not in header or "close" not in header:
        logger.warning("[Stooq][Normalize] %s: history header missing date/close: %s", symbol, rows[0])
        return []
    date_idx = header.index("date")
    close_idx = header.index("close")

    out: list[DailyClose] = []
    for row in rows[1:]:
        if len(row) <= max(date_idx, close_idx):
            continue
        d = parse_iso_date(row[date_idx])
        close = _num_or_null(row[close_idx])
        if d is None or close is None:
            continue
        out.append(DailyClose(date=d, close=close))

    out.sort(key=lambda c: c.date)
    logger.debug("[Stooq][Normalize] %s: %d daily closes", symbol, len(out))
    return out


def parse_latest_close(csv_text: str) -> float | None:
    rows = _rows(csv_text)
    if not rows:
        return None

    first = rows[0]
    if any("close" in c.lower() for c in first):
        if len(rows) < 2:
            return None
        header = [h.lower() for h in first]
        if "close" not in header:
            return None
        row = rows[1]
        idx = header.index("close")
        return _num_or_null(row[idx]) if idx < len(row) else None

    if len(first) <= _HEADERLESS_CLOSE_INDEX:
        return None
    return _num_or_null(first[_HEADERLESS_CLOSE_INDEX])
