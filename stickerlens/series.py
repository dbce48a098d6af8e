"""
Shared value types for annual fundamentals.

Every type here is immutable. Series are plain tuples of points ordered by
period end; helpers below convert them to the JSON shape the API returns
({"end": "YYYY-MM-DD", "val": ...}).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable


def parse_iso_date(d: Any) -> date | None:
    if isinstance(d, date):
        return d
    if isinstance(d, str) and len(d) >= 10:
        try:
            return date.fromisoformat(d[:10])
        except ValueError:
            return None
    return None


def is_finite_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


@dataclass(frozen=True)
class RawFact:
    """One filed XBRL fact as it appears under facts[taxonomy][tag]["units"][unit]."""

    period_end: date
    value: float
    form: str
    fiscal_period: str
    frame: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> RawFact | None:
        """Parse a companyfacts entry. Returns None when end/val are unusable."""
        if not isinstance(raw, dict):
            return None
        end = parse_iso_date(raw.get("end"))
        val = raw.get("val")
        if end is None or not is_finite_number(val):
            return None
        frame = raw.get("frame")
        return cls(
            period_end=end,
            value=float(val),
            form=str(raw.get("form") or ""),
            fiscal_period=str(raw.get("fp") or ""),
            frame=frame if isinstance(frame, str) else None,
        )


@dataclass(frozen=True)
class SeriesPoint:
    period_end: date
    value: float


@dataclass(frozen=True)
class MetricPoint:
    period_end: date
    value: float | None


@dataclass(frozen=True)
class DailyClose:
    date: date
    close: float


@dataclass(frozen=True)
class SplitEvent:
    effective_date: date
    ratio: float


AnnualSeries = tuple[SeriesPoint, ...]


def series_ends(series: Iterable[SeriesPoint | MetricPoint]) -> list[date]:
    return [p.period_end for p in series]


def points_to_json(series: Iterable[SeriesPoint | MetricPoint]) -> list[dict[str, Any]]:
    return [{"end": p.period_end.isoformat(), "val": p.value} for p in series]
