"""
Daily close index.

Holds one close per trading day, ascending by date, and answers
"last close on or before D" in O(log n).
"""

import bisect
import logging
from collections.abc import Iterable
from datetime import date

from stickerlens.series import DailyClose, is_finite_number

logger = logging.getLogger(__name__)


class PriceHistoryIndex:
    def __init__(self, closes: Iterable[DailyClose]):
        # Duplicate dates collapse to the last close seen for that date.
        by_date: dict[date, float] = {}
        for c in closes:
            if is_finite_number(c.close):
                by_date[c.date] = float(c.close)
        self._dates: list[date] = sorted(by_date)
        self._closes: list[float] = [by_date[d] for d in self._dates]

    def __len__(self) -> int:
        return len(self._dates)

    def __bool__(self) -> bool:
        return bool(self._dates)

    @property
    def first_date(self) -> date | None:
        return self._dates[0] if self._dates else None

    @property
    def last_date(self) -> date | None:
        return self._dates[-1] if self._dates else None

    def close_on_or_before(self, when: date) -> float | None:
        """Close of the latest trading day <= `when`; None if `when` precedes all history."""
        i = bisect.bisect_right(self._dates, when)
        if i == 0:
            return None
        return self._closes[i - 1]

    def latest_close(self) -> float | None:
        return self._closes[-1] if self._closes else None

    def as_closes(self) -> list[DailyClose]:
        return [DailyClose(d, c) for d, c in zip(self._dates, self._closes)]


def close_on_or_before(history: Iterable[DailyClose], when: date) -> float | None:
    """Convenience wrapper for one-off lookups."""
    return PriceHistoryIndex(history).close_on_or_before(when)
