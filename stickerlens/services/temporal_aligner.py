"""
Temporal alignment of annual series.

Point-in-time figures (shares outstanding, equity, cash, debt) are filed on
dates that do not always coincide with the fiscal year end that drives the
EPS series, so they are matched by nearest date inside a tolerance window.

Tolerances are true calendar days:
  SHARES_TOLERANCE_DAYS        = 180  (cover-page share counts lag the FY end)
  BALANCE_SHEET_TOLERANCE_DAYS = 200  (equity / cash / long-term debt snapshots)
"""

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import date

from stickerlens.series import AnnualSeries, MetricPoint, SeriesPoint

logger = logging.getLogger(__name__)

SHARES_TOLERANCE_DAYS: int = 180
BALANCE_SHEET_TOLERANCE_DAYS: int = 200


def nearest_within_tolerance(
    candidates: Iterable[SeriesPoint],
    target: date,
    tolerance_days: int,
) -> float | None:
    """
    Value of the candidate closest to `target`, or None if there are no
    candidates or the closest one is more than `tolerance_days` away.
    Equidistant candidates resolve to the earlier date.
    """
    best: SeriesPoint | None = None
    best_key: tuple[int, date] | None = None
    for c in candidates:
        key = (abs((c.period_end - target).days), c.period_end)
        if best_key is None or key < best_key:
            best, best_key = c, key

    if best is None or best_key is None:
        return None
    if best_key[0] > tolerance_days:
        logger.debug("[Align] nearest to %s is %d days away (> %d), rejected",
                     target, best_key[0], tolerance_days)
        return None
    return best.value


def exact_or_nearest(
    exact: dict[date, float],
    candidates: Sequence[SeriesPoint],
    target: date,
    tolerance_days: int = BALANCE_SHEET_TOLERANCE_DAYS,
) -> float | None:
    """Exact period-end match first, nearest-date fallback second."""
    if target in exact:
        return exact[target]
    return nearest_within_tolerance(candidates, target, tolerance_days)


def reconcile_fiscal_year_end_month(series: AnnualSeries) -> AnnualSeries:
    """
    Keep only points whose end month equals the most common end month.

    Companies that moved their fiscal year end leave a stub period in the
    history; dropping it keeps CAGR spans honest. On a tie the month that
    appears first in the series wins.
    """
    if not series:
        return series
    counts = Counter(p.period_end.month for p in series)
    modal_month = max(counts, key=lambda m: counts[m])
    kept = tuple(p for p in series if p.period_end.month == modal_month)
    if len(kept) != len(series):
        logger.info("[Align] fiscal year end month=%d, dropped %d off-cycle point(s)",
                    modal_month, len(series) - len(kept))
    return kept


def last_n(series: AnnualSeries, n: int) -> AnnualSeries:
    if len(series) <= n:
        return series
    return series[len(series) - n:]


def to_lookup(series: Iterable[SeriesPoint]) -> dict[date, float]:
    return {p.period_end: p.value for p in series}


def align_by_end(ends: Sequence[date], series: Iterable[SeriesPoint]) -> list[MetricPoint]:
    lookup = to_lookup(series)
    return [MetricPoint(end, lookup.get(end)) for end in ends]
