"""
Deterministic per-year derived metrics.

Every function takes the ordered fiscal period ends (driven by the EPS series)
and returns one MetricPoint per end. A missing or invalid input produces
value=None for that year only; other years are unaffected.

Key formulas:
  FCF      = operating_cash_flow - capex           (exact period-end match only)
  BVPS     = equity / shares_outstanding
             equity: exact match, else nearest within BALANCE_SHEET_TOLERANCE_DAYS
             shares: nearest within SHARES_TOLERANCE_DAYS
  BVPS adj = BVPS / product(ratio of splits effective strictly after period end)
  ROIC     = NOPAT / invested_capital
             NOPAT = operating_income * (1 - clamp(tax / pretax, 0, 1))
             invested_capital = equity + long_term_debt - cash
  P/E      = close on or before period end / EPS   (EPS <= 0 -> None)
  avg P/E  = mean of the available per-year P/E values
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date

from stickerlens.series import AnnualSeries, MetricPoint, SeriesPoint, SplitEvent, is_finite_number
from stickerlens.services.price_history import PriceHistoryIndex
from stickerlens.services.temporal_aligner import (
    BALANCE_SHEET_TOLERANCE_DAYS,
    SHARES_TOLERANCE_DAYS,
    exact_or_nearest,
    nearest_within_tolerance,
    to_lookup,
)

logger = logging.getLogger(__name__)


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


# ---------------------------------------------------------------------------
# Free cash flow
# ---------------------------------------------------------------------------

def free_cash_flow(
    ends: Sequence[date],
    operating_cash_flow: AnnualSeries,
    capex: AnnualSeries,
) -> list[MetricPoint]:
    ocf_map = to_lookup(operating_cash_flow)
    capex_map = to_lookup(capex)

    out = []
    for end in ends:
        o = ocf_map.get(end)
        c = capex_map.get(end)
        out.append(MetricPoint(end, o - c if o is not None and c is not None else None))
    return out


# ---------------------------------------------------------------------------
# Book value per share
# ---------------------------------------------------------------------------

def book_value_per_share(
    ends: Sequence[date],
    equity: AnnualSeries,
    equity_candidates: Sequence[SeriesPoint],
    share_candidates: Sequence[SeriesPoint],
) -> list[MetricPoint]:
    equity_map = to_lookup(equity)

    out = []
    for end in ends:
        eq = exact_or_nearest(equity_map, equity_candidates, end, BALANCE_SHEET_TOLERANCE_DAYS)
        sh = nearest_within_tolerance(share_candidates, end, SHARES_TOLERANCE_DAYS)
        if eq is None or sh is None or sh <= 0:
            out.append(MetricPoint(end, None))
            continue
        out.append(MetricPoint(end, eq / sh))
    return out


def cumulative_split_factor(splits: Iterable[SplitEvent], period_end: date) -> float:
    """Product of ratios for every split that took effect after `period_end`."""
    factor = 1.0
    for s in splits:
        if period_end < s.effective_date:
            factor *= s.ratio
    return factor


def split_adjusted(points: Iterable[MetricPoint], splits: Sequence[SplitEvent]) -> list[MetricPoint]:
    """Restate per-share values filed before a split onto the current share basis."""
    out = []
    for p in points:
        if p.value is None:
            out.append(p)
            continue
        out.append(MetricPoint(p.period_end, p.value / cumulative_split_factor(splits, p.period_end)))
    return out


# ---------------------------------------------------------------------------
# ROIC
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RoicInputs:
    operating_income: AnnualSeries
    pretax_income: AnnualSeries
    income_tax: AnnualSeries
    equity: AnnualSeries
    cash: AnnualSeries
    equity_candidates: Sequence[SeriesPoint] = ()
    cash_candidates: Sequence[SeriesPoint] = ()
    debt_candidates: Sequence[SeriesPoint] = ()


def roic(ends: Sequence[date], inputs: RoicInputs) -> list[MetricPoint]:
    op_map = to_lookup(inputs.operating_income)
    pretax_map = to_lookup(inputs.pretax_income)
    tax_map = to_lookup(inputs.income_tax)
    equity_map = to_lookup(inputs.equity)
    cash_map = to_lookup(inputs.cash)

    out = []
    for end in ends:
        op = op_map.get(end)
        pt = pretax_map.get(end)
        tx = tax_map.get(end)
        eq = exact_or_nearest(equity_map, inputs.equity_candidates, end)
        ca = exact_or_nearest(cash_map, inputs.cash_candidates, end)
        debt = nearest_within_tolerance(inputs.debt_candidates, end, BALANCE_SHEET_TOLERANCE_DAYS)

        if any(v is None for v in (op, pt, tx, eq, ca, debt)) or pt == 0:
            out.append(MetricPoint(end, None))
            continue

        tax_rate = _clamp(tx / pt, 0.0, 1.0)
        nopat = op * (1 - tax_rate)
        invested_capital = eq + debt - ca
        if not is_finite_number(invested_capital) or invested_capital <= 0:
            out.append(MetricPoint(end, None))
            continue
        out.append(MetricPoint(end, nopat / invested_capital))
    return out


# ---------------------------------------------------------------------------
# P/E
# ---------------------------------------------------------------------------

def pe_by_year(
    ends: Sequence[date],
    eps: AnnualSeries,
    prices: PriceHistoryIndex,
) -> list[MetricPoint]:
    eps_map = to_lookup(eps)

    out = []
    for end in ends:
        e = eps_map.get(end)
        if e is None or e <= 0:
            out.append(MetricPoint(end, None))
            continue
        px = prices.close_on_or_before(end)
        if px is None:
            out.append(MetricPoint(end, None))
            continue
        out.append(MetricPoint(end, px / e))
    return out


def average_pe(pe_points: Iterable[MetricPoint]) -> float | None:
    values = [p.value for p in pe_points if is_finite_number(p.value)]
    if not values:
        return None
    return sum(values) / len(values)
