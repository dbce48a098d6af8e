"""
Acceptance tests: temporal alignment

Rules:
  - Nearest-date matching uses true calendar days and a named tolerance.
  - Equidistant candidates resolve to the earlier date.
  - Off-cycle fiscal year ends are dropped in favour of the modal month.
"""

from datetime import date

import pytest

from stickerlens.series import SeriesPoint
from stickerlens.services.metric_resolver import get_spec, resolve_annual_series
from stickerlens.services.temporal_aligner import (
    BALANCE_SHEET_TOLERANCE_DAYS,
    SHARES_TOLERANCE_DAYS,
    align_by_end,
    exact_or_nearest,
    last_n,
    nearest_within_tolerance,
    reconcile_fiscal_year_end_month,
)


def _pt(d: str, v: float) -> SeriesPoint:
    return SeriesPoint(date.fromisoformat(d), v)


# ---------------------------------------------------------------------------
# Nearest within tolerance
# ---------------------------------------------------------------------------

def test_tolerance_constants():
    assert SHARES_TOLERANCE_DAYS == 180
    assert BALANCE_SHEET_TOLERANCE_DAYS == 200


def test_nearest_picks_closest_candidate():
    cands = [_pt("2020-01-15", 1), _pt("2020-10-01", 2), _pt("2021-03-01", 3)]
    assert nearest_within_tolerance(cands, date(2020, 9, 26), 180) == 2


def test_nearest_rejects_beyond_tolerance():
    cands = [_pt("2020-01-01", 1)]
    assert nearest_within_tolerance(cands, date(2020, 6, 29), 180) == 1   # 180 days
    assert nearest_within_tolerance(cands, date(2020, 6, 30), 180) is None  # 181 days


def test_nearest_tie_prefers_earlier_date():
    """Acceptance: candidates 10 days either side → the earlier one wins."""
    target = date(2021, 1, 11)
    cands = [_pt("2021-01-21", 200), _pt("2021-01-01", 100)]
    assert nearest_within_tolerance(cands, target, 30) == 100


def test_nearest_with_no_candidates():
    assert nearest_within_tolerance([], date(2021, 1, 1), 365) is None


def test_nearest_spans_year_boundary_in_true_days():
    # 2 days apart across the year boundary
    cands = [_pt("2020-01-02", 7)]
    assert nearest_within_tolerance(cands, date(2019, 12, 31), 5) == 7


def test_exact_match_beats_nearest():
    exact = {date(2021, 9, 25): 63.0}
    cands = [_pt("2021-09-24", 1.0)]
    assert exact_or_nearest(exact, cands, date(2021, 9, 25)) == 63.0
    assert exact_or_nearest({}, cands, date(2021, 9, 25)) == 1.0


# ---------------------------------------------------------------------------
# Fiscal year end month reconciliation
# ---------------------------------------------------------------------------

def test_off_cycle_month_dropped():
    series = (_pt("2018-09-29", 1), _pt("2019-09-28", 2), _pt("2019-12-31", 9), _pt("2020-09-26", 3))
    kept = reconcile_fiscal_year_end_month(series)
    assert [p.value for p in kept] == [1, 2, 3]


def test_modal_month_tie_keeps_month_seen_first():
    series = (_pt("2019-06-30", 1), _pt("2020-12-31", 2), _pt("2021-06-30", 3), _pt("2022-12-31", 4))
    kept = reconcile_fiscal_year_end_month(series)
    assert [p.period_end.month for p in kept] == [6, 6]


def test_reconcile_empty_series():
    assert reconcile_fiscal_year_end_month(()) == ()


# ---------------------------------------------------------------------------
# Trimming / alignment
# ---------------------------------------------------------------------------

def test_last_n_and_align_by_end():
    series = tuple(_pt(f"{y}-12-31", y) for y in range(2010, 2024))
    tail = last_n(series, 10)
    assert len(tail) == 10
    assert tail[0].period_end.year == 2014
    assert last_n(series[:3], 10) == series[:3]

    aligned = align_by_end([date(2014, 12, 31), date(2014, 6, 30)], series)
    assert aligned[0].value == 2014
    assert aligned[1].value is None


# ---------------------------------------------------------------------------
# Metric resolver wiring
# ---------------------------------------------------------------------------

def test_resolver_reconciles_eps_and_trims_lookback():
    entries = [{"end": f"{y}-09-30", "val": float(y - 2000), "form": "10-K", "fp": "FY"}
               for y in range(2008, 2024)]
    entries.append({"end": "2015-12-31", "val": 99.0, "form": "10-K", "fp": "FY"})
    facts = {"facts": {"us-gaap": {"EarningsPerShareDiluted": {"units": {"USD/shares": entries}}}}}

    series = resolve_annual_series(facts, "eps", lookback=10)
    assert len(series) == 10
    assert all(p.period_end.month == 9 for p in series)
    assert series[-1].period_end == date(2023, 9, 30)


def test_unknown_metric_field_raises():
    with pytest.raises(ValueError):
        get_spec("ebitda_margin")
