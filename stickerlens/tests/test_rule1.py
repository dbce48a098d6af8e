"""
Acceptance tests: Rule #1 valuation

Rules:
  - 10-year bases need 10 annual points, 5-year bases need 6.
  - Too few points → Rule1Failure (GROWTH_BASIS_UNAVAILABLE), never a partial result.
  - CAGR 100 → 200 over 2015 → 2020 ≈ 14.87 %.
  - chosen growth = min(analyst growth, basis growth).
  - MOS is clamped to [0, 100] % of the sticker price.
  - No EPS, no usable historic P/E or out-of-range compounding → None.
"""

import math
from datetime import date

import pytest

from stickerlens.series import MetricPoint, SeriesPoint
from stickerlens.services.rule1 import (
    GROWTH_BASIS_UNAVAILABLE,
    GrowthBasis,
    Rule1Failure,
    Rule1Inputs,
    Rule1Knobs,
    Rule1Result,
    cagr,
    calculate_rule1,
    mos_factor,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _yearly(values, first_year=2011, month=12, day=31):
    return [SeriesPoint(date(first_year + i, month, day), v) for i, v in enumerate(values)]


def _inputs(eps=None, bvps=None, fcf=None, pe=15.0, price=100.0) -> Rule1Inputs:
    return Rule1Inputs(
        eps=eps if eps is not None else _yearly([1.0 * 1.1 ** i for i in range(10)]),
        book_value_per_share=bvps if bvps is not None else _yearly([10.0 * 1.08 ** i for i in range(10)]),
        free_cash_flow=fcf if fcf is not None else [],
        historic_pe=pe,
        latest_price=price,
    )


def _knobs(**overrides) -> Rule1Knobs:
    base = dict(
        years=10,
        analyst_growth=0.10,
        desired_return=0.20,
        margin_of_safety_percent=40.0,
        growth_basis=GrowthBasis.BVPS_5Y,
    )
    base.update(overrides)
    return Rule1Knobs(**base)


# ---------------------------------------------------------------------------
# Growth basis enum
# ---------------------------------------------------------------------------

def test_growth_basis_points_and_labels():
    assert GrowthBasis.BVPS_5Y.points_needed == 6
    assert GrowthBasis.EPS_10Y.points_needed == 10
    assert GrowthBasis.FCF_10Y.label == "Free Cash Flow last 10 years"
    assert GrowthBasis.BVPS_5Y.label == "BVPS last 5 years"


def test_growth_basis_parse_falls_back():
    assert GrowthBasis.parse("fcf_5y") is GrowthBasis.FCF_5Y
    assert GrowthBasis.parse(" EPS_10Y ") is GrowthBasis.EPS_10Y
    assert GrowthBasis.parse("pe_3y") is GrowthBasis.BVPS_5Y
    assert GrowthBasis.parse(None) is GrowthBasis.BVPS_5Y
    assert GrowthBasis.parse(GrowthBasis.FCF_10Y) is GrowthBasis.FCF_10Y


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_cagr_known_value():
    """Acceptance: 100 → 200 over 5 years ≈ 0.1487."""
    assert cagr(100, 200, 5) == pytest.approx(0.148698, abs=1e-6)


def test_cagr_undefined_for_non_positive_endpoints():
    assert cagr(0, 200, 5) is None
    assert cagr(-10, 200, 5) is None
    assert cagr(100, -5, 5) is None


def test_mos_factor_is_clamped():
    assert mos_factor(40) == pytest.approx(0.6)
    assert mos_factor(150) == 0.0
    assert mos_factor(-20) == 1.0


# ---------------------------------------------------------------------------
# Data sufficiency
# ---------------------------------------------------------------------------

def test_ten_year_basis_with_nine_points_fails():
    """Acceptance: 9 valid points for a 10y basis → Failure(needed=10, available=9)."""
    eps = _yearly([1.0 + i for i in range(9)])
    result = calculate_rule1(_inputs(eps=eps), _knobs(growth_basis=GrowthBasis.EPS_10Y))
    assert isinstance(result, Rule1Failure)
    assert result.type == GROWTH_BASIS_UNAVAILABLE
    assert result.points_needed == 10
    assert result.points_available == 9
    assert result.growth_basis == "eps_10y"
    assert result.message == "Not enough data to compute EPS last 10 years (need 10 annual points, have 9)"
    assert result.to_dict()["error"]["type"] == GROWTH_BASIS_UNAVAILABLE


def test_ten_year_basis_with_ten_points_succeeds():
    eps = _yearly([1.0 + i for i in range(10)])
    result = calculate_rule1(_inputs(eps=eps), _knobs(growth_basis=GrowthBasis.EPS_10Y))
    assert isinstance(result, Rule1Result)
    assert result.basis.points_used == 10


def test_missing_values_do_not_count_as_points():
    fcf = [MetricPoint(p.period_end, None if i % 2 else p.value)
           for i, p in enumerate(_yearly([5.0 + i for i in range(10)]))]
    result = calculate_rule1(_inputs(fcf=fcf), _knobs(growth_basis=GrowthBasis.FCF_5Y))
    assert isinstance(result, Rule1Failure)
    assert result.points_available == 5


# ---------------------------------------------------------------------------
# Valuation math
# ---------------------------------------------------------------------------

def test_basis_window_uses_last_six_points_for_five_year_basis():
    bvps = _yearly([10, 11, 12, 100, 110, 121, 133.1, 146.41, 161.051], first_year=2012)
    result = calculate_rule1(_inputs(bvps=bvps), _knobs(analyst_growth=0.5))
    assert result.basis.start_end == "2015-12-31"
    assert result.basis.end_end == "2020-12-31"
    assert result.basis.years_actual == 5
    assert result.basis.growth == pytest.approx(0.10)
    assert result.basis.growth_determined is True


def test_chosen_growth_is_minimum():
    result = calculate_rule1(_inputs(), _knobs(analyst_growth=0.05))
    assert result.chosen_growth == pytest.approx(0.05)
    result = calculate_rule1(_inputs(), _knobs(analyst_growth=0.50))
    assert result.chosen_growth == pytest.approx(result.basis.growth)


def test_sticker_rises_with_years_when_growth_beats_return():
    eps = _yearly([1.0 * 1.3 ** i for i in range(10)])
    knobs = dict(analyst_growth=0.30, desired_return=0.10, growth_basis=GrowthBasis.EPS_5Y)
    short = calculate_rule1(_inputs(eps=eps), _knobs(years=5, **knobs))
    long = calculate_rule1(_inputs(eps=eps), _knobs(years=10, **knobs))
    assert long.sticker_price > short.sticker_price


def test_sticker_invariant_in_years_when_growth_equals_return():
    eps = _yearly([1.0 * 1.2 ** i for i in range(10)])
    knobs = dict(analyst_growth=0.20, desired_return=0.20, growth_basis=GrowthBasis.EPS_5Y)
    a = calculate_rule1(_inputs(eps=eps), _knobs(years=3, **knobs))
    b = calculate_rule1(_inputs(eps=eps), _knobs(years=12, **knobs))
    assert a.sticker_price == pytest.approx(b.sticker_price)
    assert a.sticker_price == pytest.approx(eps[-1].value * 15.0)


def test_mos_150_gives_zero_mos_price():
    result = calculate_rule1(_inputs(), _knobs(margin_of_safety_percent=150))
    assert result.sticker_price_with_mos == 0.0
    assert result.sticker_price > 0


def test_end_to_end_eps_scenario():
    """EPS 2.00 → 3.22 over 5 years, PE 15, 10 years, 10% analyst, 20% return, 50% MOS."""
    eps = _yearly([1.5, 2.0, 2.2, 2.42, 2.662, 2.9282, 3.22102], first_year=2014)
    result = calculate_rule1(
        _inputs(eps=eps, pe=15.0, price=42.0),
        _knobs(analyst_growth=0.10, margin_of_safety_percent=50, growth_basis=GrowthBasis.EPS_5Y),
    )
    assert isinstance(result, Rule1Result)
    assert result.latest_eps == pytest.approx(3.22102)
    assert result.basis.growth == pytest.approx(0.10)
    assert result.chosen_growth == pytest.approx(0.10)

    future = 3.22102 * 15.0 * 1.1 ** 10
    sticker = future / 1.2 ** 10
    assert result.future_value == pytest.approx(future)
    assert result.sticker_price == pytest.approx(sticker)
    assert result.sticker_price_with_mos == pytest.approx(sticker * 0.5)
    assert result.current_price == 42.0
    assert result.historic_pe_used == 15.0


def test_eps_5y_reference_scenario():
    """EPS 5 -> 10 over 2015..2020, PE 20, 12% analyst, 15% return, 50% MOS, 10 years."""
    eps = _yearly([5.0, 5.5, 6.5, 7.5, 8.5, 10.0], first_year=2015)
    result = calculate_rule1(
        _inputs(eps=eps, pe=20.0),
        _knobs(analyst_growth=0.12, desired_return=0.15, margin_of_safety_percent=50,
               growth_basis=GrowthBasis.EPS_5Y),
    )
    assert result.basis.years_actual == 5
    assert result.basis.growth == pytest.approx(2 ** (1 / 5) - 1)
    assert result.chosen_growth == pytest.approx(0.12)

    future = 10 * 20 * 1.12 ** 10
    assert result.future_value == pytest.approx(future)
    assert result.sticker_price == pytest.approx(future / 1.15 ** 10)
    assert result.sticker_price_with_mos == pytest.approx(future / 1.15 ** 10 * 0.5)


def test_non_positive_start_falls_back_to_zero_growth():
    bvps = _yearly([-5.0, 1.0, 2.0, 3.0, 4.0, 5.0])
    result = calculate_rule1(_inputs(bvps=bvps), _knobs())
    assert result.basis.growth == 0.0
    assert result.basis.growth_determined is False
    assert result.chosen_growth == 0.0


# ---------------------------------------------------------------------------
# Nothing to compute
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("pe", [None, 0.0, -3.0, math.nan, math.inf])
def test_unusable_pe_returns_none(pe):
    assert calculate_rule1(_inputs(pe=pe), _knobs()) is None


def test_empty_eps_returns_none():
    assert calculate_rule1(_inputs(eps=[]), _knobs()) is None


def test_current_price_passes_through_when_missing():
    result = calculate_rule1(_inputs(price=None), _knobs())
    assert result.current_price is None
    assert result.to_dict()["current_price"] is None


@pytest.mark.parametrize("overrides", [
    {"desired_return": -1.0},
    {"years": 10000},
    {"years": 2.5, "desired_return": -1.5},
])
def test_knobs_out_of_float_range_return_none(overrides):
    eps = _yearly([1.0 * 1.5 ** i for i in range(10)])
    knobs = _knobs(analyst_growth=0.5, growth_basis=GrowthBasis.EPS_5Y, **overrides)
    assert calculate_rule1(_inputs(eps=eps), knobs) is None
