"""
Rule #1 sticker price.

    growth        = CAGR of the chosen basis over its last N annual points
    chosen growth = min(analyst growth, basis growth)
    future value  = latest EPS * historic P/E * (1 + chosen growth) ^ years
    sticker price = future value / (1 + desired return) ^ years
    MOS price     = sticker price * clamp((100 - MOS%) / 100, 0, 1)

calculate_rule1 returns one of three things:
  None          nothing to compute (no EPS, no usable historic P/E, or knobs
                that push the compounding out of float range)
  Rule1Failure  the requested growth basis does not have enough points
  Rule1Result   the valuation

Basis point counts follow annual report cadence, not calendar years:
a "5 year" basis uses the last 6 points and a "10 year" basis the last 10,
so the realised span (years_actual) can be shorter than the label says.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from stickerlens.series import MetricPoint, SeriesPoint, is_finite_number

logger = logging.getLogger(__name__)

GROWTH_BASIS_UNAVAILABLE = "GROWTH_BASIS_UNAVAILABLE"


class GrowthBasis(str, Enum):
    BVPS_5Y = "bvps_5y"
    BVPS_10Y = "bvps_10y"
    FCF_5Y = "fcf_5y"
    FCF_10Y = "fcf_10y"
    EPS_5Y = "eps_5y"
    EPS_10Y = "eps_10y"

    @property
    def metric(self) -> str:
        return self.value.split("_")[0]

    @property
    def points_needed(self) -> int:
        return 6 if self.value.endswith("_5y") else 10

    @property
    def label(self) -> str:
        name = {"bvps": "BVPS", "fcf": "Free Cash Flow", "eps": "EPS"}[self.metric]
        span = "5" if self.value.endswith("_5y") else "10"
        return f"{name} last {span} years"

    @classmethod
    def parse(cls, raw: Any, default: GrowthBasis | None = None) -> GrowthBasis:
        """Map a query-string value to a basis; unknown values fall back to `default`."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return default or cls.BVPS_5Y


Point = SeriesPoint | MetricPoint


@dataclass(frozen=True)
class Rule1Inputs:
    eps: Sequence[Point]
    book_value_per_share: Sequence[Point]
    free_cash_flow: Sequence[Point]
    historic_pe: float | None
    latest_price: float | None


@dataclass(frozen=True)
class Rule1Knobs:
    years: float
    analyst_growth: float
    desired_return: float
    margin_of_safety_percent: float
    growth_basis: GrowthBasis


@dataclass(frozen=True)
class BasisDetail:
    key: str
    label: str
    points_used: int
    years_actual: int
    start_end: str
    end_end: str
    start_val: float
    end_val: float
    growth: float
    # False when CAGR could not be computed (non-positive endpoint) and
    # growth fell back to 0.
    growth_determined: bool


@dataclass(frozen=True)
class Rule1Result:
    latest_eps: float
    basis: BasisDetail
    chosen_growth: float
    historic_pe_used: float
    future_value: float
    sticker_price: float
    sticker_price_with_mos: float
    current_price: float | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Rule1Failure:
    message: str
    growth_basis: str
    points_needed: int
    points_available: int
    type: str = GROWTH_BASIS_UNAVAILABLE

    def to_dict(self) -> dict[str, Any]:
        return {"error": asdict(self)}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_points(series: Sequence[Point]) -> list[SeriesPoint]:
    """Drop absent / non-finite values and sort ascending by period end."""
    pts = [
        SeriesPoint(p.period_end, float(p.value))
        for p in series
        if p is not None and is_finite_number(p.value)
    ]
    return sorted(pts, key=lambda p: p.period_end)


def cagr(start: float, end: float, years: float) -> float | None:
    """Compound annual growth rate, or None when it is undefined."""
    if not is_finite_number(start) or not is_finite_number(end) or years <= 0:
        return None
    if start <= 0 or end <= 0:
        return None
    return math.pow(end / start, 1 / years) - 1


def growth_by_points(series: Sequence[Point], points: int) -> tuple[SeriesPoint, SeriesPoint, int, float | None] | None:
    """
    Growth between the point `points` positions from the end and the last point.
    Returns (start, end, years_actual, growth) or None when there are too few points.
    """
    s = normalize_points(series)
    if len(s) < points:
        return None
    start, end = s[-points], s[-1]
    years_actual = max(1, end.period_end.year - start.period_end.year)
    return start, end, years_actual, cagr(start.value, end.value, years_actual)


def mos_factor(margin_of_safety_percent: float) -> float:
    return max(0.0, min(1.0, (100 - margin_of_safety_percent) / 100))


def _basis_series(inputs: Rule1Inputs, basis: GrowthBasis) -> Sequence[Point]:
    if basis.metric == "bvps":
        return inputs.book_value_per_share
    if basis.metric == "fcf":
        return inputs.free_cash_flow
    return inputs.eps


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def calculate_rule1(inputs: Rule1Inputs, knobs: Rule1Knobs) -> Rule1Result | Rule1Failure | None:
    eps_series = normalize_points(inputs.eps)
    if not eps_series:
        logger.info("[Rule1] no EPS series, nothing to value")
        return None
    latest_eps = eps_series[-1].value

    pe = inputs.historic_pe
    if not is_finite_number(pe) or pe <= 0:
        logger.info("[Rule1] historic P/E unusable (%s), nothing to value", pe)
        return None

    basis = knobs.growth_basis
    points_needed = basis.points_needed
    points_available = len(normalize_points(_basis_series(inputs, basis)))

    g = growth_by_points(_basis_series(inputs, basis), points_needed)
    if g is None:
        logger.warning("[Rule1] %s needs %d annual points, have %d",
                       basis.value, points_needed, points_available)
        return Rule1Failure(
            message=(
                f"Not enough data to compute {basis.label} "
                f"(need {points_needed} annual points, have {points_available})"
            ),
            growth_basis=basis.value,
            points_needed=points_needed,
            points_available=points_available,
        )

    start, end, years_actual, growth = g
    growth_determined = growth is not None
    basis_growth = growth if growth is not None else 0.0
    if not growth_determined:
        logger.warning("[Rule1] %s CAGR undefined (start=%s end=%s), using 0 growth",
                       basis.value, start.value, end.value)

    chosen_growth = min(knobs.analyst_growth, basis_growth)
    try:
        future_value = latest_eps * pe * math.pow(1 + chosen_growth, knobs.years)
        sticker_price = future_value / math.pow(1 + knobs.desired_return, knobs.years)
    except (OverflowError, ZeroDivisionError, ValueError) as exc:
        logger.warning("[Rule1] valuation out of range (years=%s growth=%s return=%s): %s",
                       knobs.years, chosen_growth, knobs.desired_return, exc)
        return None
    if not (math.isfinite(future_value) and math.isfinite(sticker_price)):
        logger.warning("[Rule1] non-finite valuation (future=%s sticker=%s), nothing to value",
                       future_value, sticker_price)
        return None
    sticker_price_with_mos = sticker_price * mos_factor(knobs.margin_of_safety_percent)

    logger.debug("[Rule1] basis=%s growth=%.4f chosen=%.4f sticker=%.2f",
                 basis.value, basis_growth, chosen_growth, sticker_price)

    return Rule1Result(
        latest_eps=latest_eps,
        basis=BasisDetail(
            key=basis.value,
            label=basis.label,
            points_used=points_needed,
            years_actual=years_actual,
            start_end=start.period_end.isoformat(),
            end_end=end.period_end.isoformat(),
            start_val=start.value,
            end_val=end.value,
            growth=basis_growth,
            growth_determined=growth_determined,
        ),
        chosen_growth=chosen_growth,
        historic_pe_used=pe,
        future_value=future_value,
        sticker_price=sticker_price,
        sticker_price_with_mos=sticker_price_with_mos,
        current_price=inputs.latest_price,
    )
