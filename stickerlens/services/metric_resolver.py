"""
Metric Resolution Layer

Single source of truth for:
  - which us-gaap tags feed each logical metric, in preference order
  - the unit each metric is read in
  - the tag policy (FIRST_MATCH vs MERGE)
  - whether the fiscal-year-end month is reconciled

Usage:
    from stickerlens.services.metric_resolver import resolve_annual_series, dated_candidates
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from stickerlens.normalizers import sec_facts_normalizer as sec
from stickerlens.series import AnnualSeries, SeriesPoint
from stickerlens.services.temporal_aligner import last_n, reconcile_fiscal_year_end_month

logger = logging.getLogger(__name__)

TagPolicy = Literal["FIRST_MATCH", "MERGE"]
UnitKind = Literal["USD", "USD/shares", "shares"]

DEFAULT_LOOKBACK_YEARS: int = 10

_UNIT_PREDICATES = {
    "USD": sec.is_usd_unit,
    "USD/shares": sec.is_per_share_unit,
    "shares": sec.is_share_count_unit,
}


# ---------------------------------------------------------------------------
# Metric definition
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricSpec:
    field: str
    tag_candidates: tuple[str, ...]
    unit: UnitKind = "USD"
    policy: TagPolicy = "FIRST_MATCH"
    reconcile_fiscal_month: bool = False
    description: str = ""


# ---------------------------------------------------------------------------
# Registry: one entry per logical metric
# ---------------------------------------------------------------------------

METRIC_REGISTRY: dict[str, MetricSpec] = {
    "revenue": MetricSpec(
        field="revenue",
        tag_candidates=(
            "Revenues",
            "SalesRevenueNet",
            "RevenueFromContractWithCustomerExcludingAssessedTax",
            "SalesRevenueGoodsNet",
            "SalesRevenueServicesNet",
        ),
        policy="MERGE",
        reconcile_fiscal_month=True,
        description=(
            "Total revenue. Filers switch tags across revenue-recognition "
            "standards, so all candidates are merged before dedup."
        ),
    ),
    "eps": MetricSpec(
        field="eps",
        tag_candidates=("EarningsPerShareDiluted", "EarningsPerShareBasic"),
        unit="USD/shares",
        reconcile_fiscal_month=True,
        description="Diluted EPS, basic as fallback. Drives the period ends of every derived metric.",
    ),
    "operating_cash_flow": MetricSpec(
        field="operating_cash_flow",
        tag_candidates=("NetCashProvidedByUsedInOperatingActivities",),
    ),
    "capex": MetricSpec(
        field="capex",
        tag_candidates=("PaymentsToAcquirePropertyPlantAndEquipment",),
        description="Reported as a positive outflow.",
    ),
    "equity": MetricSpec(
        field="equity",
        tag_candidates=(
            "StockholdersEquity",
            "StockholdersEquityIncludingPortionAttributableToNoncontrollingInterest",
        ),
    ),
    "operating_income": MetricSpec(
        field="operating_income",
        tag_candidates=("OperatingIncomeLoss",),
    ),
    "pretax_income": MetricSpec(
        field="pretax_income",
        tag_candidates=(
            "IncomeBeforeIncomeTaxes",
            "ProfitLoss",
            "IncomeLossFromContinuingOperationsBeforeIncomeTaxesExtraordinaryItemsNoncontrollingInterest",
        ),
    ),
    "income_tax": MetricSpec(
        field="income_tax",
        tag_candidates=("IncomeTaxExpenseBenefit",),
    ),
    "cash": MetricSpec(
        field="cash",
        tag_candidates=(
            "CashAndCashEquivalentsAtCarryingValue",
            "CashCashEquivalentsRestrictedCashAndRestrictedCashEquivalents",
        ),
    ),
    "long_term_debt": MetricSpec(
        field="long_term_debt",
        tag_candidates=("LongTermDebtNoncurrent", "LongTermDebt"),
        description="Point-in-time; matched by nearest date, never by exact FY end.",
    ),
    "shares_outstanding": MetricSpec(
        field="shares_outstanding",
        tag_candidates=(
            "CommonStockSharesOutstanding",
            "EntityCommonStockSharesOutstanding",
            "dei:EntityCommonStockSharesOutstanding",
        ),
        unit="shares",
        description="Point-in-time share count from the balance sheet or filing cover page.",
    ),
}


def get_spec(field: str) -> MetricSpec:
    try:
        return METRIC_REGISTRY[field]
    except KeyError:
        raise ValueError(f"Unknown metric field: {field!r}") from None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve_annual_series(
    facts: Any,
    field: str,
    lookback: int = DEFAULT_LOOKBACK_YEARS,
) -> AnnualSeries:
    """
    Clean annual series for a logical metric, trimmed to the last `lookback`
    fiscal years.
    """
    spec = get_spec(field)
    if spec.policy == "MERGE":
        series = sec.merge_annual_usd(facts, spec.tag_candidates)
    else:
        series = sec.normalize_annual(facts, spec.tag_candidates, _UNIT_PREDICATES[spec.unit])

    if spec.reconcile_fiscal_month:
        series = reconcile_fiscal_year_end_month(series)

    if not series:
        logger.info("[METRIC_RESOLVER] %s: no qualifying annual facts for %s", field, spec.tag_candidates)
    return last_n(series, lookback)


def dated_candidates(facts: Any, field: str) -> list[SeriesPoint]:
    """All filed (end, value) pairs for a point-in-time metric, any form, any tag."""
    spec = get_spec(field)
    return sec.collect_dated_values(facts, spec.tag_candidates, _UNIT_PREDICATES[spec.unit])


def latest_value(facts: Any, field: str) -> SeriesPoint | None:
    spec = get_spec(field)
    return sec.pick_latest_value(facts, spec.tag_candidates, spec.unit)
