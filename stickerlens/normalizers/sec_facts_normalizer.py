"""
SEC companyfacts normalizer.

Turns the raw XBRL companyfacts payload
(facts["facts"]["us-gaap"][tag]["units"][unit] -> [fact, ...]) into clean
annual series.

Key behaviors:
  - Tag candidates are consulted in order; the first tag whose unit mapping
    yields a non-empty annual series wins. Tags are NOT merged
    (different tags for the same concept can double-count).
  - merge_annual_usd is the one explicit exception: it unions facts across
    every candidate before dedup (revenue tags change across ASC 606 etc).
  - Annual filter: form == "10-K", fp == "FY", valid ISO end date,
    finite value, frame (if any) must not look like a quarter (CY2023Q1).
  - Dedup per end date: keep the value with the larger absolute magnitude;
    on equal magnitude the first fact seen is kept.
  - Never raises on malformed payloads; returns an empty series instead.
"""

import logging
import re
from collections.abc import Callable, Iterable
from datetime import date
from typing import Any

from stickerlens.series import AnnualSeries, RawFact, SeriesPoint

logger = logging.getLogger(__name__)

TAXONOMY: str = "us-gaap"
ANNUAL_FORM: str = "10-K"
FULL_YEAR_PERIOD: str = "FY"

_QUARTER_FRAME = re.compile(r"Q[1-4]")

UnitPredicate = Callable[[str], bool]


# ---------------------------------------------------------------------------
# Unit predicates
# ---------------------------------------------------------------------------

def is_usd_unit(unit: str) -> bool:
    return unit == "USD"


def is_per_share_unit(unit: str) -> bool:
    """EPS is normally filed as "USD/shares"."""
    u = unit.lower()
    return "usd" in u and "shares" in u


def is_share_count_unit(unit: str) -> bool:
    return unit.lower() == "shares"


# ---------------------------------------------------------------------------
# Raw payload access
# ---------------------------------------------------------------------------

def units_for_tag(facts: Any, tag: str) -> dict[str, Any]:
    """
    Return the unit -> [fact] mapping for a tag, or {} when absent/malformed.
    Tags default to the us-gaap taxonomy; "dei:EntityCommonStockSharesOutstanding"
    style prefixes select another one.
    """
    if not isinstance(facts, dict):
        return {}
    all_facts = facts.get("facts")
    if not isinstance(all_facts, dict):
        return {}
    prefix, _, tag = tag.rpartition(":")
    taxonomy = all_facts.get(prefix or TAXONOMY)
    if not isinstance(taxonomy, dict):
        return {}
    node = taxonomy.get(tag)
    if not isinstance(node, dict):
        return {}
    units = node.get("units")
    return units if isinstance(units, dict) else {}


def _first_matching_unit(units: dict[str, Any], unit_predicate: UnitPredicate) -> str | None:
    return next((u for u in units if unit_predicate(u)), None)


def _raw_facts(entries: Any) -> list[RawFact]:
    if not isinstance(entries, list):
        return []
    parsed = (RawFact.from_dict(x) for x in entries)
    return [f for f in parsed if f is not None]


def is_annual_fact(fact: RawFact) -> bool:
    if fact.form != ANNUAL_FORM:
        return False
    if fact.fiscal_period != FULL_YEAR_PERIOD:
        return False
    if fact.frame is not None and _QUARTER_FRAME.search(fact.frame):
        return False
    return True


# ---------------------------------------------------------------------------
# Dedup + ordering
# ---------------------------------------------------------------------------

def dedupe_by_period_end(facts: Iterable[RawFact]) -> AnnualSeries:
    """
    Collapse facts sharing a period end, keeping the larger absolute value.
    Restated or full-year totals are usually larger than partial-period
    duplicates filed under the same end date.
    """
    by_end: dict[date, float] = {}
    for f in facts:
        prev = by_end.get(f.period_end)
        if prev is None or abs(f.value) > abs(prev):
            by_end[f.period_end] = f.value
    return tuple(SeriesPoint(period_end=d, value=v) for d, v in sorted(by_end.items()))


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

def normalize_annual(
    facts: Any,
    tag_candidates: Iterable[str],
    unit_predicate: UnitPredicate,
) -> AnnualSeries:
    """
    First-match-wins annual series for a list of equivalent tags.
    Returns () when no tag/unit combination qualifies.
    """
    for tag in tag_candidates:
        units = units_for_tag(facts, tag)
        unit_key = _first_matching_unit(units, unit_predicate)
        if unit_key is None:
            continue

        annual = [f for f in _raw_facts(units[unit_key]) if is_annual_fact(f)]
        series = dedupe_by_period_end(annual)
        if series:
            logger.debug("[SEC][Normalize] tag=%s unit=%s points=%d", tag, unit_key, len(series))
            return series

    return ()


def merge_annual_usd(facts: Any, tag_candidates: Iterable[str]) -> AnnualSeries:
    """Union annual USD facts across ALL tag candidates, then dedup by end date."""
    merged: list[RawFact] = []
    for tag in tag_candidates:
        entries = units_for_tag(facts, tag).get("USD")
        merged.extend(f for f in _raw_facts(entries) if is_annual_fact(f))
    return dedupe_by_period_end(merged)


def pick_annual_usd_series(facts: Any, tag_candidates: Iterable[str]) -> AnnualSeries:
    return normalize_annual(facts, tag_candidates, is_usd_unit)


def pick_annual_eps_series(facts: Any, tag_candidates: Iterable[str]) -> AnnualSeries:
    return normalize_annual(facts, tag_candidates, is_per_share_unit)


def collect_dated_values(
    facts: Any,
    tag_candidates: Iterable[str],
    unit_predicate: UnitPredicate = is_usd_unit,
) -> list[SeriesPoint]:
    """
    Every filed (end, value) pair across all candidate tags, regardless of
    form or fiscal period. Used as the candidate pool for nearest-date lookups
    of point-in-time figures (shares outstanding, equity, cash, debt).
    """
    out: list[SeriesPoint] = []
    for tag in tag_candidates:
        units = units_for_tag(facts, tag)
        unit_key = _first_matching_unit(units, unit_predicate)
        if unit_key is None:
            continue
        out.extend(SeriesPoint(f.period_end, f.value) for f in _raw_facts(units[unit_key]))
    return out


def pick_latest_value(facts: Any, tag_candidates: Iterable[str], unit: str = "USD") -> SeriesPoint | None:
    """Most recent filed value (any form) from the first tag that has one."""
    for tag in tag_candidates:
        entries = _raw_facts(units_for_tag(facts, tag).get(unit))
        if entries:
            latest = max(entries, key=lambda f: f.period_end)
            return SeriesPoint(latest.period_end, latest.value)
    return None


def entity_name(facts: Any) -> str | None:
    name = facts.get("entityName") if isinstance(facts, dict) else None
    return name if isinstance(name, str) and name.strip() else None
