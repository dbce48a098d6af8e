"""
Acceptance tests: SEC companyfacts normalization

Rules:
  - Only 10-K / FY facts with a non-quarterly frame make it into an annual series.
  - One point per period end; the larger absolute value wins (100 vs -150 keeps -150).
  - Output is strictly ascending by period end.
  - Tag candidates are first-match-wins; merge_annual_usd is the only union.
  - Malformed payloads produce an empty series, never an exception.
"""

from datetime import date

from stickerlens.normalizers.sec_facts_normalizer import (
    collect_dated_values,
    entity_name,
    is_per_share_unit,
    merge_annual_usd,
    normalize_annual,
    pick_annual_eps_series,
    pick_annual_usd_series,
    pick_latest_value,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _fact(end, val, form="10-K", fp="FY", frame=None):
    f = {"end": end, "val": val, "form": form, "fp": fp}
    if frame is not None:
        f["frame"] = frame
    return f


def _facts(us_gaap: dict, dei: dict | None = None) -> dict:
    payload = {"entityName": "Example Corp", "facts": {"us-gaap": {}}}
    for tag, units in us_gaap.items():
        payload["facts"]["us-gaap"][tag] = {"units": units}
    if dei:
        payload["facts"]["dei"] = {tag: {"units": units} for tag, units in dei.items()}
    return payload


# ---------------------------------------------------------------------------
# Annual filter + dedup
# ---------------------------------------------------------------------------

def test_dedup_keeps_larger_magnitude():
    """Acceptance: 100 and -150 on the same end date → -150 survives."""
    facts = _facts({"NetIncomeLoss": {"USD": [
        _fact("2021-12-31", 100),
        _fact("2021-12-31", -150),
    ]}})
    series = pick_annual_usd_series(facts, ["NetIncomeLoss"])
    assert len(series) == 1
    assert series[0].value == -150


def test_dedup_equal_magnitude_keeps_first_seen():
    facts = _facts({"NetIncomeLoss": {"USD": [
        _fact("2021-12-31", 50),
        _fact("2021-12-31", -50),
    ]}})
    assert pick_annual_usd_series(facts, ["NetIncomeLoss"])[0].value == 50


def test_non_annual_facts_are_excluded():
    facts = _facts({"Revenues": {"USD": [
        _fact("2020-12-31", 1_000),
        _fact("2021-03-31", 300, form="10-Q", fp="Q1"),
        _fact("2021-12-31", 900, fp="Q4"),
        _fact("2022-12-31", 400, frame="CY2022Q4"),
        _fact("2023-12-31", 1_300, frame="CY2023"),
        _fact("not-a-date", 5_000),
        _fact("2024-12-31", "abc"),
    ]}})
    series = pick_annual_usd_series(facts, ["Revenues"])
    assert [(p.period_end, p.value) for p in series] == [
        (date(2020, 12, 31), 1_000),
        (date(2023, 12, 31), 1_300),
    ]


def test_series_is_strictly_ascending_and_unique():
    facts = _facts({"Revenues": {"USD": [
        _fact("2022-12-31", 3),
        _fact("2020-12-31", 1),
        _fact("2021-12-31", 2),
        _fact("2022-12-31", 3),
    ]}})
    ends = [p.period_end for p in pick_annual_usd_series(facts, ["Revenues"])]
    assert ends == sorted(set(ends))
    assert len(ends) == 3


# ---------------------------------------------------------------------------
# Tag candidates: first match vs merge
# ---------------------------------------------------------------------------

def test_first_matching_tag_wins_and_is_not_merged():
    facts = _facts({
        "Revenues": {"USD": [_fact("2021-12-31", 10)]},
        "SalesRevenueNet": {"USD": [_fact("2019-12-31", 7), _fact("2020-12-31", 8)]},
    })
    series = pick_annual_usd_series(facts, ["Revenues", "SalesRevenueNet"])
    assert [p.value for p in series] == [10]


def test_falls_through_to_next_tag_when_first_has_no_annual_facts():
    facts = _facts({
        "Revenues": {"USD": [_fact("2021-03-31", 10, form="10-Q", fp="Q1")]},
        "SalesRevenueNet": {"USD": [_fact("2020-12-31", 8)]},
    })
    series = pick_annual_usd_series(facts, ["Revenues", "SalesRevenueNet"])
    assert [p.value for p in series] == [8]


def test_merge_unions_all_candidates_before_dedup():
    facts = _facts({
        "SalesRevenueNet": {"USD": [_fact("2016-12-31", 80), _fact("2017-12-31", 90)]},
        "RevenueFromContractWithCustomerExcludingAssessedTax": {"USD": [
            _fact("2017-12-31", 95), _fact("2018-12-31", 100),
        ]},
    })
    series = merge_annual_usd(facts, ["SalesRevenueNet", "RevenueFromContractWithCustomerExcludingAssessedTax"])
    assert [(p.period_end.year, p.value) for p in series] == [(2016, 80), (2017, 95), (2018, 100)]


def test_eps_series_uses_per_share_unit():
    facts = _facts({"EarningsPerShareDiluted": {
        "USD": [_fact("2021-12-31", 999)],
        "USD/shares": [_fact("2021-12-31", 2.5)],
    }})
    series = pick_annual_eps_series(facts, ["EarningsPerShareDiluted"])
    assert [p.value for p in series] == [2.5]
    assert is_per_share_unit("usd/Shares")
    assert not is_per_share_unit("shares")


# ---------------------------------------------------------------------------
# Malformed payloads
# ---------------------------------------------------------------------------

def test_malformed_payloads_return_empty():
    for payload in (None, {}, {"facts": []}, {"facts": {"us-gaap": {"Revenues": "x"}}},
                    {"facts": {"us-gaap": {"Revenues": {"units": {"USD": "nope"}}}}}):
        assert normalize_annual(payload, ["Revenues"], lambda u: u == "USD") == ()
        assert merge_annual_usd(payload, ["Revenues"]) == ()


# ---------------------------------------------------------------------------
# Point-in-time extraction
# ---------------------------------------------------------------------------

def test_collect_dated_values_ignores_form_and_reads_dei():
    facts = _facts(
        {},
        dei={"EntityCommonStockSharesOutstanding": {"shares": [
            _fact("2021-01-20", 1_000, form="10-K", fp="FY"),
            _fact("2021-04-20", 990, form="10-Q", fp="Q2"),
        ]}},
    )
    pts = collect_dated_values(facts, ["dei:EntityCommonStockSharesOutstanding"], lambda u: u == "shares")
    assert [p.value for p in pts] == [1_000, 990]


def test_pick_latest_value_returns_most_recent_filing():
    facts = _facts({"LongTermDebtNoncurrent": {"USD": [
        _fact("2022-09-24", 98), _fact("2023-07-01", 95, form="10-Q", fp="Q3"), _fact("2021-09-25", 109),
    ]}})
    latest = pick_latest_value(facts, ["LongTermDebtNoncurrent", "LongTermDebt"])
    assert latest.period_end == date(2023, 7, 1)
    assert latest.value == 95
    assert pick_latest_value(facts, ["LongTermDebt"]) is None


def test_entity_name():
    assert entity_name(_facts({})) == "Example Corp"
    assert entity_name({"entityName": "  "}) is None
