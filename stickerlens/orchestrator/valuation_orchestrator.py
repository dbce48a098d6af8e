"""
Per-request valuation orchestrator.

Execution order:
  A: fetch concurrently (asyncio.gather)
       latest close          -> StooqClient.fetch_latest_close        (never cached)
       CIK + companyfacts    -> SecClient via the facts SymbolCache
       daily close history   -> StooqClient via the history SymbolCache
  B: resolve annual series  -> metric_resolver (revenue, EPS, OCF, capex, ...)
  C: derived metrics        -> FCF, BVPS (split-adjusted), ROIC, P/E, average P/E
  D: Rule #1 valuation      -> calculate_rule1

Failure behavior:
  - Any UpstreamDataError in step A propagates (the HTTP layer answers 502)
  - Missing data in B/C yields None values per period, never an exception
  - Rule #1 outcomes: None, a GROWTH_BASIS_UNAVAILABLE error object, or the result
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy.orm import Session

from stickerlens.api_clients.sec_client import SecClient
from stickerlens.api_clients.stooq_client import StooqClient
from stickerlens.config import Settings
from stickerlens.normalizers.sec_facts_normalizer import entity_name
from stickerlens.repositories import splits_repo
from stickerlens.series import DailyClose, points_to_json, series_ends
from stickerlens.services import derived_metrics, metric_resolver
from stickerlens.services.price_history import PriceHistoryIndex
from stickerlens.services.rule1 import (
    GrowthBasis,
    Rule1Inputs,
    Rule1Knobs,
    Rule1Result,
    calculate_rule1,
)
from stickerlens.services.symbol_cache import SymbolCache, normalize_symbol

logger = logging.getLogger(__name__)

LATEST_PRICE_SOURCE: str = "stooq_latest"

DEFINITION_NOTES: dict[str, str] = {
    "roicDefinition": (
        "ROIC = NOPAT / InvestedCapital, NOPAT = OperatingIncome*(1-taxRate), "
        "taxRate=Taxes/Pretax, InvestedCapital=Equity+LongTermDebt-Cash"
    ),
    "peDefinition": (
        "P/E per year = (close on or before fiscal year end) / (EPS for that fiscal year). "
        "Average is mean of available years with EPS>0."
    ),
    "bookValuePerShareDefinition": (
        "BVPS = StockholdersEquity / shares outstanding nearest the fiscal year end, "
        "restated for stock splits effective after that year end."
    ),
}


@dataclass(frozen=True)
class CompanyFacts:
    cik: str
    facts: dict[str, Any]


class ValuationRun:
    def __init__(self, ticker: str):
        self.ticker = ticker
        self.steps: dict[str, Any] = {}
        self.logs: list[str] = []

    def log(self, msg: str) -> None:
        logger.info(msg)
        self.logs.append(msg)

    def step_success(self, name: str, data: Any = None) -> None:
        self.log(f"[Step] SUCCESS: {name}")
        self.steps[name] = {"status": "success", "data": data}


class ValuationService:
    """
    Holds the upstream clients and the two per-symbol caches for the
    lifetime of the process. One instance per app; tests build their own
    with fake clients.
    """

    def __init__(
        self,
        settings: Settings,
        sec_client: SecClient | None = None,
        stooq_client: StooqClient | None = None,
        facts_cache: SymbolCache[CompanyFacts] | None = None,
        history_cache: SymbolCache[list[DailyClose]] | None = None,
    ):
        self.settings = settings
        self.sec = sec_client or SecClient(settings.sec_user_agent)
        self.stooq = stooq_client or StooqClient()
        self.facts_cache = facts_cache or SymbolCache("companyfacts", settings.cache_max_symbols)
        self.history_cache = history_cache or SymbolCache("price_history", settings.cache_max_symbols)

    def invalidate(self, ticker: str) -> dict[str, bool]:
        return {
            "companyfacts": self.facts_cache.invalidate(ticker),
            "price_history": self.history_cache.invalidate(ticker),
        }

    # -----------------------------------------------------------------------
    # Loaders (only successful loads reach the caches)
    # -----------------------------------------------------------------------

    async def _load_company_facts(self, ticker: str) -> CompanyFacts:
        cik10 = await self.sec.get_cik_for_ticker(ticker)
        facts = await self.sec.get_raw_facts(cik10)
        return CompanyFacts(cik=cik10, facts=facts)

    async def _load_history(self, ticker: str) -> list[DailyClose]:
        return await self.stooq.fetch_daily_closes(ticker)

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    async def step_fetch(self, ticker: str, run: ValuationRun) -> tuple[float | None, CompanyFacts, PriceHistoryIndex]:
        """Step A: latest price, companyfacts and daily history, concurrently."""
        run.log(f"[Step A] Fetching price, companyfacts and history for {ticker}")
        price, company, closes = await asyncio.gather(
            self.stooq.fetch_latest_close(ticker),
            self.facts_cache.get_or_load(ticker, self._load_company_facts),
            self.history_cache.get_or_load(ticker, self._load_history),
        )
        history = PriceHistoryIndex(closes)
        if history:
            run.log(f"[Step A] history {history.first_date} .. {history.last_date} ({len(history)} closes)")
        run.step_success("fetch", {"cik": company.cik, "latest_price": price, "history_points": len(history)})
        return price, company, history

    def step_series(self, facts: dict[str, Any], run: ValuationRun) -> dict[str, Any]:
        """Step B: clean annual series for every metric the valuation reads."""
        lookback = self.settings.annual_lookback
        fields = ("revenue", "eps", "operating_cash_flow", "capex", "equity",
                  "operating_income", "pretax_income", "income_tax", "cash")
        series = {f: metric_resolver.resolve_annual_series(facts, f, lookback) for f in fields}
        series["equity_candidates"] = metric_resolver.dated_candidates(facts, "equity")
        series["cash_candidates"] = metric_resolver.dated_candidates(facts, "cash")
        series["debt_candidates"] = metric_resolver.dated_candidates(facts, "long_term_debt")
        series["share_candidates"] = metric_resolver.dated_candidates(facts, "shares_outstanding")
        series["long_term_debt_latest"] = metric_resolver.latest_value(facts, "long_term_debt")

        run.step_success("series", {f: len(series[f]) for f in fields})
        return series

    def step_derived(self, ticker: str, series: dict[str, Any], history: PriceHistoryIndex,
                     db: Session, run: ValuationRun) -> dict[str, Any]:
        """Step C: per-year derived metrics on the EPS period ends."""
        ends = series_ends(series["eps"])

        fcf = derived_metrics.free_cash_flow(ends, series["operating_cash_flow"], series["capex"])
        bvps = derived_metrics.book_value_per_share(
            ends, series["equity"], series["equity_candidates"], series["share_candidates"],
        )
        splits = splits_repo.get_split_events(db, ticker)
        bvps_adjusted = derived_metrics.split_adjusted(bvps, splits)
        roic = derived_metrics.roic(ends, derived_metrics.RoicInputs(
            operating_income=series["operating_income"],
            pretax_income=series["pretax_income"],
            income_tax=series["income_tax"],
            equity=series["equity"],
            cash=series["cash"],
            equity_candidates=series["equity_candidates"],
            cash_candidates=series["cash_candidates"],
            debt_candidates=series["debt_candidates"],
        ))
        pe = derived_metrics.pe_by_year(ends, series["eps"], history)
        avg_pe = derived_metrics.average_pe(pe)

        run.step_success("derived", {"periods": len(ends), "splits": len(splits), "average_pe": avg_pe})
        return {
            "fcf": fcf,
            "bvps": bvps_adjusted,
            "roic": roic,
            "pe": pe,
            "average_pe": avg_pe,
        }

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    async def value_ticker(self, ticker: str, knobs: Rule1Knobs, db: Session) -> dict[str, Any]:
        ticker = normalize_symbol(ticker)
        run = ValuationRun(ticker)

        price, company, history = await self.step_fetch(ticker, run)
        series = self.step_series(company.facts, run)
        derived = self.step_derived(ticker, series, history, db, run)

        # Step D
        rule1 = calculate_rule1(
            Rule1Inputs(
                eps=series["eps"],
                book_value_per_share=derived["bvps"],
                free_cash_flow=derived["fcf"],
                historic_pe=derived["average_pe"],
                latest_price=price,
            ),
            knobs,
        )
        if rule1 is None:
            run.log("[Step D] Rule #1 not computable (no EPS or no usable historic P/E)")
        elif isinstance(rule1, Rule1Result):
            run.log(f"[Step D] sticker={rule1.sticker_price:.2f} mos={rule1.sticker_price_with_mos:.2f}")
        else:
            run.log(f"[Step D] {rule1.message}")

        ltd = series["long_term_debt_latest"]
        return {
            "ticker": ticker,
            "cik": company.cik,
            "entityName": entity_name(company.facts),
            "latestPriceUSD": price,
            "latestPriceSource": LATEST_PRICE_SOURCE,
            "revenueUSD": points_to_json(series["revenue"]),
            "eps": points_to_json(series["eps"]),
            "freeCashFlowUSD": points_to_json(derived["fcf"]),
            "bookValuePerShareUSD": points_to_json(derived["bvps"]),
            "roic": points_to_json(derived["roic"]),
            "longTermDebtUSD_current": (
                {"end": ltd.period_end.isoformat(), "val": ltd.value} if ltd is not None else None
            ),
            "peRatioByYear": points_to_json(derived["pe"]),
            "averagePeRatio10y": derived["average_pe"],
            "valuations": {
                "rule1": {
                    "assumptions": _assumptions(knobs),
                    "result": rule1.to_dict() if rule1 is not None else None,
                },
            },
            "notes": DEFINITION_NOTES,
            "logs": run.logs,
        }


def _assumptions(knobs: Rule1Knobs) -> dict[str, Any]:
    out = asdict(knobs)
    basis = knobs.growth_basis
    out["growth_basis"] = basis.value if isinstance(basis, GrowthBasis) else basis
    return out
