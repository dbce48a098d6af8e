"""
Analyst growth estimate.

Sources, in order:
  1. Finnhub stock/eps-estimate (only when an API key is configured)
       year  = row.year, else first 4 chars of row.period
       eps   = row.epsAvg, else row.eps, else row.estimate
       start = earliest year; end = first year >= start + years, else the last
       growth = (end.eps / start.eps) ^ (1 / max(1, end.year - start.year)) - 1
                when both EPS are > 0
     A non-OK status other than 403 ends the lookup with analyst_growth=None.
     403 and network failures fall through to Yahoo.
  2. Yahoo quoteSummary (unofficial)
       financialData.earningsGrowth.raw
       earningsTrend.trend[period="+5y"].growth.raw
       defaultKeyStatistics forwardEps / trailingEps - 1  (rough 1-year proxy)

A missing estimate is a normal outcome, never an exception.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from stickerlens.api_clients import finnhub_client, yahoo_client
from stickerlens.errors import UpstreamDataError
from stickerlens.series import is_finite_number

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATE_YEARS: int = 5
MIN_ESTIMATE_YEARS: int = 2

SOURCE_FINNHUB: str = "finnhub"
SOURCE_YAHOO: str = "yahoo_unofficial_raw"

EpsEstimateFetcher = Callable[[str, str], Awaitable[list[dict[str, Any]]]]
QuoteSummaryFetcher = Callable[[str], Awaitable[dict[str, Any]]]


@dataclass
class AnalystGrowthEstimate:
    ticker: str
    analyst_growth: float | None
    source: str
    source_field: str | None = None
    reason: str | None = None
    note: str | None = None
    years_requested: int | None = None
    years_actual: int | None = None
    start: dict | None = None
    end: dict | None = None
    debug_periods: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "ticker": self.ticker,
            "analystGrowth": self.analyst_growth,
            "source": self.source,
        }
        optional = {
            "field": self.source_field,
            "reason": self.reason,
            "note": self.note,
            "yearsRequested": self.years_requested,
            "yearsActual": self.years_actual,
            "start": self.start,
            "end": self.end,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        if self.debug_periods:
            out["debugPeriods"] = self.debug_periods
        return out


def clamp_estimate_years(raw: Any) -> int:
    try:
        n = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_ESTIMATE_YEARS
    if not n or not math.isfinite(n):
        return DEFAULT_ESTIMATE_YEARS
    return max(MIN_ESTIMATE_YEARS, round(n))


def _as_number(x: Any) -> float | None:
    if is_finite_number(x):
        return float(x)
    if isinstance(x, str):
        try:
            f = float(x)
        except ValueError:
            return None
        return f if math.isfinite(f) else None
    return None


# ---------------------------------------------------------------------------
# Finnhub
# ---------------------------------------------------------------------------

def eps_points_by_year(rows: list[dict[str, Any]]) -> list[tuple[int, float]]:
    """Year -> EPS from estimate rows, later rows overwrite earlier ones; ascending."""
    by_year: dict[int, float] = {}
    for row in rows:
        year = _as_number(row.get("year"))
        if year is None:
            year = _as_number(str(row.get("period") or "")[:4])
        eps = None
        for key in ("epsAvg", "eps", "estimate"):
            eps = _as_number(row.get(key))
            if eps is not None:
                break
        if year and eps is not None:
            by_year[int(year)] = eps
    return sorted(by_year.items())


def growth_from_eps_estimates(ticker: str, rows: list[dict[str, Any]],
                              years: int) -> AnalystGrowthEstimate | None:
    points = eps_points_by_year(rows)
    if len(points) < 2:
        return None

    start_year, start_eps = points[0]
    target_year = start_year + years
    end_year, end_eps = next((p for p in points if p[0] >= target_year), points[-1])
    years_actual = max(1, end_year - start_year)

    if not (start_eps > 0 and end_eps > 0):
        return None

    growth = (end_eps / start_eps) ** (1 / years_actual) - 1
    return AnalystGrowthEstimate(
        ticker=ticker,
        analyst_growth=growth,
        source=SOURCE_FINNHUB,
        years_requested=years,
        years_actual=years_actual,
        start={"year": start_year, "eps": start_eps},
        end={"year": end_year, "eps": end_eps},
    )


# ---------------------------------------------------------------------------
# Yahoo
# ---------------------------------------------------------------------------

def _raw(node: Any, *path: str) -> float | None:
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return float(node) if is_finite_number(node) else None


def growth_from_quote_summary(ticker: str, summary: dict[str, Any]) -> AnalystGrowthEstimate:
    earnings_growth = _raw(summary, "financialData", "earningsGrowth", "raw")
    if earnings_growth is not None:
        return AnalystGrowthEstimate(
            ticker=ticker, analyst_growth=earnings_growth, source=SOURCE_YAHOO,
            source_field="financialData.earningsGrowth",
            note="Yahoo unofficial. This may not be the same as long-term analyst growth "
                 "but is forecast-oriented.",
        )

    trend = (summary.get("earningsTrend") or {}).get("trend") if isinstance(summary, dict) else None
    trend = [t for t in trend if isinstance(t, dict)] if isinstance(trend, list) else []
    plus5 = next((t for t in trend if t.get("period") == "+5y"), None)
    trend_growth = _raw(plus5, "growth", "raw") if plus5 else None
    if trend_growth is not None:
        return AnalystGrowthEstimate(
            ticker=ticker, analyst_growth=trend_growth, source=SOURCE_YAHOO,
            source_field="earningsTrend.trend[+5y].growth",
            note="Yahoo unofficial. +5y only exists for some tickers.",
        )

    trailing = _raw(summary, "defaultKeyStatistics", "trailingEps", "raw")
    forward = _raw(summary, "defaultKeyStatistics", "forwardEps", "raw")
    proxy = forward / trailing - 1 if trailing and forward and trailing > 0 and forward > 0 else None

    return AnalystGrowthEstimate(
        ticker=ticker, analyst_growth=proxy, source=SOURCE_YAHOO,
        source_field="defaultKeyStatistics.forwardEps vs trailingEps (proxy)" if proxy is not None else None,
        reason="No usable Yahoo growth fields found" if proxy is None else None,
        debug_periods=[str(t["period"]) for t in trend if t.get("period")],
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def estimate_analyst_growth(
    ticker: str,
    years: int,
    finnhub_api_key: str = "",
    fetch_eps_estimates: EpsEstimateFetcher = finnhub_client.fetch_eps_estimates,
    fetch_quote_summary: QuoteSummaryFetcher = yahoo_client.fetch_analyst_summary,
) -> AnalystGrowthEstimate:
    if finnhub_api_key:
        try:
            rows = await fetch_eps_estimates(ticker, finnhub_api_key)
        except UpstreamDataError as exc:
            if exc.status_code is not None and exc.status_code != 403:
                logger.warning("[AnalystGrowth] %s: Finnhub status=%s, not falling back", ticker, exc.status_code)
                return AnalystGrowthEstimate(
                    ticker=ticker, analyst_growth=None, source=SOURCE_FINNHUB,
                    reason=f"Finnhub returned {exc.status_code}",
                )
            logger.info("[AnalystGrowth] %s: Finnhub unavailable (%s), trying Yahoo", ticker, exc)
        else:
            estimate = growth_from_eps_estimates(ticker, rows, years)
            if estimate is not None:
                logger.info("[AnalystGrowth] %s: finnhub growth=%.4f over %d years",
                            ticker, estimate.analyst_growth, estimate.years_actual)
                return estimate
            logger.info("[AnalystGrowth] %s: Finnhub rows unusable (%d rows), trying Yahoo", ticker, len(rows))

    try:
        summary = await fetch_quote_summary(ticker)
    except UpstreamDataError as exc:
        logger.warning("[AnalystGrowth] %s: Yahoo fallback failed: %s", ticker, exc)
        reason = (f"Yahoo returned {exc.status_code}" if exc.status_code is not None
                  else "Yahoo raw fallback failed")
        return AnalystGrowthEstimate(ticker=ticker, analyst_growth=None, source=SOURCE_YAHOO, reason=reason)

    estimate = growth_from_quote_summary(ticker, summary)
    logger.info("[AnalystGrowth] %s: yahoo field=%s growth=%s", ticker, estimate.source_field, estimate.analyst_growth)
    return estimate
