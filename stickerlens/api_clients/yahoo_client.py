"""
Yahoo Finance quoteSummary client (unofficial, raw endpoint).

Only the analyst-oriented modules are requested:
  financialData, defaultKeyStatistics, earningsTrend

fetch: 3 attempts, base delay 700 ms * 2^(attempt-1) +/- 20 % jitter.
  On 429/999/5xx or an HTML body: backoff and retry.
  On other 4xx: fail immediately.
"""

import asyncio
import logging
import random
from typing import Any

import httpx

from stickerlens.errors import UpstreamDataError

logger = logging.getLogger(__name__)

YAHOO_USER_AGENT: str = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120 Safari/537.36"
)
QUOTE_SUMMARY_URL: str = "https://query2.finance.yahoo.com/v10/finance/quoteSummary/{ticker}"
ANALYST_MODULES: str = "financialData,defaultKeyStatistics,earningsTrend"

_FETCH_MAX_ATTEMPTS: int = 3
_FETCH_BASE_DELAY_MS: int = 700


def _add_jitter(delay_ms: float) -> float:
    jitter = 0.2 * delay_ms * (random.random() - 0.5) * 2
    return max(0.0, delay_ms + jitter)


async def _backoff(attempt: int, reason: str) -> None:
    delay_s = _add_jitter(_FETCH_BASE_DELAY_MS * (2 ** (attempt - 1))) / 1000
    logger.warning("[Yahoo][Fetch] %s, sleeping %.1fs", reason, delay_s)
    await asyncio.sleep(delay_s)


async def fetch_analyst_summary(ticker: str, client: httpx.AsyncClient | None = None) -> dict[str, Any]:
    """
    quoteSummary result[0] for the analyst modules, or {} on an empty payload.
    Raises UpstreamDataError once retries are exhausted.
    """
    url = QUOTE_SUMMARY_URL.format(ticker=ticker)
    params = {"modules": ANALYST_MODULES}
    headers = {"user-agent": YAHOO_USER_AGENT, "accept": "application/json"}

    for attempt in range(1, _FETCH_MAX_ATTEMPTS + 1):
        last = attempt == _FETCH_MAX_ATTEMPTS
        try:
            if client is not None:
                resp = await client.get(url, params=params, headers=headers, timeout=30)
            else:
                async with httpx.AsyncClient() as c:
                    resp = await c.get(url, params=params, headers=headers, timeout=30)
        except httpx.HTTPError as exc:
            if last:
                raise UpstreamDataError("yahoo", f"network error after retries: {exc}") from exc
            await _backoff(attempt, f"network error attempt={attempt}: {exc}")
            continue

        if resp.status_code in (429, 999) or resp.status_code >= 500:
            if last:
                raise UpstreamDataError("yahoo", f"Yahoo returned {resp.status_code}", resp.status_code)
            await _backoff(attempt, f"rate/server error status={resp.status_code}")
            continue

        if resp.status_code >= 400:
            raise UpstreamDataError("yahoo", f"Yahoo returned {resp.status_code}", resp.status_code)

        if resp.text.lstrip().startswith("<"):
            if last:
                raise UpstreamDataError("yahoo", "Received HTML instead of JSON")
            await _backoff(attempt, "got HTML")
            continue

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamDataError("yahoo", "invalid JSON body") from exc

        results = (data.get("quoteSummary") or {}).get("result") if isinstance(data, dict) else None
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            logger.warning("[Yahoo][QuoteSummary] Empty/invalid payload for %s", ticker)
            return {}
        return results[0]

    raise UpstreamDataError("yahoo", "fetch exhausted all attempts")
