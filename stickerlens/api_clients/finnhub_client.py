"""
Finnhub API client (analyst EPS estimates).

Rate limiting:
  REQUEST_INTERVAL_MS = 1100  (1.1 s between requests, enforced globally)
  maxRetries = 3
  On 429: exponential backoff = 2^attempt * 1000 + random(1000) ms
  Other non-2xx statuses raise UpstreamDataError(status_code=...) at once so
  callers can tell "forbidden for this plan" (403) from real failures.
"""

import asyncio
import logging
import random
import time
from typing import Any
from urllib.parse import urlencode

import httpx

from stickerlens.errors import UpstreamDataError

logger = logging.getLogger(__name__)

_BASE_URL: str = "https://finnhub.io/api/v1"
_REQUEST_INTERVAL_MS: int = 1100
_MAX_RETRIES: int = 3

_last_request_time_ms: float = 0.0
_gate_lock = asyncio.Lock()


async def gated_fetch(url: str) -> Any:
    """
    Rate-limited fetch with retry on 429.
      - enforces 1100 ms between requests (global)
      - on 429: backoff = 2^attempt * 1000 + random(1000) ms, up to maxRetries
      - on network errors: retry, raise after maxRetries
    """
    global _last_request_time_ms

    for attempt in range(1, _MAX_RETRIES + 1):
        async with _gate_lock:
            lag = time.time() * 1000 - _last_request_time_ms
            if lag < _REQUEST_INTERVAL_MS:
                await asyncio.sleep((_REQUEST_INTERVAL_MS - lag) / 1000)
            _last_request_time_ms = time.time() * 1000

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(url, headers={"accept": "application/json"}, timeout=30)
        except httpx.HTTPError as exc:
            logger.warning("[Finnhub] attempt %d/%d failed: %s", attempt, _MAX_RETRIES, exc)
            if attempt == _MAX_RETRIES:
                raise UpstreamDataError("finnhub", f"fetch failed after {_MAX_RETRIES} attempts: {exc}") from exc
            continue

        if resp.status_code == 429:
            backoff_ms = (2 ** attempt) * 1000 + random.random() * 1000
            logger.warning("[Finnhub][429] backing off %.0fms (attempt %d/%d)",
                           backoff_ms, attempt, _MAX_RETRIES)
            if attempt < _MAX_RETRIES:
                await asyncio.sleep(backoff_ms / 1000)
                continue
            raise UpstreamDataError("finnhub", f"rate limited after {_MAX_RETRIES} attempts", 429)

        if not resp.is_success:
            raise UpstreamDataError("finnhub", f"Finnhub returned {resp.status_code}: {resp.text[:300]}",
                                    resp.status_code)
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamDataError("finnhub", "invalid JSON body", resp.status_code) from exc

    raise UpstreamDataError("finnhub", "gated_fetch: exhausted all attempts")


def _build_url(path: str, **params: str) -> str:
    return f"{_BASE_URL}/{path}?{urlencode(params)}"


async def fetch_eps_estimates(ticker: str, api_key: str) -> list[dict[str, Any]]:
    """GET /stock/eps-estimate?symbol={ticker} -> rows of {year|period, epsAvg, ...}."""
    if not api_key:
        raise UpstreamDataError("finnhub", "FINNHUB_API_KEY is not set")
    url = _build_url("stock/eps-estimate", symbol=ticker, token=api_key)
    data = await gated_fetch(url)
    rows = data.get("data") if isinstance(data, dict) else None
    return [r for r in rows if isinstance(r, dict)] if isinstance(rows, list) else []
