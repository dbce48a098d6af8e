"""
SEC EDGAR client.

Endpoints:
  https://www.sec.gov/files/company_tickers.json             ticker -> CIK map
  https://data.sec.gov/api/xbrl/companyfacts/CIK{cik10}.json XBRL companyfacts

Rate limiting:
  SEC asks for <= 10 requests/second and a descriptive User-Agent.
  REQUEST_INTERVAL_MS = 120 between requests (per client instance).
  maxRetries = 3; on 429/5xx: backoff = 2^attempt * 500 + random(500) ms.
  Other non-2xx responses fail immediately.

Every failure surfaces as UpstreamDataError.
"""

import asyncio
import logging
import random
import time
from typing import Any

import httpx

from stickerlens.errors import UpstreamDataError

logger = logging.getLogger(__name__)

SEC_TICKERS_URL: str = "https://www.sec.gov/files/company_tickers.json"
SEC_COMPANYFACTS_URL: str = "https://data.sec.gov/api/xbrl/companyfacts/CIK{cik}.json"

_REQUEST_INTERVAL_MS: int = 120
_MAX_RETRIES: int = 3
_TIMEOUT_S: float = 30.0


class SecClient:
    def __init__(self, user_agent: str, client: httpx.AsyncClient | None = None):
        self.user_agent = user_agent
        self._client = client
        self._ticker_to_cik: dict[str, str] | None = None
        self._last_request_ms: float = 0.0
        self._gate_lock = asyncio.Lock()

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.user_agent, "Accept": "application/json"}

    async def _wait_turn(self) -> None:
        async with self._gate_lock:
            lag = time.time() * 1000 - self._last_request_ms
            if lag < _REQUEST_INTERVAL_MS:
                await asyncio.sleep((_REQUEST_INTERVAL_MS - lag) / 1000)
            self._last_request_ms = time.time() * 1000

    async def _get_json(self, url: str) -> Any:
        for attempt in range(1, _MAX_RETRIES + 1):
            await self._wait_turn()
            try:
                if self._client is not None:
                    resp = await self._client.get(url, headers=self._headers(), timeout=_TIMEOUT_S)
                else:
                    async with httpx.AsyncClient() as client:
                        resp = await client.get(url, headers=self._headers(), timeout=_TIMEOUT_S)
            except httpx.HTTPError as exc:
                logger.warning("[SEC] attempt %d/%d network error: %s", attempt, _MAX_RETRIES, exc)
                if attempt == _MAX_RETRIES:
                    raise UpstreamDataError("sec", f"request failed after {_MAX_RETRIES} attempts: {exc}") from exc
                continue

            if resp.status_code == 429 or resp.status_code >= 500:
                backoff_ms = (2 ** attempt) * 500 + random.random() * 500
                logger.warning("[SEC][%d] backing off %.0fms (attempt %d/%d)",
                               resp.status_code, backoff_ms, attempt, _MAX_RETRIES)
                if attempt < _MAX_RETRIES:
                    await asyncio.sleep(backoff_ms / 1000)
                    continue
                raise UpstreamDataError("sec", f"status={resp.status_code} after {_MAX_RETRIES} attempts",
                                        resp.status_code)

            if not resp.is_success:
                raise UpstreamDataError("sec", f"status={resp.status_code}. Body={resp.text[:300]}",
                                        resp.status_code)
            try:
                return resp.json()
            except ValueError as exc:
                raise UpstreamDataError("sec", f"invalid JSON from {url}") from exc

        raise UpstreamDataError("sec", "exhausted all attempts")

    async def get_ticker_to_cik_map(self) -> dict[str, str]:
        """Ticker -> zero-padded 10 digit CIK. Fetched once per client."""
        if self._ticker_to_cik is not None:
            return self._ticker_to_cik

        data = await self._get_json(SEC_TICKERS_URL)
        mapping: dict[str, str] = {}
        rows = data.values() if isinstance(data, dict) else []
        for row in rows:
            if not isinstance(row, dict):
                continue
            ticker = str(row.get("ticker") or "").upper()
            cik_raw = str(row.get("cik_str") or "")
            if ticker and cik_raw:
                mapping[ticker] = cik_raw.zfill(10)

        logger.info("[SEC] loaded %d ticker->CIK mappings", len(mapping))
        self._ticker_to_cik = mapping
        return mapping

    async def get_cik_for_ticker(self, ticker: str) -> str:
        mapping = await self.get_ticker_to_cik_map()
        cik10 = mapping.get(ticker.strip().upper())
        if not cik10:
            raise UpstreamDataError("sec", f"No SEC CIK found for ticker {ticker}")
        return cik10

    async def get_raw_facts(self, cik10: str) -> dict[str, Any]:
        data = await self._get_json(SEC_COMPANYFACTS_URL.format(cik=cik10))
        if not isinstance(data, dict):
            raise UpstreamDataError("sec", f"unexpected companyfacts payload for CIK{cik10}")
        return data
