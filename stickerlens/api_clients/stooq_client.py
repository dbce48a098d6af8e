"""
Stooq price client.

  latest close   GET https://stooq.com/q/l/?s={ticker}.us&i=d
  daily history  GET https://stooq.com/q/d/l/?s={ticker}.us&i=d

Retry policy: 3 attempts; network errors and 429/5xx back off
500 ms * 2^(attempt-1) +/- 20 % jitter. Other non-2xx responses fail
immediately with UpstreamDataError, as does a history body with no
usable rows (Stooq answers 200 "No data" when throttled).
"""

import asyncio
import logging
import random

import httpx

from stickerlens.errors import UpstreamDataError
from stickerlens.normalizers import stooq_normalizer
from stickerlens.series import DailyClose

logger = logging.getLogger(__name__)

STOOQ_LATEST_URL: str = "https://stooq.com/q/l/"
STOOQ_HISTORY_URL: str = "https://stooq.com/q/d/l/"
STOOQ_HEADERS: dict[str, str] = {"User-Agent": "Mozilla/5.0", "Accept": "text/csv,*/*"}

_FETCH_MAX_ATTEMPTS: int = 3
_FETCH_BASE_DELAY_MS: int = 500


def stooq_symbol(ticker: str) -> str:
    return f"{ticker.strip()}.US".lower()


def _add_jitter(delay_ms: float) -> float:
    jitter = 0.2 * delay_ms * (random.random() - 0.5) * 2
    return max(0.0, delay_ms + jitter)


class StooqClient:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def _get_text(self, url: str, params: dict[str, str]) -> str:
        for attempt in range(1, _FETCH_MAX_ATTEMPTS + 1):
            try:
                if self._client is not None:
                    resp = await self._client.get(url, params=params, headers=STOOQ_HEADERS, timeout=30)
                else:
                    async with httpx.AsyncClient() as client:
                        resp = await client.get(url, params=params, headers=STOOQ_HEADERS, timeout=30)
            except httpx.HTTPError as exc:
                if attempt == _FETCH_MAX_ATTEMPTS:
                    raise UpstreamDataError("stooq", f"network error after retries: {exc}") from exc
                delay_s = _add_jitter(_FETCH_BASE_DELAY_MS * (2 ** (attempt - 1))) / 1000
                logger.warning("[Stooq] network error attempt=%d, sleeping %.1fs: %s", attempt, delay_s, exc)
                await asyncio.sleep(delay_s)
                continue

            if resp.status_code == 429 or resp.status_code >= 500:
                if attempt == _FETCH_MAX_ATTEMPTS:
                    raise UpstreamDataError("stooq", f"status={resp.status_code} after retries",
                                            resp.status_code)
                delay_s = _add_jitter(_FETCH_BASE_DELAY_MS * (2 ** (attempt - 1))) / 1000
                logger.warning("[Stooq] status=%d, sleeping %.1fs", resp.status_code, delay_s)
                await asyncio.sleep(delay_s)
                continue

            if not resp.is_success:
                raise UpstreamDataError("stooq", f"status={resp.status_code}. Body={resp.text[:300]}",
                                        resp.status_code)
            return resp.text

        raise UpstreamDataError("stooq", "exhausted all attempts")

    async def fetch_latest_close(self, ticker: str) -> float | None:
        text = await self._get_text(STOOQ_LATEST_URL, {"s": stooq_symbol(ticker), "i": "d"})
        return stooq_normalizer.parse_latest_close(text)

    async def fetch_daily_closes(self, ticker: str) -> list[DailyClose]:
        text = await self._get_text(STOOQ_HISTORY_URL, {"s": stooq_symbol(ticker), "i": "d"})
        closes = stooq_normalizer.parse_daily_history(ticker, text)
        if not closes:
            # Stooq answers 200 "No data" when throttled or for unknown symbols
            raise UpstreamDataError("stooq", f"no daily history for {stooq_symbol(ticker)}: {text[:100]!r}")
        logger.info("[Stooq] %s: %d daily closes", ticker, len(closes))
        return closes
