"""
Process-lifetime, per-symbol memoization.

A SymbolCache is an explicit, injectable object rather than module state:
  - keys are normalized tickers (strip + upper)
  - bounded: least recently used symbols are evicted past max_entries
  - all-or-nothing: get_or_load stores a value only after the loader
    returns successfully; a failed load leaves no partial entry behind
  - single-flight per symbol: concurrent loads of the same symbol share
    one upstream fetch
  - clear() / invalidate() for tests and manual refreshes; a load that is
    in flight when its symbol is invalidated returns its value to its own
    callers but does not store it
"""

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


class SymbolCache(Generic[T]):
    def __init__(self, name: str, max_entries: int = 64):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.name = name
        self.max_entries = max_entries
        self._entries: OrderedDict[str, T] = OrderedDict()
        # Locks outlive invalidate() and clear() so an in-flight load keeps
        # excluding new loaders of the same symbol.
        self._locks: dict[str, asyncio.Lock] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, symbol: str) -> bool:
        return normalize_symbol(symbol) in self._entries

    def get(self, symbol: str) -> T | None:
        key = normalize_symbol(symbol)
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def put(self, symbol: str, value: T) -> None:
        key = normalize_symbol(symbol)
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("[Cache][%s] evicted %s", self.name, evicted)

    def _stamp(self, key: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(key, 0)

    def invalidate(self, symbol: str) -> bool:
        key = normalize_symbol(symbol)
        self._generations[key] = self._generations.get(key, 0) + 1
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._epoch += 1
        self._entries.clear()

    async def get_or_load(self, symbol: str, loader: Callable[[str], Awaitable[T]]) -> T:
        key = normalize_symbol(symbol)
        cached = self.get(key)
        if cached is not None:
            logger.debug("[Cache][%s] hit %s", self.name, key)
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Re-check after acquiring the lock
            cached = self.get(key)
            if cached is not None:
                return cached
            logger.debug("[Cache][%s] miss %s, loading", self.name, key)
            stamp = self._stamp(key)
            value = await loader(key)
            if self._stamp(key) == stamp:
                self.put(key, value)
            else:
                logger.debug("[Cache][%s] %s invalidated during load, not storing", self.name, key)
            return value
