"""Read path: cache first, stale-while-refresh, synchronous fetch on a miss.

``resolve_one`` never raises for unavailable data. It returns the quote as a
dict (payload fields, ``ticker`` and ``metadata``) or None when nothing can be
produced. ``resolve_many`` fans out over a thread pool and partitions the
result into ``succeeded`` and ``failed``.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import FetchError, StoreUnavailable
from .models import SourceClass, normalize_ticker

logger = logging.getLogger(__name__)

# Fields scaled by the divisor of a derived ticker; percent_change is kept.
DERIVED_FIELDS = ("price", "change", "high_price", "low_price", "open_price", "previous_close")


def _result(
    ticker: str,
    payload: Dict[str, Any],
    fetched_at: float,
    source: Optional[str],
    source_class: SourceClass,
) -> Dict[str, Any]:
    result = dict(payload)
    result["ticker"] = ticker
    result["metadata"] = {
        "fetched_at": fetched_at,
        "source": source,
        "source_class": source_class.value,
    }
    return result


class Resolver:
    def __init__(self, cache, queue, router, backoff=None, max_workers: int = 8) -> None:
        self.cache = cache
        self.queue = queue
        self.router = router
        self.backoff = backoff
        self.max_workers = max(1, max_workers)

    def resolve_one(self, ticker: str) -> Optional[Dict[str, Any]]:
        """Resolve one ticker; None when it cannot be resolved."""
        try:
            sym = normalize_ticker(ticker)
        except ValueError as e:
            logger.warning("[resolver] invalid ticker %r: %s", ticker, e)
            return None
        return self._resolve(sym, frozenset())

    def _resolve(self, sym: str, seen: frozenset) -> Optional[Dict[str, Any]]:
        derived = self.router.derived(sym)
        if derived is not None:
            base, divisor = derived
            if base in seen or base == sym:
                logger.error("[resolver] derived ticker cycle at %s -> %s", sym, base)
                return None
            base_result = self._resolve(base, seen | {sym})
            if base_result is None:
                logger.warning("[resolver] base %s unavailable for derived %s", base, sym)
                return None
            return self._derive(sym, base, divisor, base_result)

        try:
            entry = self.cache.get(sym)
        except StoreUnavailable as e:
            logger.warning("[resolver] cache unavailable for %s, fetching directly: %s", sym, e)
            entry = None

        if entry is None:
            return self._fetch_now(sym)

        if self.cache.policy.is_stale(entry):
            self._enqueue_refresh(sym, self.cache.policy.age(entry))
            logger.info("[resolver] %s stale, serving cached copy", sym)
        return _result(sym, entry.payload, entry.fetched_at, entry.source, entry.source_class)

    def _enqueue_refresh(self, sym: str, age: Optional[float]) -> None:
        # Best effort: a queue outage must not fail the read
        try:
            self.queue.enqueue(sym, age)
        except Exception as e:
            logger.warning("[resolver] could not enqueue refresh for %s: %s", sym, e)

    def _fetch_now(self, sym: str) -> Optional[Dict[str, Any]]:
        try:
            quote, route = self.router.fetch(sym)
        except FetchError as e:
            logger.warning("[resolver] fetch failed for %s: %s", sym, e)
            return None
        except Exception as e:
            logger.exception("[resolver] unexpected error fetching %s: %s", sym, e)
            return None

        payload = quote.to_dict()
        source = quote.source or route.provider
        fetched_at = self.cache.clock.now()
        try:
            entry = self.cache.set(sym, payload, route.source_class, source=source)
            fetched_at = entry.fetched_at
        except StoreUnavailable as e:
            logger.warning("[resolver] could not cache %s: %s", sym, e)
        if self.backoff is not None:
            self.backoff.clear(sym)
        logger.info("[resolver] fetched %s from %s", sym, route.provider)
        return _result(sym, payload, fetched_at, source, route.source_class)

    def _derive(self, sym: str, base: str, divisor: float, base_result: Dict[str, Any]) -> Dict[str, Any]:
        result = dict(base_result)
        for name in DERIVED_FIELDS:
            value = result.get(name)
            if isinstance(value, (int, float)):
                result[name] = value / divisor
        result["ticker"] = sym
        result["api_metadata"] = dict(base_result.get("api_metadata") or {})
        result["metadata"] = dict(base_result.get("metadata") or {}, derived_from=base)
        logger.info("[resolver] %s = %s / %s -> %s", sym, base, divisor, result.get("price"))
        return result

    def resolve_many(self, tickers: Iterable[str]) -> Dict[str, List[Any]]:
        """Resolve concurrently; ``{"succeeded": [quote, ...], "failed": [ticker, ...]}``.

        Tickers are canonicalized and de-duplicated, results follow input
        order. Invalid symbols are reported as failed with their raw value.
        """
        # One slot per first occurrence: (canonical symbol, raw input); symbol is None when invalid
        slots: List[Tuple[Optional[str], str]] = []
        seen = set()
        for raw in tickers:
            try:
                sym = normalize_ticker(raw)
            except ValueError:
                slots.append((None, str(raw)))
                continue
            if sym not in seen:
                seen.add(sym)
                slots.append((sym, sym))

        results: Dict[str, Optional[Dict[str, Any]]] = {}
        ordered = [sym for sym, _ in slots if sym is not None]
        if ordered:
            workers = min(self.max_workers, len(ordered))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [(sym, pool.submit(self.resolve_one, sym)) for sym in ordered]
                for sym, fut in futures:
                    try:
                        results[sym] = fut.result()
                    except Exception as e:
                        logger.exception("[resolver] error resolving %s: %s", sym, e)
                        results[sym] = None

        succeeded: List[Dict[str, Any]] = []
        failed: List[str] = []
        for sym, raw in slots:
            result = results.get(sym) if sym is not None else None
            if result is None:
                failed.append(raw)
            else:
                succeeded.append(result)
        logger.info("[resolver] resolved %d ok, %d failed", len(succeeded), len(failed))
        return {"succeeded": succeeded, "failed": failed}
