"""Warm the cache for the tracked symbols.

Used by the Dagster asset. Symbols are resolved through the normal read path,
so fresh entries are left alone, stale ones are served and queued for the
worker, and missing ones are fetched synchronously. Symbols that could not be
resolved at all are queued with the never-cached priority so the worker
retries them under the rate limiter.
"""
from __future__ import annotations

import importlib
import logging
from typing import Dict, List, Optional

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

TRACKLIST_MODULE = "quote_cache.tracklist"


def _normalize_symbols(symbols: Optional[List[str]]) -> List[str]:
    out: List[str] = []
    for s in symbols or []:
        if isinstance(s, str) and s.strip() and s.strip().upper() not in out:
            out.append(s.strip().upper())
    return out


def read_tracked_symbols() -> List[str]:
    """Return the symbols listed in ``quote_cache/tracklist.py``.

    The module is reloaded on every call so edits are picked up without a
    restart. Any import problem yields an empty list.
    """
    try:
        mod = importlib.import_module(TRACKLIST_MODULE)
        mod = importlib.reload(mod)
    except Exception as e:
        logger.error("[warmup] unable to load tracklist: %s", e)
        return []
    syms = getattr(mod, "track", [])
    if not isinstance(syms, list):
        return []
    return _normalize_symbols(syms)


def refresh_tracked_quotes(symbols: List[str], service=None) -> Dict[str, Optional[dict]]:
    """Resolve ``symbols`` and queue the ones that could not be resolved.

    Returns
    -------
    dict[str, Optional[dict]]
        Mapping of symbol to its resolved quote, or None on failure.
    """
    syms = _normalize_symbols(symbols)
    if not syms:
        return {}
    if service is None:
        from .service import get_service
        service = get_service()

    outcome = service.resolver.resolve_many(syms)
    results: Dict[str, Optional[dict]] = {s: None for s in syms}
    for quote in outcome["succeeded"]:
        results[quote["ticker"]] = quote

    for sym in outcome["failed"]:
        if sym not in results or service.router.is_derived(sym):
            continue
        try:
            service.queue.enqueue(sym)
        except StoreUnavailable as e:
            logger.warning("[warmup] could not queue %s: %s", sym, e)
    logger.info(
        "[warmup] tracked=%d resolved=%d failed=%s",
        len(syms),
        len(outcome["succeeded"]),
        outcome["failed"],
    )
    return results
