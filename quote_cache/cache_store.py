"""Quote cache on top of a pluggable backend.

Entries are written whole and never expire at the store level; the
``StalenessPolicy`` decides when one needs refreshing. A successful ``set``
also drops the ticker from the refresh queue, since the refresh it was waiting
for has just happened.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Set

from .backends import MemoryCacheBackend
from .errors import QueueUnavailable
from .models import CacheEntry, SourceClass, normalize_ticker
from .staleness import StalenessPolicy

logger = logging.getLogger(__name__)


class CacheStore:
    def __init__(self, backend=None, policy: Optional[StalenessPolicy] = None, queue=None) -> None:
        self.backend = backend if backend is not None else MemoryCacheBackend()
        if policy is None:
            policy = StalenessPolicy({SourceClass.FAST: 300, SourceClass.SLOW: 2340})
        self.policy = policy
        self.queue = queue

    @property
    def clock(self):
        return self.policy.clock

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the cached entry for ``key`` or None.

        Raises ``CacheUnavailable`` when the backend cannot be reached. A
        document that cannot be decoded is treated as absent.
        """
        sym = normalize_ticker(key)
        doc = self.backend.get(sym)
        if doc is None:
            return None
        try:
            return CacheEntry.from_document(doc)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("[cache] unreadable entry for %s ignored: %s", sym, e)
            return None

    def set(
        self,
        key: str,
        payload: Dict[str, Any],
        source_class: SourceClass,
        source: Optional[str] = None,
    ) -> CacheEntry:
        """Stamp, store and return a new entry for ``key``."""
        sym = normalize_ticker(key)
        source_class = SourceClass.parse(source_class)
        entry = CacheEntry(
            key=sym,
            payload=dict(payload),
            fetched_at=self.clock.now(),
            source_class=source_class,
            ttl_seconds=self.policy.ttl_for(source_class),
            source=source or (payload.get("api_metadata") or {}).get("source"),
        )
        self.backend.upsert(sym, entry.to_document())
        logger.info("[cache] stored %s source=%s class=%s", sym, entry.source, source_class.value)
        if self.queue is not None:
            try:
                self.queue.remove(sym)
            except QueueUnavailable as e:
                logger.warning("[cache] could not clear queued refresh for %s: %s", sym, e)
        return entry

    def remove(self, key: str) -> None:
        self.backend.delete(normalize_ticker(key))

    def age(self, key: str) -> Optional[float]:
        return self.policy.age(self.get(key))

    def is_stale(self, key: str) -> bool:
        return self.policy.is_stale(self.get(key))

    def list_sources(self) -> Set[str]:
        return set(self.backend.list_sources())

    def close(self) -> None:
        self.backend.close()
