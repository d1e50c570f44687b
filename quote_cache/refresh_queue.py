"""Priority queue of tickers waiting for a background refresh.

Priority is the cache age in seconds at enqueue time, so the most stale ticker
is always processed first. Tickers that have never been cached get
``NEVER_CACHED_PRIORITY`` and jump ahead of everything else. Members are
unique: enqueueing a ticker that is already queued replaces its priority.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from .backends import MemoryQueueBackend
from .models import NEVER_CACHED_PRIORITY, normalize_ticker

logger = logging.getLogger(__name__)


class RefreshQueue:
    def __init__(self, backend=None) -> None:
        self.backend = backend if backend is not None else MemoryQueueBackend()

    def enqueue(self, key: str, age_seconds: Optional[float] = None) -> float:
        """Add ``key`` (or update its priority); returns the priority used."""
        sym = normalize_ticker(key)
        priority = NEVER_CACHED_PRIORITY if age_seconds is None else max(0.0, float(age_seconds))
        self.backend.add(sym, priority)
        logger.debug("[queue] enqueued %s priority=%.1f", sym, priority)
        return priority

    def dequeue_oldest(self) -> Optional[str]:
        """Remove and return the highest-priority ticker, or None when empty."""
        top = self.backend.pop_max()
        return top[0] if top else None

    def peek_oldest(self) -> Optional[str]:
        top = self.backend.peek_max()
        return top[0] if top else None

    def remove(self, key: str) -> None:
        self.backend.remove(normalize_ticker(key))

    def priority(self, key: str) -> Optional[float]:
        return self.backend.score(normalize_ticker(key))

    def entries(self) -> List[Tuple[str, float]]:
        """``(ticker, priority)`` pairs, highest priority first."""
        return self.backend.entries()

    def close(self) -> None:
        self.backend.close()

    def __len__(self) -> int:
        return len(self.backend)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        try:
            return self.priority(key) is not None
        except ValueError:
            return False
