"""Staleness policy: decides whether a cached entry needs a refresh.

Staleness is a logical property computed here from ``fetched_at`` and the
entry's source class. Backends never evict on their own, so a stale entry is
still served while a refresh is pending.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from .clock import SystemClock
from .config import RefreshSettings
from .models import CacheEntry, SourceClass


class StalenessPolicy:
    """Per-source-class thresholds and TTLs."""

    def __init__(
        self,
        thresholds: Mapping[SourceClass, float],
        ttls: Optional[Mapping[SourceClass, int]] = None,
        clock=None,
    ) -> None:
        missing = [c for c in SourceClass if c not in thresholds]
        if missing:
            raise ValueError(f"missing staleness thresholds for {missing}")
        self.thresholds: Dict[SourceClass, float] = dict(thresholds)
        self.ttls: Dict[SourceClass, int] = dict(ttls) if ttls else {c: int(t) for c, t in thresholds.items()}
        self.clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: RefreshSettings, clock=None) -> "StalenessPolicy":
        return cls(
            thresholds={
                SourceClass.FAST: settings.fast_stale_threshold_seconds,
                SourceClass.SLOW: settings.slow_stale_threshold_seconds,
            },
            ttls={
                SourceClass.FAST: settings.fast_ttl_seconds,
                SourceClass.SLOW: settings.slow_ttl_seconds,
            },
            clock=clock,
        )

    def threshold_for(self, source_class: SourceClass) -> float:
        return self.thresholds[source_class]

    def ttl_for(self, source_class: SourceClass) -> int:
        return self.ttls.get(source_class, int(self.thresholds[source_class]))

    def age(self, entry: Optional[CacheEntry]) -> Optional[float]:
        """Seconds since the entry was fetched, or None when absent."""
        if entry is None:
            return None
        return max(0.0, self.clock.now() - entry.fetched_at)

    def is_stale(self, entry: Optional[CacheEntry]) -> bool:
        """True when absent or when age has reached the class threshold."""
        if entry is None:
            return True
        return self.clock.now() - entry.fetched_at >= self.thresholds[entry.source_class]
