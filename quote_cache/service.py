"""Wires the cache, queue, router, rate limiter, worker and resolver together.

The API process and the Dagster jobs share one lazily built
``QuoteService`` per process via :func:`get_service`.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Set

from .backends import build_backends
from .cache_store import CacheStore
from .clock import SystemClock
from .config import RefreshSettings, get_refresh_settings
from .errors import StoreUnavailable
from .rate_limiter import BackoffTracker, RateLimiter
from .refresh_queue import RefreshQueue
from .resolver import Resolver
from .routing import SourceRegistry, SourceRouter
from .staleness import StalenessPolicy
from .worker import RefreshWorker

logger = logging.getLogger(__name__)


class QuoteService:
    def __init__(
        self,
        cache_backend=None,
        queue_backend=None,
        router: Optional[SourceRouter] = None,
        clock=None,
        settings: Optional[RefreshSettings] = None,
        market_open=None,
    ) -> None:
        self.settings = settings or get_refresh_settings()
        self.clock = clock or SystemClock()
        self.policy = StalenessPolicy.from_settings(self.settings, self.clock)
        self.queue = RefreshQueue(queue_backend)
        self.cache = CacheStore(cache_backend, self.policy, queue=self.queue)
        self.router = router or SourceRouter.from_settings()
        self.limiter = RateLimiter(self.settings.call_interval_ms, self.clock)
        self.backoff = BackoffTracker(
            self.settings.backoff_initial_seconds,
            self.settings.backoff_max_seconds,
            self.clock,
        )
        self.registry = SourceRegistry()
        self.resolver = Resolver(
            self.cache,
            self.queue,
            self.router,
            backoff=self.backoff,
            max_workers=self.settings.resolver_max_workers,
        )
        worker_kwargs = {}
        if market_open is not None:
            worker_kwargs["market_open"] = market_open
        self.worker = RefreshWorker(
            self.cache,
            self.queue,
            self.router,
            self.limiter,
            self.backoff,
            clock=self.clock,
            interval_ms=self.settings.worker_interval_ms,
            market_hours_gating=self.settings.market_hours_gating,
            **worker_kwargs,
        )
        self._closed = False

    @classmethod
    def from_env(cls) -> "QuoteService":
        cache_backend, queue_backend = build_backends()
        return cls(cache_backend, queue_backend)

    def start(self) -> None:
        self.discover_sources()
        if self.settings.start_refresh_worker:
            self.worker.start()
        else:
            logger.info("[service] refresh worker disabled (START_REFRESH_WORKER=false)")

    def discover_sources(self) -> Set[str]:
        """Add providers found in the cache to the source registry."""
        try:
            return self.registry.discover(self.cache.list_sources())
        except StoreUnavailable as e:
            logger.warning("[service] source discovery skipped: %s", e)
            return set()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.worker.stop()
        self.cache.close()
        self.queue.close()
        logger.info("[service] closed")


_service: Optional[QuoteService] = None
_service_lock = threading.Lock()


def get_service() -> QuoteService:
    """Return the process-wide service, building it on first use."""
    global _service
    with _service_lock:
        if _service is None:
            _service = QuoteService.from_env()
        return _service


def shutdown_service() -> None:
    global _service
    with _service_lock:
        service, _service = _service, None
    if service is not None:
        service.close()
