"""Background refresh worker.

One daemon thread drains the refresh queue, one ticker per tick:

1. peek the most stale ticker (it is not removed yet),
2. drop derived tickers, they are computed from their base,
3. leave the queue alone while the market is closed,
4. drop tickers a concurrent read already refreshed,
5. wait out the ticker's backoff, then the global call spacing,
6. fetch through the router and write the result to the cache.

A rate-limited ticker stays queued with a longer backoff; any other failure
drops it from the queue so a broken ticker cannot loop forever. Every tick
returns an outcome string ("empty", "derived", "market_closed", "fresh",
"refreshed", "rate_limited", "failed", "unavailable", "stopped").
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from .clock import SystemClock
from .errors import ConfigError, FetchError, RateLimited, StoreUnavailable
from .market_hours import is_market_open, seconds_until_market_open
from .rate_limiter import is_rate_limit_error

logger = logging.getLogger(__name__)


class RefreshWorker:
    def __init__(
        self,
        cache,
        queue,
        router,
        limiter,
        backoff,
        clock=None,
        interval_ms: int = 2000,
        market_hours_gating: bool = True,
        market_open: Callable[[datetime], bool] = is_market_open,
    ) -> None:
        self.cache = cache
        self.queue = queue
        self.router = router
        self.limiter = limiter
        self.backoff = backoff
        self.clock = clock or SystemClock()
        self.interval_seconds = max(0, interval_ms) / 1000.0
        self.market_hours_gating = market_hours_gating
        self.market_open = market_open
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return bool(thread and thread.is_alive() and not self._stop_event.is_set())

    def start(self) -> bool:
        """Start the loop thread; refuses while a previous loop is still alive.

        Each start uses a fresh stop event; a loop that outlived ``stop()``
        keeps its own, already set, event.
        """
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                if self._stop_event.is_set():
                    logger.warning("[worker] previous refresh worker is still stopping; not starting")
                else:
                    logger.warning("[worker] refresh worker is already running")
                return False
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                name="quote-refresh-worker",
                daemon=True,
            )
            self._thread.start()
        logger.info("[worker] started (interval=%.1fs)", self.interval_seconds)
        return True

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Stop the loop, waking any in-flight sleep, and join the thread.

        A thread still busy after ``timeout`` stays tracked until it exits.
        """
        with self._lock:
            thread = self._thread
            self._stop_event.set()
        if thread is None:
            return
        current = thread is threading.current_thread()
        if not current:
            thread.join(timeout)
        with self._lock:
            if self._thread is thread and not thread.is_alive():
                self._thread = None
        if thread.is_alive() and not current:
            logger.warning("[worker] refresh worker still busy after %ss; it exits after the current tick", timeout)
        else:
            logger.info("[worker] stopped")

    def _run(self, stop_event: threading.Event) -> None:
        # First tick runs immediately, then one per interval
        while not stop_event.is_set():
            try:
                outcome = self.process_once(stop_event)
                logger.debug("[worker] tick outcome=%s", outcome)
            except Exception as e:
                logger.exception("[worker] unexpected error in tick: %s", e)
            if stop_event.wait(self.interval_seconds):
                break

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock.now(), tz=timezone.utc)

    def process_once(self, stop_event: Optional[threading.Event] = None) -> str:
        """Process at most one queued ticker and return the tick outcome."""
        if stop_event is None:
            stop_event = self._stop_event
        try:
            key = self.queue.peek_oldest()
        except StoreUnavailable as e:
            logger.error("[worker] refresh queue unavailable: %s", e)
            return "unavailable"
        if key is None:
            return "empty"
        try:
            return self._process(key, stop_event)
        except StoreUnavailable as e:
            logger.error("[worker] store unavailable while refreshing %s: %s", key, e)
            return "unavailable"

    def _process(self, key: str, stop_event: threading.Event) -> str:
        if self.router.is_derived(key):
            logger.info("[worker] skipping derived ticker %s", key)
            self.queue.remove(key)
            return "derived"

        now = self._now()
        if self.market_hours_gating and not self.market_open(now):
            logger.debug(
                "[worker] market closed, leaving %s queued (opens in %ds)",
                key,
                seconds_until_market_open(now),
            )
            return "market_closed"

        entry = self.cache.get(key)
        if not self.cache.policy.is_stale(entry):
            self.queue.remove(key)
            return "fresh"

        if not self.backoff.wait(key, stop_event):
            return "stopped"
        if not self.limiter.wait(stop_event):
            return "stopped"

        logger.info("[worker] refreshing %s", key)
        try:
            quote, route = self.router.fetch(key)
        except RateLimited as e:
            self.backoff.record_failure(key)
            logger.warning("[worker] rate limited refreshing %s: %s", key, e)
            return "rate_limited"
        except ConfigError as e:
            logger.error("[worker] configuration error refreshing %s: %s", key, e)
            self.queue.remove(key)
            return "failed"
        except FetchError as e:
            logger.warning("[worker] fetch failed for %s, dropping from queue: %s", key, e)
            self.queue.remove(key)
            return "failed"
        except Exception as e:
            if is_rate_limit_error(e):
                self.backoff.record_failure(key)
                logger.warning("[worker] rate limited refreshing %s: %s", key, e)
                return "rate_limited"
            logger.exception("[worker] unexpected error refreshing %s: %s", key, e)
            self.queue.remove(key)
            return "failed"

        self.cache.set(key, quote.to_dict(), route.source_class, source=quote.source or route.provider)
        self.backoff.clear(key)
        logger.info("[worker] refreshed %s from %s", key, route.provider)
        return "refreshed"
