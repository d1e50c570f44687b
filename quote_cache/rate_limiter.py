"""Outbound call pacing for the refresh worker.

Two independent mechanisms, both checked before every worker fetch:

- ``RateLimiter``: a single process-wide "last call" timestamp. Each attempt
  waits until ``interval_ms`` has passed since the previous one, whichever
  ticker or provider it is for.
- ``BackoffTracker``: per-ticker exponential backoff after the provider
  answers "too many requests". Delay is
  ``min(initial * 2 ** (attempts - 1), max)`` and the state is dropped on the
  next successful fetch.

Neither is persisted; a restart resets rate-limit history.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from .clock import SystemClock
from .errors import RateLimited
from .models import BackoffState

logger = logging.getLogger(__name__)

_RATE_LIMIT_MARKERS = ("429", "too many requests", "rate limit")


def is_rate_limit_error(error: BaseException) -> bool:
    """Classify an exception as a provider rate-limit signal."""
    if isinstance(error, RateLimited):
        return True
    text = str(error).lower()
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


class RateLimiter:
    """Global minimum spacing between outbound calls."""

    def __init__(self, interval_ms: int, clock=None) -> None:
        self.interval_seconds = max(0, interval_ms) / 1000.0
        self.clock = clock or SystemClock()
        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

    def remaining(self) -> float:
        """Seconds until the next call may be made."""
        with self._lock:
            if self._last_call is None:
                return 0.0
            return max(0.0, self._last_call + self.interval_seconds - self.clock.now())

    def wait(self, stop_event: Optional[threading.Event] = None) -> bool:
        """Block until the spacing allows a call, then claim the slot.

        Returns False if ``stop_event`` interrupted the wait (no slot claimed).
        """
        delay = self.remaining()
        if delay > 0:
            logger.debug("[rate-limit] waiting %.3fs for call spacing", delay)
            if self.clock.sleep(delay, stop_event):
                return False
        with self._lock:
            self._last_call = self.clock.now()
        return True


class BackoffTracker:
    """Exponential backoff state keyed by ticker."""

    def __init__(self, initial_seconds: float, max_seconds: float, clock=None) -> None:
        self.initial_seconds = float(initial_seconds)
        self.max_seconds = float(max_seconds)
        self.clock = clock or SystemClock()
        self._states: Dict[str, BackoffState] = {}
        self._lock = threading.Lock()

    def delay_for(self, attempts: int) -> float:
        if attempts <= 0:
            return 0.0
        return min(self.initial_seconds * (2 ** (attempts - 1)), self.max_seconds)

    def record_failure(self, key: str) -> float:
        """Register a rate-limit failure and return the new backoff in seconds."""
        with self._lock:
            state = self._states.setdefault(key, BackoffState())
            state.attempts += 1
            delay = self.delay_for(state.attempts)
            state.backoff_until = self.clock.now() + delay
            attempts = state.attempts
        logger.warning("[rate-limit] ticker=%s backing off %.1fs (attempt %d)", key, delay, attempts)
        return delay

    def state(self, key: str) -> Optional[BackoffState]:
        with self._lock:
            state = self._states.get(key)
            return BackoffState(state.attempts, state.backoff_until) if state else None

    def remaining(self, key: str) -> float:
        """Seconds of backoff left for ``key``; 0 when not backing off."""
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return 0.0
            return max(0.0, state.backoff_until - self.clock.now())

    def in_backoff(self, key: str) -> bool:
        return self.remaining(key) > 0

    def clear(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)

    def wait(self, key: str, stop_event: Optional[threading.Event] = None) -> bool:
        """Sleep out the remaining backoff for ``key``.

        Attempts are kept after the wait so a repeated failure escalates.
        Returns False if ``stop_event`` interrupted the wait.
        """
        remaining = self.remaining(key)
        if remaining <= 0:
            return True
        logger.info("[rate-limit] waiting %.1fs for backoff to expire for %s", remaining, key)
        return not self.clock.sleep(remaining, stop_event)
