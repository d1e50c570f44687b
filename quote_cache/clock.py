"""Time source used by the staleness policy, rate limiter and worker.

Everything that reads the time or sleeps goes through a clock so tests can
drive time explicitly instead of sleeping.
"""

from __future__ import annotations

import threading
import time
from typing import Optional


class SystemClock:
    """Wall-clock time in epoch seconds."""

    def now(self) -> float:
        return time.time()

    def sleep(self, seconds: float, stop_event: Optional[threading.Event] = None) -> bool:
        """Sleep for ``seconds``.

        Returns True when the sleep was cut short by ``stop_event``.
        """
        if seconds <= 0:
            return bool(stop_event and stop_event.is_set())
        if stop_event is not None:
            return stop_event.wait(seconds)
        time.sleep(seconds)
        return False
