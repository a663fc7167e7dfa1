#!/usr/bin/env python3
"""
Process-wide request spacing shared by every source crawler.
"""

import threading
import time
from typing import Callable, Optional


class RateGovernor:
    """Grants request slots at least `interval` seconds apart.

    A caller reserves the next free slot under the lock and then waits for it
    outside the lock, so concurrent callers are granted in reservation order
    and the lock is never held across a network call.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.interval = max(0.0, float(interval or 0.0))
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot: Optional[float] = None

    def reserve(self) -> float:
        with self._lock:
            now = self._clock()
            if self._next_slot is None or self._next_slot < now:
                slot = now
            else:
                slot = self._next_slot
            self._next_slot = slot + self.interval
            return slot

    def acquire(self, stop_event: Optional[threading.Event] = None) -> bool:
        slot = self.reserve()
        delay = slot - self._clock()
        if delay <= 0:
            return True
        if stop_event is not None:
            # interrupted waits still consume their slot
            return not stop_event.wait(delay)
        self._sleep(delay)
        return True
