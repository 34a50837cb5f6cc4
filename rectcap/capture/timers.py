# rectcap/capture/timers.py
"""
One-shot timers whose pending callback is cancelled when a newer one is scheduled.
"""

from __future__ import annotations
from typing import Callable, Optional
import threading


class OneShotTimer:
    """
    Holds at most one pending callback. `schedule()` supersedes whatever was
    pending, so only the most recent schedule can fire.
    """

    def __init__(self, name: str = "oneshot"):
        self.name = name
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0

    def schedule(self, delay_s: float, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            gen = self._generation
            t = threading.Timer(delay_s, self._fire, args=(gen, callback))
            t.daemon = True
            t.name = f"{self.name}-{gen}"
            self._timer = t
        t.start()

    def _fire(self, gen: int, callback: Callable[[], None]) -> None:
        with self._lock:
            # a cancel() racing the timer thread can still land here
            if gen != self._generation:
                return
            self._timer = None
        callback()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None
