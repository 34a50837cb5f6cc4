# rectcap/capture/lanes.py
"""
Plumbing between the three lanes:

  frame lane    -> LatestFrameSlot (one frame in flight, late frames dropped)
  display lane  -> DisplayLane (async posts, drained by the UI thread)
  compute lane  -> a single-worker ThreadPoolExecutor (see make_compute_lane)
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Generic, Optional, TypeVar
import logging
import queue
import threading

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LatestFrameSlot(Generic[T]):
    """Single-item mailbox. A new put replaces an unconsumed item."""

    def __init__(self):
        self._q: "queue.Queue[T]" = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self.dropped = 0

    def put(self, item: T) -> None:
        with self._lock:
            try:
                self._q.put_nowait(item)
            except queue.Full:
                try:
                    self._q.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass
                self._q.put_nowait(item)

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Next item, or None after `timeout` seconds with nothing delivered."""
        try:
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None


class DisplayLane:
    """
    Callbacks posted from any thread, run on whichever thread calls
    `run_pending()` (the UI loop). Posting never blocks.
    """

    def __init__(self):
        self._q: "queue.Queue[Callable[[], Any]]" = queue.Queue()

    def post(self, fn: Callable[[], Any]) -> None:
        self._q.put_nowait(fn)

    def run_pending(self, max_items: Optional[int] = None) -> int:
        ran = 0
        while max_items is None or ran < max_items:
            try:
                fn = self._q.get_nowait()
            except queue.Empty:
                break
            try:
                fn()
            except Exception:
                logger.exception("[display] posted callback failed")
            ran += 1
        return ran

    def __len__(self) -> int:
        return self._q.qsize()


def make_compute_lane() -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=1, thread_name_prefix="rectcap-compute")
