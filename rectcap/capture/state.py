# rectcap/capture/state.py
"""
The only mutable state shared between lanes: "wants capture" and
"detection enabled". Every read-modify-write happens under one lock.
"""

from __future__ import annotations
import logging
import threading

logger = logging.getLogger(__name__)


class CaptureState:

    def __init__(self, detecting: bool = True):
        self._lock = threading.Lock()
        self._wants_capture = False
        self._detecting = detecting

    def request_capture(self) -> None:
        """User tap: ask for one capture and pause live detection."""
        with self._lock:
            self._wants_capture = True
            self._detecting = False
        logger.debug("[capture] requested")

    def claim_capture(self) -> bool:
        """Read-and-clear the capture flag. Exactly one caller sees True per request."""
        with self._lock:
            claimed = self._wants_capture
            self._wants_capture = False
        if claimed:
            logger.debug("[capture] claimed")
        return claimed

    def pause_detection(self) -> None:
        with self._lock:
            self._detecting = False

    def resume_detection(self) -> None:
        with self._lock:
            self._detecting = True
        logger.debug("[capture] detection resumed")

    @property
    def wants_capture(self) -> bool:
        with self._lock:
            return self._wants_capture

    @property
    def detecting(self) -> bool:
        with self._lock:
            return self._detecting

    def should_process_frame(self) -> bool:
        """Frames are worth looking at only while capturing or detecting."""
        with self._lock:
            return self._wants_capture or self._detecting
