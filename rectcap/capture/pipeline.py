# rectcap/capture/pipeline.py
"""
Frame -> overlay -> claim -> background correction -> presenter.

Threading contract:
  on_frame()  runs on the frame lane; cheap, never blocks on correction
  on_tap()    runs on the display lane
  correction  runs on the compute lane; its result is posted back to the
              display lane, never delivered synchronously
"""

from __future__ import annotations
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Optional, Protocol, Sequence, Tuple
import logging
import threading

import numpy as np

from rectcap.core.config import merge_config
from rectcap.core.contracts import DetectedFeature, Quadrilateral, RasterImage, rectangles
from rectcap.capture.lanes import DisplayLane, LatestFrameSlot, make_compute_lane
from rectcap.capture.state import CaptureState
from rectcap.capture.timers import OneShotTimer
from rectcap.geometry.display import display_quad
from rectcap.geometry.rectify import PerspectiveCorrector

logger = logging.getLogger(__name__)


class OverlayPresenter(Protocol):
    def show_quad(self, quad: Quadrilateral) -> None: ...
    def hide(self) -> None: ...


class ImagePresenter(Protocol):
    def show_image(self, image: RasterImage) -> None: ...
    def dismiss(self) -> None: ...


class OverlayController:
    """Shows the latest display-space quad and hides it if nothing newer arrives in time."""

    def __init__(self, presenter: OverlayPresenter, display: DisplayLane, hide_after_s: float = 2.0):
        self.presenter = presenter
        self.display = display
        self.hide_after_s = hide_after_s
        self._timer = OneShotTimer("overlay-hide")
        # bumped on every show/hide; only touched on the display lane
        self._shown = 0

    def show(self, quad: Quadrilateral) -> None:
        self._shown += 1
        token = self._shown
        self.presenter.show_quad(quad)
        self._timer.schedule(self.hide_after_s, lambda: self.display.post(lambda: self._hide_if(token)))

    def _hide_if(self, token: int) -> None:
        # a hide queued by an older timer loses to any show that ran since
        if token == self._shown:
            self.presenter.hide()

    def hide(self) -> None:
        self._timer.cancel()
        self._shown += 1
        self.presenter.hide()


class CapturePipeline:

    def __init__(
        self,
        overlay: OverlayPresenter,
        presenter: ImagePresenter,
        *,
        view_size: Tuple[float, float],
        cfg: Optional[Dict] = None,
        corrector: Optional[PerspectiveCorrector] = None,
        state: Optional[CaptureState] = None,
        display: Optional[DisplayLane] = None,
        compute: Optional[ThreadPoolExecutor] = None,
        on_complete: Optional[Callable[[], None]] = None,
    ):
        self.cfg = merge_config(cfg)
        self.corrector = corrector if corrector is not None else PerspectiveCorrector(self.cfg)
        self.state = state if state is not None else CaptureState()
        self.display = display if display is not None else DisplayLane()
        self.compute = compute if compute is not None else make_compute_lane()
        self.overlay = OverlayController(overlay, self.display, float(self.cfg["overlay"]["hide_after_s"]))
        self.presenter = presenter
        self.view_size = view_size
        self.on_complete = on_complete
        self.swap_axes = bool(self.cfg["overlay"]["swap_axes"])
        self.dwell_s = float(self.cfg["presenter"]["dwell_s"])
        self._dwell = OneShotTimer("present-dwell")
        self._dispatch_lock = threading.Lock()
        self.dispatched = 0

    # ------------------------------------------------------------- display lane

    def on_tap(self) -> None:
        self.overlay.hide()
        self.state.request_capture()
        logger.info("[capture] tap")

    # --------------------------------------------------------------- frame lane

    def on_frame(self, image: RasterImage, features: Sequence[DetectedFeature]) -> bool:
        """
        Handle one frame and its detections. Returns True if this frame claimed
        the pending capture and dispatched a correction.
        """
        if not self.state.should_process_frame():
            return False
        rects = rectangles(features)
        if not rects:
            return False
        quad = rects[0].quad

        # the frame that claims a tap finds detection already paused and draws no overlay
        if self.state.detecting:
            shown = display_quad(quad, (image.width, image.height), self.view_size, self.swap_axes)
            self.display.post(lambda: self.overlay.show(shown))

        if not self.state.claim_capture():
            return False
        self._dispatch(image, quad)
        return True

    def _dispatch(self, image: RasterImage, quad: Quadrilateral) -> Future:
        with self._dispatch_lock:
            self.dispatched += 1
        logger.info("[capture] correcting quad %s", quad.pts.round(1).tolist())
        future = self.compute.submit(self._correct_job, image, quad)
        future.add_done_callback(self._log_failure)
        return future

    # ------------------------------------------------------------- compute lane

    def _correct_job(self, image: RasterImage, quad: Quadrilateral) -> Optional[RasterImage]:
        result = self.corrector.correct(image, quad)
        if result is None:
            # nothing to show; go straight back to live detection
            self.display.post(self.state.resume_detection)
        else:
            self.display.post(lambda: self._present(result))
        return result

    def _log_failure(self, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("[correct] background correction crashed: %r", exc)
            self.display.post(self.state.resume_detection)

    # ------------------------------------------------------------- display lane

    def _present(self, image: RasterImage) -> None:
        logger.info("[display] corrected image %dx%d", image.width, image.height)
        self.presenter.show_image(image)
        self._dwell.schedule(self.dwell_s, lambda: self.display.post(self._finish))

    def _finish(self) -> None:
        self.presenter.dismiss()
        self.state.resume_detection()
        if self.on_complete is not None:
            self.on_complete()

    def shutdown(self, wait: bool = True) -> None:
        self._dwell.cancel()
        self.overlay.hide()
        self.compute.shutdown(wait=wait)


def run_frame_lane(
    slot: LatestFrameSlot,
    detector: Callable[[np.ndarray], Sequence[DetectedFeature]],
    pipeline: CapturePipeline,
    stop: threading.Event,
    poll_s: float = 0.1,
) -> None:
    """Consume the newest frame, detect, and hand it to the pipeline until `stop` is set."""
    while not stop.is_set():
        image = slot.get(timeout=poll_s)
        if image is None:
            continue
        if not pipeline.state.should_process_frame():
            continue
        try:
            features = detector(np.asarray(image.pixels))
        except Exception:
            logger.exception("[frame] detector failed; skipping frame")
            continue
        pipeline.on_frame(image, features)
