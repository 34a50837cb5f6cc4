#!/usr/bin/env python3
# rectcap/app/live.py
"""
Live capture screen in an OpenCV window.

- camera frames stream in on a producer thread (late frames are dropped)
- a frame-lane thread detects rectangles and updates the overlay
- click or SPACE: flash, claim one capture, correct it in the background,
  show the result for a short dwell, then resume live detection
- q / ESC quits

Usage:
   python -m rectcap.app.live [--config config/rectcap.yaml] [--device 0]
"""

from __future__ import annotations
import argparse
import logging
import threading
import time
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from rectcap.core.config import configure_logging, load_config
from rectcap.core.contracts import DeviceUnavailable, Quadrilateral, RasterImage, Space
from rectcap.capture.lanes import LatestFrameSlot
from rectcap.capture.pipeline import CapturePipeline, run_frame_lane
from rectcap.geometry.detect import ContourRectangleDetector
from rectcap.geometry.display import display_scale

logger = logging.getLogger(__name__)

WINDOW = "rectcap"


class CameraFrameSource:
    """cv2.VideoCapture wrapper; open() raises DeviceUnavailable when no camera answers."""

    def __init__(self, device: int = 0, width: Optional[int] = None, height: Optional[int] = None):
        self.device = device
        self.width = width
        self.height = height
        self._cap: Optional[cv2.VideoCapture] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def open(self) -> None:
        cap = cv2.VideoCapture(self.device)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"Cannot open camera index {self.device}.")
        if self.width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        if self.height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap = cap

    def read(self) -> Optional[np.ndarray]:
        if self._cap is None:
            raise RuntimeError("Video capture device was not opened correctly.")
        ok, frame = self._cap.read()
        return frame if ok else None

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


class WindowOverlay:
    """OverlayPresenter that remembers the quad to stroke on the next repaint."""

    def __init__(self, color=(0, 255, 0), stroke_px: int = 4):
        self.color = tuple(int(c) for c in color)
        self.stroke_px = int(stroke_px)
        self.quad: Optional[Quadrilateral] = None

    def show_quad(self, quad: Quadrilateral) -> None:
        self.quad = quad

    def hide(self) -> None:
        self.quad = None

    def draw(self, canvas: np.ndarray) -> None:
        if self.quad is None:
            return
        pts = np.round(self.quad.pts).astype(np.int32).reshape(-1, 1, 2)
        cv2.polylines(canvas, [pts], True, self.color, self.stroke_px, lineType=cv2.LINE_AA)


class WindowImagePresenter:
    """ImagePresenter that fades the corrected image in over the preview, and out on dismiss."""

    def __init__(self, fade_s: float = 0.3):
        self.fade_s = fade_s
        self.image: Optional[RasterImage] = None
        self._shown_at = 0.0
        self._dismissed_at: Optional[float] = None

    def show_image(self, image: RasterImage) -> None:
        self.image = image
        self._shown_at = time.monotonic()
        self._dismissed_at = None

    def dismiss(self) -> None:
        self._dismissed_at = time.monotonic()

    def alpha(self, now: float) -> float:
        if self.image is None:
            return 0.0
        if self._dismissed_at is not None:
            a = 1.0 - (now - self._dismissed_at) / max(self.fade_s, 1e-6)
            if a <= 0.0:
                self.image = None
                return 0.0
            return a
        return min(1.0, (now - self._shown_at) / max(self.fade_s, 1e-6))

    def draw(self, canvas: np.ndarray, now: float) -> None:
        a = self.alpha(now)
        if a <= 0.0 or self.image is None:
            return
        vh, vw = canvas.shape[:2]
        backdrop = (canvas * 0.2).astype(canvas.dtype)
        img = np.asarray(self.image.pixels)
        if img.ndim == 2:
            img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
        s = min(vw / img.shape[1], vh / img.shape[0])
        w, h = max(1, int(img.shape[1] * s)), max(1, int(img.shape[0] * s))
        x0, y0 = (vw - w) // 2, (vh - h) // 2
        backdrop[y0:y0 + h, x0:x0 + w] = cv2.resize(img, (w, h), interpolation=cv2.INTER_AREA)
        cv2.addWeighted(backdrop, a, canvas, 1.0 - a, 0, dst=canvas)


class LiveScreen:

    def __init__(self, cfg: Dict, view_size: Tuple[int, int] = (540, 960)):
        self.cfg = cfg
        self.view_size = view_size
        ocfg, pcfg = cfg["overlay"], cfg["presenter"]
        self.overlay = WindowOverlay(ocfg["color"], ocfg["stroke_px"])
        self.presenter = WindowImagePresenter(float(pcfg["fade_s"]))
        self.pipeline = CapturePipeline(self.overlay, self.presenter, view_size=view_size, cfg=cfg)
        self.detector = ContourRectangleDetector(cfg)
        self.slot: LatestFrameSlot[RasterImage] = LatestFrameSlot()
        self.stop = threading.Event()
        self.flash_s = float(pcfg["flash_s"])
        self._flash_at: Optional[float] = None
        self._preview: Optional[np.ndarray] = None
        self._preview_lock = threading.Lock()

    # ------------------------------------------------------------- producer

    def _produce(self, source: CameraFrameSource) -> None:
        while not self.stop.is_set():
            frame = source.read()
            if frame is None:
                time.sleep(0.05)
                continue
            with self._preview_lock:
                self._preview = frame
            self.slot.put(RasterImage.from_array(frame, Space.SENSOR))

    # -------------------------------------------------------------- display

    def tap(self) -> None:
        self._flash_at = time.monotonic()
        self.pipeline.on_tap()

    def _on_mouse(self, event, x, y, flags, param) -> None:
        if event == cv2.EVENT_LBUTTONUP:
            self.tap()

    def _render(self) -> np.ndarray:
        vw, vh = self.view_size
        canvas = np.zeros((vh, vw, 3), np.uint8)
        with self._preview_lock:
            frame = self._preview
        if frame is not None:
            # transpose matches the overlay's x/y swap
            shown = cv2.transpose(frame) if self.pipeline.swap_axes else frame
            s = display_scale((frame.shape[1], frame.shape[0]), self.view_size, self.pipeline.swap_axes)
            w, h = max(1, int(shown.shape[1] * s)), max(1, int(shown.shape[0] * s))
            canvas[:min(h, vh), :min(w, vw)] = cv2.resize(shown, (w, h))[:vh, :vw]
        if self.pipeline.state.detecting:
            self.overlay.draw(canvas)
        now = time.monotonic()
        self.presenter.draw(canvas, now)
        if self._flash_at is not None:
            t = (now - self._flash_at) / max(self.flash_s, 1e-6)
            if t >= 2.0:
                self._flash_at = None
            else:
                a = t if t < 1.0 else 2.0 - t
                white = np.full_like(canvas, 255)
                cv2.addWeighted(white, a, canvas, 1.0 - a, 0, dst=canvas)
        return canvas

    def run(self) -> None:
        ccfg = self.cfg["camera"]
        source = CameraFrameSource(int(ccfg["device"]), ccfg.get("width"), ccfg.get("height"))
        try:
            source.open()
        except DeviceUnavailable as e:
            # the screen still runs; it just never receives frames
            logger.error("[frame] %s", e)
            source = None

        threads = []
        if source is not None:
            threads.append(threading.Thread(target=self._produce, args=(source,), daemon=True, name="producer"))
            threads.append(threading.Thread(
                target=run_frame_lane, args=(self.slot, self.detector, self.pipeline, self.stop),
                daemon=True, name="frame-lane"))
        for t in threads:
            t.start()

        cv2.namedWindow(WINDOW)
        cv2.setMouseCallback(WINDOW, self._on_mouse)
        try:
            while not self.stop.is_set():
                self.pipeline.display.run_pending()
                cv2.imshow(WINDOW, self._render())
                key = cv2.waitKey(15) & 0xFF
                if key in (ord("q"), 27):
                    break
                if key == ord(" "):
                    self.tap()
        finally:
            self.stop.set()
            for t in threads:
                t.join(timeout=2.0)
            if source is not None:
                source.release()
            self.pipeline.shutdown(wait=False)
            cv2.destroyAllWindows()
            logger.info("[frame] dropped %d late frames", self.slot.dropped)


def _parse_size(text: str) -> Tuple[int, int]:
    w, h = text.lower().split("x")
    return int(w), int(h)


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Live rectangle capture with perspective correction.")
    ap.add_argument("--config", help="YAML config (defaults are used when omitted).")
    ap.add_argument("--device", type=int, help="Camera index; overrides the config.")
    ap.add_argument("--view", type=_parse_size, default=(540, 960), help="Window size WxH (portrait).")
    ap.add_argument("--debug", action="store_true")
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    if args.device is not None:
        cfg["camera"]["device"] = args.device
    if args.debug:
        cfg["debug"] = True
    configure_logging(cfg)

    LiveScreen(cfg, args.view).run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
