"""
Pytest for the contour rectangle detector.
These tests generate synthetic images on the fly, so no test assets are required.
"""
from __future__ import annotations

import numpy as np
import cv2

from rectcap.core.contracts import RasterImage, Rectangle, Space, rectangles
from rectcap.geometry.detect import ContourRectangleDetector, detect_features, order_corners_clockwise
from rectcap.geometry.rectify import correct

# ---------- Utilities to build synthetic scenes ---------- #

def _frame_with_sheet(corners: np.ndarray, w: int = 800, h: int = 600) -> np.ndarray:
    frame = np.full((h, w, 3), 30, np.uint8)
    cv2.fillConvexPoly(frame, corners.astype(np.int32), (235, 235, 235))
    return frame

def _max_corner_error(got: np.ndarray, want: np.ndarray) -> float:
    return float(np.linalg.norm(got - want, axis=1).max())

# ---------- Tests ---------- #

def test_order_corners_clockwise_basic():
    pts = np.array([[100, 50], [400, 60], [420, 500], [90, 480]], dtype=np.float32)
    np.random.default_rng(0).shuffle(pts)
    ordered = order_corners_clockwise(pts)
    s = ordered.sum(axis=1)
    assert np.argmin(s) == 0  # TL
    assert np.argmax(s) == 2  # BR

def test_detects_tilted_sheet():
    corners = np.array([[180, 110], [620, 140], [650, 500], [150, 470]], np.float32)
    feats = detect_features(_frame_with_sheet(corners))
    rects = rectangles(feats)
    assert rects, "no rectangle found"
    assert isinstance(feats[0], Rectangle)
    quad = rects[0].quad
    assert quad.space == Space.SENSOR
    assert quad.signed_area() > 0
    assert _max_corner_error(quad.pts, corners) < 8.0
    assert 0.0 < rects[0].confidence <= 1.0

def test_empty_frame_detects_nothing():
    assert detect_features(np.full((480, 640, 3), 30, np.uint8)) == []

def test_tiny_blob_is_ignored():
    corners = np.array([[10, 10], [30, 10], [30, 30], [10, 30]], np.float32)
    assert rectangles(detect_features(_frame_with_sheet(corners))) == []

def test_detector_accepts_gray_frames_and_config():
    corners = np.array([[100, 100], [500, 100], [500, 400], [100, 400]], np.float32)
    gray = cv2.cvtColor(_frame_with_sheet(corners), cv2.COLOR_BGR2GRAY)
    det = ContourRectangleDetector({"detector": {"min_area_ratio": 0.5}})
    assert rectangles(det(gray)) == []       # sheet covers only 25% of the frame
    assert rectangles(ContourRectangleDetector()(gray))

def test_detected_sheet_corrects_to_a_flat_page():
    corners = np.array([[180, 110], [620, 140], [650, 500], [150, 470]], np.float32)
    frame = _frame_with_sheet(corners)
    quad = rectangles(detect_features(frame))[0].quad
    out = correct(RasterImage.from_array(frame), quad)
    assert out is not None
    inner = out.pixels[15:-15, 15:-15]
    assert inner.min() > 200
