# rectcap/geometry/detect.py
"""
Contour-based rectangle detector.

Finds large four-cornered outlines in a BGR (or gray) frame and reports them as
`Rectangle` features with sensor-space corners in TL, TR, BR, BL order. Big
outlines that do not simplify to four corners come back as `OtherFeature`.
"""

from __future__ import annotations
from typing import Dict, List, Optional
import logging
import cv2
import numpy as np

from rectcap.core.config import merge_config
from rectcap.core.contracts import DetectedFeature, OtherFeature, Quadrilateral, Rectangle, Space

logger = logging.getLogger(__name__)


def order_corners_clockwise(pts: np.ndarray) -> np.ndarray:
    """Return TL, TR, BR, BL (clockwise on screen) given 4 unordered points."""
    pts = np.asarray(pts, np.float32)
    if pts.shape != (4, 2):
        pts = pts.reshape(4, 2)
    sorted_y = pts[np.argsort(pts[:, 1], kind="stable")]
    top2 = sorted_y[:2]
    bottom2 = sorted_y[2:]
    tl, tr = top2[np.argsort(top2[:, 0], kind="stable")]
    bl, br = bottom2[np.argsort(bottom2[:, 0], kind="stable")]
    return np.array([tl, tr, br, bl], dtype=np.float32)


def _edges(frame: np.ndarray, cfg: Dict) -> np.ndarray:
    gray = frame if frame.ndim == 2 else cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    k = int(cfg["blur"]["ksize"])
    if k > 1:
        if k % 2 == 0:
            k += 1
        gray = cv2.GaussianBlur(gray, (k, k), 0)
    edges = cv2.Canny(gray, int(cfg["canny"]["low"]), int(cfg["canny"]["high"]))
    # close small gaps so the outline is one contour
    return cv2.dilate(edges, np.ones((3, 3), np.uint8), iterations=1)


def _confidence(approx: np.ndarray, contour: np.ndarray) -> float:
    """Solidity of the simplified outline against its contour's hull, 0..1."""
    hull_area = cv2.contourArea(cv2.convexHull(contour))
    if hull_area <= 0:
        return 0.0
    return float(min(1.0, cv2.contourArea(approx) / hull_area))


def detect_features(frame: np.ndarray, cfg: Optional[Dict] = None) -> List[DetectedFeature]:
    """
    All plausible features in `frame`, rectangles first, largest first.
    An empty list is the common "nothing detected" case.
    """
    full = merge_config(cfg)
    dcfg = full["detector"]
    H, W = frame.shape[:2]
    frame_area = float(H * W)
    if frame_area <= 0:
        return []

    cnts, _ = cv2.findContours(_edges(frame, dcfg), cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    cnts = sorted(cnts, key=cv2.contourArea, reverse=True)[: int(dcfg["max_candidates"])]

    rects: List[DetectedFeature] = []
    others: List[DetectedFeature] = []
    for c in cnts:
        area_ratio = cv2.contourArea(c) / frame_area
        if area_ratio < float(dcfg["min_area_ratio"]) or area_ratio > float(dcfg["max_area_ratio"]):
            continue
        peri = cv2.arcLength(c, True)
        approx = cv2.approxPolyDP(c, float(dcfg["epsilon"]) * peri, True)
        if len(approx) == 4 and cv2.isContourConvex(approx):
            pts = order_corners_clockwise(approx.reshape(4, 2))
            quad = Quadrilateral.from_points(pts, Space.SENSOR)
            rects.append(Rectangle(quad, confidence=_confidence(approx, c)))
        else:
            others.append(OtherFeature("polygon", tuple(map(tuple, approx.reshape(-1, 2).astype(float)))))

    if full.get("debug"):
        logger.debug("[detect] %d contours -> %d rectangles, %d other", len(cnts), len(rects), len(others))
    return rects + others


class ContourRectangleDetector:
    """Callable wrapper so the pipeline can hold a configured detector."""

    def __init__(self, cfg: Optional[Dict] = None):
        self.cfg = merge_config(cfg)

    def __call__(self, frame: np.ndarray) -> List[DetectedFeature]:
        return detect_features(frame, self.cfg)
