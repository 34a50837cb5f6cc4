"""
Simple I/O helpers for reading and writing rasters (BGR, as OpenCV expects).
"""

from __future__ import annotations
import json
import os
import cv2
import numpy as np

from rectcap.core.contracts import Quadrilateral, RasterImage, Space


def load_image(path: str) -> RasterImage:
    """
    Load an image from disk (BGR) as a zero-based sensor-space raster.
    Raises FileNotFoundError if not found.
    """
    img = cv2.imread(path, cv2.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(f"Could not read image at: {path}")
    return RasterImage.from_array(img, Space.SENSOR)


def save_image(image: RasterImage, path: str) -> str:
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    if not cv2.imwrite(path, np.ascontiguousarray(image.pixels)):
        raise OSError(f"Could not write image to: {path}")
    return path


def load_quad(path: str) -> Quadrilateral:
    """
    Read a quad from JSON: [[x,y],[x,y],[x,y],[x,y]] in TL,TR,BR,BL order.
    """
    with open(path, "r") as f:
        return Quadrilateral.from_points(json.load(f), Space.SENSOR)
