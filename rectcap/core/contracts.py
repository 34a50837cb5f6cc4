"""
Core contracts and simple data types shared across stages.

Coordinates are OpenCV pixel space (x right, y down). Every point carries the
space it lives in; only a `Transform` may move a point from one space to another.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Tuple, Union
import numpy as np


class Space(str, Enum):
    SENSOR = "sensor"
    DISPLAY = "display"
    CORRECTED = "corrected"


# ----------------------------------------------------------------------------- #
# Errors                                                                        #
# ----------------------------------------------------------------------------- #

class CorrectionError(Exception):
    """Base for every reason the corrector produces no image."""


class DegenerateGeometry(CorrectionError):
    """Quad is not strictly convex and clockwise, or encloses no positive area."""


class SingularTransform(CorrectionError):
    """The projective solve or the composed transform cannot be inverted."""


class EmptyExtent(CorrectionError):
    """The rendered extent has zero width or height."""


class OutputTooLarge(CorrectionError):
    """The unwarped size exceeds the configured max_output_px on some side."""


class DeviceUnavailable(RuntimeError):
    """No camera could be opened; the pipeline simply receives no frames."""


# ----------------------------------------------------------------------------- #
# Geometry                                                                      #
# ----------------------------------------------------------------------------- #

def has_collinear_triple(pts, tol: float = 1e-6) -> bool:
    """True if any three consecutive points (cyclically) lie on one line."""
    p = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    scale = max(1.0, float(np.abs(p).max()))
    n = len(p)
    for i in range(n):
        a, b, c = p[i], p[(i + 1) % n], p[(i + 2) % n]
        cross = (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])
        if abs(cross) <= tol * scale * scale:
            return True
    return False


def is_strictly_convex(pts, tol: float = 1e-6) -> bool:
    """
    True if every corner of a quad turns the same way as a clockwise-on-screen
    (y down) outline, by more than the collinearity tolerance. Self-intersecting,
    concave and counter-clockwise outlines all fail.
    """
    p = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    scale = max(1.0, float(np.abs(p).max()))
    d1 = np.roll(p, -1, axis=0) - p
    d2 = np.roll(p, -2, axis=0) - np.roll(p, -1, axis=0)
    turns = d1[:, 0] * d2[:, 1] - d1[:, 1] * d2[:, 0]
    return bool((turns > tol * scale * scale).all())


@dataclass(frozen=True)
class Point2D:
    x: float
    y: float
    space: Space = Space.SENSOR

    def as_tuple(self) -> Tuple[float, float]:
        return (float(self.x), float(self.y))


@dataclass(frozen=True)
class Quadrilateral:
    """
    Four corners labelled in the source orientation:
    [top-left, top-right, bottom-right, bottom-left].

    All corners must share one coordinate space.
    """
    top_left: Point2D
    top_right: Point2D
    bottom_right: Point2D
    bottom_left: Point2D

    def __post_init__(self) -> None:
        spaces = {p.space for p in self.corners}
        if len(spaces) != 1:
            raise ValueError(f"Quadrilateral corners mix coordinate spaces: {sorted(s.value for s in spaces)}")

    @classmethod
    def from_points(cls, pts: Iterable, space: Space = Space.SENSOR) -> "Quadrilateral":
        """Build from anything shaped (4, 2) in TL, TR, BR, BL order."""
        arr = np.asarray(pts if isinstance(pts, np.ndarray) else list(pts), dtype=np.float64)
        if arr.size != 8:
            raise ValueError(f"Quadrilateral needs exactly 4 (x, y) points, got shape {arr.shape}")
        arr = arr.reshape(4, 2)
        return cls(*(Point2D(float(x), float(y), space) for x, y in arr))

    @property
    def corners(self) -> Tuple[Point2D, Point2D, Point2D, Point2D]:
        return (self.top_left, self.top_right, self.bottom_right, self.bottom_left)

    @property
    def space(self) -> Space:
        return self.top_left.space

    @property
    def pts(self) -> np.ndarray:
        """(4, 2) float64 array in TL, TR, BR, BL order."""
        return np.array([p.as_tuple() for p in self.corners], dtype=np.float64)

    def signed_area(self) -> float:
        """Shoelace area; positive when TL→TR→BR→BL runs clockwise on screen (y down)."""
        p = self.pts
        x, y = p[:, 0], p[:, 1]
        return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))

    def has_collinear_corners(self, tol: float = 1e-6) -> bool:
        """True if any three of the four corners lie on one line."""
        return has_collinear_triple(self.pts, tol)

    def is_convex(self, tol: float = 1e-6) -> bool:
        """True for a strictly convex quad in TL, TR, BR, BL clockwise order."""
        return is_strictly_convex(self.pts, tol)

    def bounding_extent(self) -> "Extent":
        return Extent.from_points(self.pts)


@dataclass(frozen=True)
class Extent:
    """Axis-aligned rectangle (origin + size); origin may be negative."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_points(cls, pts: np.ndarray) -> "Extent":
        p = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
        x0, y0 = p.min(axis=0)
        x1, y1 = p.max(axis=0)
        return cls(float(x0), float(y0), float(x1 - x0), float(y1 - y0))

    @property
    def min_x(self) -> float:
        return self.x

    @property
    def min_y(self) -> float:
        return self.y

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @property
    def mid_x(self) -> float:
        return self.x + self.width / 2.0

    @property
    def mid_y(self) -> float:
        return self.y + self.height / 2.0

    @property
    def center(self) -> Tuple[float, float]:
        return (self.mid_x, self.mid_y)

    @property
    def is_empty(self) -> bool:
        return not (self.width > 0 and self.height > 0)

    def corners(self) -> np.ndarray:
        return np.array([[self.min_x, self.min_y],
                         [self.max_x, self.min_y],
                         [self.max_x, self.max_y],
                         [self.min_x, self.max_y]], dtype=np.float64)


@dataclass(frozen=True)
class RasterImage:
    """
    Immutable pixel grid placed at `extent` inside `space`.

    pixels: np.ndarray (H, W) or (H, W, C); made read-only on construction.
    """
    pixels: np.ndarray
    extent: Extent
    space: Space = Space.SENSOR

    def __post_init__(self) -> None:
        if self.pixels.ndim not in (2, 3):
            raise ValueError(f"Raster must be 2D or 3D, got shape {self.pixels.shape}")
        self.pixels.setflags(write=False)

    @classmethod
    def from_array(cls, pixels: np.ndarray, space: Space = Space.SENSOR) -> "RasterImage":
        """Wrap a frame as a zero-based raster; the array is copied."""
        h, w = pixels.shape[:2]
        return cls(np.array(pixels, copy=True), Extent(0.0, 0.0, float(w), float(h)), space)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


# ----------------------------------------------------------------------------- #
# Detector output                                                               #
# ----------------------------------------------------------------------------- #

@dataclass(frozen=True)
class Rectangle:
    quad: Quadrilateral
    confidence: float = 1.0
    kind: str = field(default="rectangle", init=False)


@dataclass(frozen=True)
class OtherFeature:
    """Anything a detector reports that is not a four-cornered rectangle."""
    kind: str
    points: Tuple[Tuple[float, float], ...] = ()


DetectedFeature = Union[Rectangle, OtherFeature]


def rectangles(features: Iterable[DetectedFeature]) -> List[Rectangle]:
    """Keep only the rectangle-shaped features, in detector order."""
    return [f for f in features if isinstance(f, Rectangle)]
