# rectcap/geometry/transform.py
"""
Composable 2D transforms as 3x3 homogeneous matrices acting on column vectors.

`a.then(b)` applies `a` first, then `b` (matrix `b @ a`). Each transform records
the coordinate space it reads from and the one it writes to; composing or
applying across mismatched spaces raises ValueError.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Tuple
import math
import cv2
import numpy as np

from rectcap.core.contracts import (
    Extent, Point2D, Quadrilateral, SingularTransform, Space, has_collinear_triple,
)

_SINGULAR_EPS = 1e-12


@dataclass(frozen=True)
class Transform:
    matrix: np.ndarray
    source: Space = Space.SENSOR
    target: Space = Space.SENSOR

    def __post_init__(self) -> None:
        m = np.array(self.matrix, dtype=np.float64)
        if m.shape != (3, 3):
            raise ValueError(f"Transform matrix must be 3x3, got {m.shape}")
        m.setflags(write=False)
        object.__setattr__(self, "matrix", m)

    # ---------------------------------------------------------------- builders

    @classmethod
    def identity(cls, space: Space = Space.SENSOR) -> "Transform":
        return cls(np.eye(3), space, space)

    @classmethod
    def translation(cls, tx: float, ty: float, space: Space = Space.SENSOR) -> "Transform":
        m = np.eye(3)
        m[0, 2] = tx
        m[1, 2] = ty
        return cls(m, space, space)

    @classmethod
    def rotation(cls, degrees: float, space: Space = Space.SENSOR) -> "Transform":
        """
        Rotation about the origin using the standard matrix
        [[cos, -sin], [sin, cos]]. With y pointing down, negative angles turn
        content counter-clockwise on screen (top edge ends up on the left).
        """
        t = math.radians(degrees)
        c, s = math.cos(t), math.sin(t)
        # snap quarter turns so 90° multiples stay exact
        c, s = round(c, 12) + 0.0, round(s, 12) + 0.0
        return cls(np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]]), space, space)

    @classmethod
    def rotation_about(cls, degrees: float, cx: float, cy: float,
                       space: Space = Space.SENSOR) -> "Transform":
        """Translate (cx, cy) to the origin, rotate, translate back, in that order."""
        return (cls.translation(-cx, -cy, space)
                .then(cls.rotation(degrees, space))
                .then(cls.translation(cx, cy, space)))

    @classmethod
    def perspective(cls, src: np.ndarray, dst: np.ndarray,
                    source: Space = Space.SENSOR, target: Space = Space.CORRECTED) -> "Transform":
        """
        Solve the projective map sending the 4 `src` points onto the 4 `dst` points.
        Raises SingularTransform when no invertible solution exists.
        """
        s = np.asarray(src, dtype=np.float32).reshape(4, 2)
        d = np.asarray(dst, dtype=np.float32).reshape(4, 2)
        if has_collinear_triple(s) or has_collinear_triple(d):
            raise SingularTransform("three of the four points are collinear")
        try:
            m = cv2.getPerspectiveTransform(s, d)
        except cv2.error as e:
            raise SingularTransform(f"perspective solve failed: {e}") from e
        t = cls(m, source, target)
        if not t.is_invertible:
            raise SingularTransform("perspective solve produced a singular matrix")
        return t

    @classmethod
    def quad_to_rect(cls, quad: Quadrilateral, width: float, height: float,
                     target: Space = Space.CORRECTED) -> "Transform":
        dst = np.array([[0, 0], [width, 0], [width, height], [0, height]], dtype=np.float64)
        return cls.perspective(quad.pts, dst, source=quad.space, target=target)

    # ------------------------------------------------------------- composition

    def then(self, other: "Transform") -> "Transform":
        """Apply self, then `other`."""
        if other.source != self.target:
            raise ValueError(f"cannot compose {self.source.value}->{self.target.value} "
                             f"with {other.source.value}->{other.target.value}")
        return Transform(other.matrix @ self.matrix, self.source, other.target)

    def __matmul__(self, other: "Transform") -> "Transform":
        # matrix convention: (a @ b) applies b first
        return other.then(self)

    def retarget(self, target: Space) -> "Transform":
        """Relabel the output space; the matrix is unchanged."""
        return Transform(self.matrix, self.source, target)

    @property
    def is_affine(self) -> bool:
        return bool(np.allclose(self.matrix[2], [0.0, 0.0, self.matrix[2, 2]]))

    @property
    def determinant(self) -> float:
        return float(np.linalg.det(self.matrix))

    @property
    def is_invertible(self) -> bool:
        return bool(np.isfinite(self.matrix).all()) and abs(self.determinant) > _SINGULAR_EPS

    def inverse(self) -> "Transform":
        if not self.is_invertible:
            raise SingularTransform("transform is not invertible")
        return Transform(np.linalg.inv(self.matrix), self.target, self.source)

    # -------------------------------------------------------------- application

    def apply_array(self, pts: np.ndarray) -> np.ndarray:
        """Map an (N, 2) array; raises SingularTransform on points sent to infinity."""
        p = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
        hom = np.hstack([p, np.ones((len(p), 1))]) @ self.matrix.T
        w = hom[:, 2:3]
        if np.any(np.abs(w) < _SINGULAR_EPS):
            raise SingularTransform("point mapped to infinity")
        return hom[:, :2] / w

    def apply(self, point: Point2D) -> Point2D:
        if point.space != self.source:
            raise ValueError(f"point is in {point.space.value} space, transform expects {self.source.value}")
        x, y = self.apply_array(np.array([point.as_tuple()]))[0]
        return Point2D(float(x), float(y), self.target)

    def apply_quad(self, quad: Quadrilateral) -> Quadrilateral:
        return Quadrilateral(*(self.apply(p) for p in quad.corners))

    def map_extent(self, extent: Extent) -> Extent:
        """Bounding box of the transformed extent corners."""
        return Extent.from_points(self.apply_array(extent.corners()))


def compose(transforms: Iterable[Transform]) -> Transform:
    """Chain transforms in application order."""
    it = iter(transforms)
    try:
        out = next(it)
    except StopIteration:
        raise ValueError("compose() needs at least one transform") from None
    for t in it:
        out = out.then(t)
    return out


def edge_lengths(quad: Quadrilateral) -> Tuple[float, float, float, float]:
    """(top, right, bottom, left) edge lengths."""
    tl, tr, br, bl = quad.pts
    return (float(np.linalg.norm(tr - tl)), float(np.linalg.norm(br - tr)),
            float(np.linalg.norm(br - bl)), float(np.linalg.norm(bl - tl)))
