# rectcap/geometry/rectify.py
"""
Perspective correction of a detected quadrilateral into a flat, upright image.

Pipeline (all in continuous pixel coordinates, y down):
  1. projective unwarp of the quad onto a W x H rectangle, anchored at the
     quad's bounding-box origin so the intermediate extent lives in source space
  2. rotation by `rotation_deg` about the centre of that intermediate extent
  3. one warpPerspective of the composed transform into a buffer sized to the
     final extent
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import logging
import cv2
import numpy as np

from rectcap.core.config import merge_config
from rectcap.core.contracts import (
    CorrectionError,
    DegenerateGeometry,
    EmptyExtent,
    Extent,
    OutputTooLarge,
    Quadrilateral,
    RasterImage,
    SingularTransform,
    Space,
)
from rectcap.geometry.transform import Transform, edge_lengths

logger = logging.getLogger(__name__)

_INTERPOLATION = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
}


def output_size(quad: Quadrilateral) -> Tuple[int, int]:
    """(W, H): mean of opposite edge lengths, rounded to whole pixels."""
    top, right, bottom, left = edge_lengths(quad)
    return int(round((top + bottom) / 2.0)), int(round((left + right) / 2.0))


def check_quad(quad: Quadrilateral, min_area_px: float = 1.0) -> None:
    """Raise DegenerateGeometry unless the quad is finite, strictly convex and clockwise."""
    pts = quad.pts
    if not np.isfinite(pts).all():
        raise DegenerateGeometry("non-finite corner")
    if quad.has_collinear_corners():
        raise DegenerateGeometry("three or more corners are collinear")
    if not quad.is_convex():
        raise DegenerateGeometry("corners do not form a convex clockwise quad")
    area = quad.signed_area()
    if area < min_area_px:
        raise DegenerateGeometry(f"enclosed area {area:.3f} px is not positive")


@dataclass(frozen=True)
class CorrectionPlan:
    """The transforms and extents for one correction, before any pixels move."""
    unwarp: Transform          # sensor -> corrected, quad onto its rectangle
    intermediate: Extent       # bbox of the unwarped content
    orient: Transform          # rotation about intermediate.center
    final: Extent              # bbox after rotation
    size: Tuple[int, int]      # rendered (width, height) in pixels

    @property
    def total(self) -> Transform:
        return self.unwarp.then(self.orient)


class PerspectiveCorrector:
    """
    Maps a quadrilateral region of a source image onto a flat rectangle,
    rotated to the viewer's orientation. Pure: no state survives a call.
    """

    def __init__(self, cfg: Optional[Dict] = None):
        self.cfg = merge_config(cfg)["corrector"]
        self.rotation_deg = float(self.cfg["rotation_deg"])
        interp = self.cfg["interpolation"]
        if interp not in _INTERPOLATION:
            raise ValueError(f"unknown interpolation {interp!r}; choose from {sorted(_INTERPOLATION)}")
        self.interpolation = _INTERPOLATION[interp]

    # ------------------------------------------------------------------ planning

    def plan(self, quad: Quadrilateral) -> CorrectionPlan:
        if quad.space != Space.SENSOR:
            raise ValueError(f"corrector expects sensor-space corners, got {quad.space.value}")
        check_quad(quad, float(self.cfg["min_area_px"]))

        w, h = output_size(quad)
        if w < 1 or h < 1:
            raise EmptyExtent(f"unwarped size {w}x{h} has no area")
        cap = int(self.cfg["max_output_px"])
        if w > cap or h > cap:
            raise OutputTooLarge(f"unwarped size {w}x{h} exceeds max_output_px={cap}")

        unwarp = Transform.quad_to_rect(quad, w, h)
        if self.cfg["anchor_to_source"]:
            bbox = quad.bounding_extent()
            unwarp = unwarp.then(Transform.translation(bbox.x, bbox.y, Space.CORRECTED))

        intermediate = Extent.from_points(unwarp.apply_array(quad.pts))
        if intermediate.is_empty:
            raise EmptyExtent("unwarped extent has no area")

        orient = Transform.rotation_about(self.rotation_deg, intermediate.mid_x,
                                          intermediate.mid_y, Space.CORRECTED)
        final = orient.map_extent(intermediate)
        size = (int(round(final.width)), int(round(final.height)))
        if size[0] < 1 or size[1] < 1:
            raise EmptyExtent(f"final extent {final.width:.2f}x{final.height:.2f} has no area")
        return CorrectionPlan(unwarp, intermediate, orient, final, size)

    # ----------------------------------------------------------------- rendering

    def render(self, image: RasterImage, plan: CorrectionPlan) -> RasterImage:
        """Rasterize the composed transform into a buffer sized to the final extent."""
        # image space -> sensor space -> corrected -> final buffer
        to_sensor = Transform.translation(image.extent.x, image.extent.y, Space.SENSOR)
        to_buffer = Transform.translation(-plan.final.x, -plan.final.y, Space.CORRECTED)
        m = to_sensor.then(plan.total).then(to_buffer).matrix
        # continuous coords -> OpenCV pixel centres
        half = np.array([[1.0, 0.0, 0.5], [0.0, 1.0, 0.5], [0.0, 0.0, 1.0]])
        m = np.linalg.inv(half) @ m @ half
        if not np.isfinite(m).all() or abs(np.linalg.det(m)) < 1e-12:
            raise SingularTransform("composed transform is singular")

        w, h = plan.size
        pixels = cv2.warpPerspective(
            np.ascontiguousarray(image.pixels), m, (w, h),
            flags=self.interpolation,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )
        if pixels is None or pixels.size == 0:
            raise EmptyExtent("warp produced an empty buffer")
        return RasterImage(pixels, Extent(plan.final.x, plan.final.y, float(w), float(h)), Space.CORRECTED)

    # ------------------------------------------------------------------ public

    def correct_or_raise(self, image: RasterImage, quad: Quadrilateral) -> RasterImage:
        plan = self.plan(quad)
        logger.debug("[correct] quad=%s size=%dx%d intermediate=%s final=%s",
                     quad.pts.round(1).tolist(), plan.size[0], plan.size[1],
                     plan.intermediate, plan.final)
        return self.render(image, plan)

    def correct(self, image: RasterImage, quad: Quadrilateral) -> Optional[RasterImage]:
        """
        Flat, upright view of `quad`, or None when the geometry cannot be corrected.
        Failures are logged, never raised.
        """
        try:
            return self.correct_or_raise(image, quad)
        except CorrectionError as e:
            logger.info("[correct] no output (%s): %s", type(e).__name__, e)
            return None


def correct(image: RasterImage, quad: Quadrilateral, cfg: Optional[Dict] = None) -> Optional[RasterImage]:
    return PerspectiveCorrector(cfg).correct(image, quad)

