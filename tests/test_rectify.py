"""
Pytest for the perspective corrector.
Synthetic images are generated on the fly, so no test assets are required.
"""
from __future__ import annotations

import numpy as np
import cv2
import pytest

from rectcap.core.contracts import (
    DegenerateGeometry,
    OutputTooLarge,
    Quadrilateral,
    RasterImage,
    Space,
)
from rectcap.geometry.rectify import PerspectiveCorrector, check_quad, correct, output_size
from rectcap.geometry.transform import Transform

# ---------- Utilities to build synthetic scenes ---------- #

def _noise_image(w: int, h: int, seed: int = 0) -> RasterImage:
    rng = np.random.default_rng(seed)
    return RasterImage.from_array(rng.integers(0, 256, (h, w, 3), dtype=np.uint8))

def _quad(*pts) -> Quadrilateral:
    return Quadrilateral.from_points(pts, Space.SENSOR)

def _equal_fraction(a: np.ndarray, b: np.ndarray) -> float:
    assert a.shape == b.shape
    return float(np.mean(np.all(a == b, axis=-1)))

def _make_textured_template(w: int = 400, h: int = 560) -> np.ndarray:
    card = np.full((h, w, 3), 235, np.uint8)
    cv2.rectangle(card, (6, 6), (w - 7, h - 7), (20, 20, 20), 3)
    for x in range(30, w, 40):
        cv2.line(card, (x, 20), (x, h - 20), (60, 60, 60), 2)
    for y in range(40, h, 40):
        cv2.line(card, (20, y), (w - 20, y), (60, 60, 60), 2)
    cv2.circle(card, (int(w * 0.8), int(h * 0.15)), 30, (0, 0, 200), -1)
    cv2.circle(card, (int(w * 0.2), int(h * 0.85)), 30, (200, 0, 0), -1)
    return card

def _place_in_frame(template: np.ndarray, corners: np.ndarray,
                    frame_w: int = 1000, frame_h: int = 1000) -> np.ndarray:
    """Warp the template so its corners land on `corners` (continuous coords)."""
    Ht, Wt = template.shape[:2]
    src = np.array([[0, 0], [Wt, 0], [Wt, Ht], [0, Ht]], np.float32) - 0.5
    dst = corners.astype(np.float32) - 0.5
    Hmat = cv2.getPerspectiveTransform(src, dst)
    return cv2.warpPerspective(template, Hmat, (frame_w, frame_h), flags=cv2.INTER_LINEAR)

# ---------- Tests ---------- #

def test_full_bounds_quad_is_a_plain_rotation():
    img = _noise_image(300, 200)
    quad = _quad((0, 0), (300, 0), (300, 200), (0, 200))
    out = PerspectiveCorrector({"corrector": {"interpolation": "nearest"}}).correct(img, quad)
    assert out is not None
    assert out.space == Space.CORRECTED
    # width and height swap, nothing else changes
    assert (out.width, out.height) == (200, 300)
    assert out.extent.width == pytest.approx(200)
    assert out.extent.height == pytest.approx(300)
    assert _equal_fraction(out.pixels, np.rot90(img.pixels)) > 0.999

def test_source_top_edge_ends_up_on_the_left():
    pixels = np.zeros((200, 300, 3), np.uint8)
    pixels[:20] = (0, 0, 255)   # red band along the top
    img = RasterImage.from_array(pixels)
    out = correct(img, _quad((0, 0), (300, 0), (300, 200), (0, 200)))
    assert out is not None
    left = out.pixels[:, :10]
    right = out.pixels[:, -10:]
    assert left[..., 2].mean() > 250 and left[..., :2].max() == 0
    assert right.max() == 0

def test_axis_aligned_square_end_to_end():
    img = _noise_image(1000, 1000, seed=3)
    quad = _quad((100, 100), (900, 100), (900, 900), (100, 900))
    out = correct(img, quad)
    assert out is not None
    assert out.extent.width == pytest.approx(800, abs=1)
    assert out.extent.height == pytest.approx(800, abs=1)
    expected = np.rot90(img.pixels[100:900, 100:900])
    diff = np.abs(out.pixels.astype(int) - expected.astype(int))
    assert diff.mean() < 1.0

def test_trapezoid_unwarps_to_a_full_rectangle():
    corners = np.array([(300, 100), (700, 100), (900, 900), (100, 900)], np.float64)
    pixels = np.zeros((1000, 1000), np.uint8)
    cv2.fillConvexPoly(pixels, np.round(corners).astype(np.int32), 255)
    img = RasterImage.from_array(pixels)

    out = correct(img, _quad(*corners))
    assert out is not None
    w, h = output_size(_quad(*corners))
    assert (out.width, out.height) == (h, w)    # rotated

    inner = out.pixels[6:-6, 6:-6]
    assert inner.min() > 200, "skew left dark wedges inside the corrected image"
    # every row carries the same amount of content: a rectangle, not a trapezoid
    counts = (out.pixels > 128).sum(axis=1)
    assert abs(int(counts[6]) - int(counts[-7])) <= 2

def test_perspective_card_is_recovered():
    template = _make_textured_template()
    corners = np.array([(220, 140), (760, 180), (840, 880), (160, 820)], np.float64)
    frame = RasterImage.from_array(_place_in_frame(template, corners))

    out = correct(frame, _quad(*corners))
    assert out is not None
    # undo the fixed orientation turn and compare at template resolution
    upright = np.ascontiguousarray(np.rot90(out.pixels, k=-1))
    upright = cv2.resize(upright, (template.shape[1], template.shape[0]), interpolation=cv2.INTER_AREA)
    diff = np.abs(upright.astype(int) - template.astype(int))
    assert diff[10:-10, 10:-10].mean() < 20

def test_random_convex_quads_have_positive_extent():
    rng = np.random.default_rng(7)
    img = _noise_image(640, 480)
    corrector = PerspectiveCorrector()
    for _ in range(25):
        base = np.array([[120, 90], [520, 90], [520, 390], [120, 390]], np.float64)
        pts = base + rng.uniform(-60, 60, size=(4, 2))
        out = corrector.correct(img, _quad(*pts))
        assert out is not None
        assert out.extent.width > 0 and out.extent.height > 0
        assert out.pixels.shape[:2] == (out.height, out.width)

def test_collinear_quad_fails():
    img = _noise_image(100, 100)
    quad = _quad((0, 0), (10, 10), (20, 20), (30, 30))
    assert correct(img, quad) is None
    with pytest.raises(DegenerateGeometry):
        PerspectiveCorrector().correct_or_raise(img, quad)

def test_three_collinear_corners_fail():
    img = _noise_image(100, 100)
    assert correct(img, _quad((0, 0), (50, 0), (100, 0), (0, 100))) is None

def test_counter_clockwise_quad_fails():
    quad = _quad((0, 0), (0, 100), (100, 100), (100, 0))
    assert quad.signed_area() < 0
    with pytest.raises(DegenerateGeometry):
        check_quad(quad)

def test_bowtie_quad_fails():
    img = RasterImage.from_array(np.full((200, 200, 3), 255, np.uint8))
    quad = _quad((0, 0), (200, 0), (0, 100), (100, 100))
    assert quad.signed_area() > 0          # the shoelace area alone would accept it
    assert correct(img, quad) is None
    with pytest.raises(DegenerateGeometry):
        check_quad(quad)

def test_concave_quad_fails():
    img = RasterImage.from_array(np.full((200, 200, 3), 255, np.uint8))
    quad = _quad((0, 10), (100, 0), (180, 120), (150, 50))
    assert quad.signed_area() > 0
    assert not quad.has_collinear_corners()
    assert correct(img, quad) is None
    with pytest.raises(DegenerateGeometry):
        PerspectiveCorrector().correct_or_raise(img, quad)

def test_wildly_out_of_range_corners_do_not_crash():
    img = _noise_image(100, 100)
    quad = _quad((-1e7, -1e7), (1e7, -1e7), (1e7, 1e7), (-1e7, 1e7))
    assert correct(img, quad) is None
    with pytest.raises(OutputTooLarge):
        PerspectiveCorrector().correct_or_raise(img, quad)

def test_corners_slightly_outside_image_are_padded_black():
    img = RasterImage.from_array(np.full((100, 100, 3), 255, np.uint8))
    out = correct(img, _quad((-20, -20), (120, -20), (120, 120), (-20, 120)))
    assert out is not None
    assert (out.width, out.height) == (140, 140)
    assert out.pixels[0, 0].max() == 0
    assert out.pixels[70, 70].min() == 255

def test_display_space_quad_is_rejected():
    img = _noise_image(100, 100)
    quad = Quadrilateral.from_points([(0, 0), (50, 0), (50, 50), (0, 50)], Space.DISPLAY)
    with pytest.raises(ValueError):
        PerspectiveCorrector().correct(img, quad)

def test_rotation_pivot_is_the_unwarped_extent_centre():
    quad = _quad((100, 100), (400, 100), (400, 300), (100, 300))
    plan = PerspectiveCorrector().plan(quad)

    assert plan.intermediate.mid_x == pytest.approx(250, abs=1e-3)
    assert plan.intermediate.mid_y == pytest.approx(200, abs=1e-3)
    # rotating in place keeps the centre fixed
    assert plan.final.mid_x == pytest.approx(plan.intermediate.mid_x, abs=1e-3)
    assert plan.final.mid_y == pytest.approx(plan.intermediate.mid_y, abs=1e-3)
    assert plan.final.x == pytest.approx(150, abs=1e-3)
    assert plan.final.y == pytest.approx(50, abs=1e-3)

    # pivoting about the source image centre instead lands somewhere else
    wrong = Transform.rotation_about(-90, 500, 500, Space.CORRECTED).map_extent(plan.intermediate)
    assert (wrong.mid_x, wrong.mid_y) != pytest.approx((plan.final.mid_x, plan.final.mid_y), abs=1.0)

    out = PerspectiveCorrector().render(_noise_image(1000, 1000), plan)
    assert out.extent.x == pytest.approx(plan.final.x)
    assert out.extent.y == pytest.approx(plan.final.y)

def test_unanchored_unwarp_starts_at_origin():
    quad = _quad((100, 100), (400, 100), (400, 300), (100, 300))
    plan = PerspectiveCorrector({"corrector": {"anchor_to_source": False}}).plan(quad)
    assert plan.intermediate.x == pytest.approx(0, abs=1e-3)
    assert plan.intermediate.y == pytest.approx(0, abs=1e-3)
    assert plan.size == (200, 300)

def test_rotation_is_configurable():
    img = _noise_image(300, 200)
    quad = _quad((0, 0), (300, 0), (300, 200), (0, 200))
    out = PerspectiveCorrector({"corrector": {"rotation_deg": 0, "interpolation": "nearest"}}).correct(img, quad)
    assert out is not None
    assert (out.width, out.height) == (300, 200)
    assert _equal_fraction(out.pixels, img.pixels) > 0.999

def test_unknown_interpolation_is_rejected():
    with pytest.raises(ValueError):
        PerspectiveCorrector({"corrector": {"interpolation": "lanczos9"}})

def test_output_is_read_only_and_source_untouched():
    img = _noise_image(120, 80)
    before = img.pixels.copy()
    out = correct(img, _quad((10, 10), (110, 10), (110, 70), (10, 70)))
    assert out is not None
    assert not out.pixels.flags.writeable
    assert np.array_equal(img.pixels, before)
