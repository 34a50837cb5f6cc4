# rectcap/geometry/display.py
"""
Sensor -> display mapping for the live overlay only.

The sensor delivers frames rotated 90° relative to the portrait view, so each
corner's x/y are swapped and scaled uniformly to fit the view. The corrector
never sees these coordinates.
"""

from __future__ import annotations
from typing import Tuple

from rectcap.core.contracts import Point2D, Quadrilateral, Space


def display_scale(sensor_size: Tuple[float, float], view_size: Tuple[float, float],
                  swap_axes: bool = True) -> float:
    """
    Uniform fit factor. With swapped axes the sensor height plays the role of
    the display width: min(view_w / sensor_h, view_h / sensor_w).
    """
    sensor_w, sensor_h = (float(v) for v in sensor_size)
    view_w, view_h = (float(v) for v in view_size)
    if sensor_w <= 0 or sensor_h <= 0:
        raise ValueError(f"sensor size must be positive, got {sensor_size}")
    if swap_axes:
        return min(view_w / sensor_h, view_h / sensor_w)
    return min(view_w / sensor_w, view_h / sensor_h)


def _to_display(p: Point2D, scale: float, swap_axes: bool) -> Point2D:
    if swap_axes:
        return Point2D(p.y * scale, p.x * scale, Space.DISPLAY)
    return Point2D(p.x * scale, p.y * scale, Space.DISPLAY)


def display_quad(quad: Quadrilateral, sensor_size: Tuple[float, float],
                 view_size: Tuple[float, float], swap_axes: bool = True) -> Quadrilateral:
    """
    Map a sensor-space quad into display space for drawing.

    With swapped axes the corner labels shift one place to follow the turn:
    sensor TL -> display BL, TR -> TL, BR -> TR, BL -> BR.
    """
    if quad.space != Space.SENSOR:
        raise ValueError(f"expected a sensor-space quad, got {quad.space.value}")
    s = display_scale(sensor_size, view_size, swap_axes)
    tl, tr, br, bl = (_to_display(p, s, swap_axes) for p in quad.corners)
    if swap_axes:
        return Quadrilateral(top_left=tr, top_right=br, bottom_right=bl, bottom_left=tl)
    return Quadrilateral(tl, tr, br, bl)
