#!/usr/bin/env python3
"""
Run the perspective corrector on a still image and save the results.

Examples:
   python tools/correct_image.py photo.jpg                       # detect the quad
   python tools/correct_image.py photo.jpg --quad quad.json      # quad from JSON
   python tools/correct_image.py photo.jpg --corners 100,100 900,100 900,900 100,900
"""
from __future__ import annotations
import argparse, os
import logging
import cv2
import numpy as np

from rectcap.core.config import configure_logging, load_config
from rectcap.core.contracts import Quadrilateral, Space, rectangles
from rectcap.geometry.detect import detect_features
from rectcap.geometry.rectify import PerspectiveCorrector
from rectcap.io.ingest import load_image, load_quad, save_image

logger = logging.getLogger("correct_image")


def draw_quad(img, quad, color, thickness=2):
    q = np.round(quad.pts).astype(int).reshape(4, 2)
    cv2.polylines(img, [q], True, color, thickness, lineType=cv2.LINE_AA)


def _parse_corner(text: str):
    x, y = text.split(",")
    return float(x), float(y)


def main():
    ap = argparse.ArgumentParser(description="Perspective-correct a quadrilateral in a still image.")
    ap.add_argument("image", help="Path to input image.")
    ap.add_argument("--quad", help="Quad JSON [[x,y],...] in TL,TR,BR,BL order.")
    ap.add_argument("--corners", nargs=4, type=_parse_corner, metavar="X,Y",
                    help="Four corners TL TR BR BL.")
    ap.add_argument("--config", help="YAML config.")
    ap.add_argument("--rotation", type=float, default=None, help="Override corrector rotation_deg.")
    ap.add_argument("--out_dir", default="output", help="Directory for outputs.")
    ap.add_argument("--debug", action="store_true")
    args = ap.parse_args()

    cfg = load_config(args.config)
    if args.rotation is not None:
        cfg["corrector"]["rotation_deg"] = args.rotation
    if args.debug:
        cfg["debug"] = True
    configure_logging(cfg)

    try:
        image = load_image(args.image)
    except FileNotFoundError as e:
        raise SystemExit(str(e))

    if args.quad:
        quad = load_quad(args.quad)
    elif args.corners:
        quad = Quadrilateral.from_points(args.corners, Space.SENSOR)
    else:
        found = rectangles(detect_features(np.asarray(image.pixels), cfg))
        if not found:
            raise SystemExit("No rectangle detected; pass --quad or --corners.")
        quad = found[0].quad
    logger.info("quad: %s", quad.pts.round(1).tolist())

    os.makedirs(args.out_dir, exist_ok=True)
    base = os.path.splitext(os.path.basename(args.image))[0]

    vis = np.array(image.pixels, copy=True)
    draw_quad(vis, quad, (0, 255, 0), 3)
    cv2.imwrite(os.path.join(args.out_dir, f"{base}_viz.png"), vis)

    result = PerspectiveCorrector(cfg).correct(image, quad)
    if result is None:
        raise SystemExit("Correction failed (degenerate quad or empty extent).")
    out = save_image(result, os.path.join(args.out_dir, f"{base}_corrected.png"))
    e = result.extent
    print(f"Saved corrected → {out} ({result.width}x{result.height}, extent origin {e.x:.1f},{e.y:.1f})")


if __name__ == "__main__":
    main()
