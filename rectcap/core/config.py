"""
Configuration defaults and YAML loading.

Callers pass partial dicts; `merge_config` fills in the rest from DEFAULT_CONFIG.
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, Optional
import logging
import yaml

DEFAULT_CONFIG: Dict = {
    "corrector": {
        # -90 maps the sensor's top edge to the display's left edge (y-down pixels).
        "rotation_deg": -90.0,
        "interpolation": "linear",     # nearest | linear | cubic
        "anchor_to_source": True,      # keep the unwarped quad at its bbox origin
        "min_area_px": 1.0,            # enclosed quad area below this is degenerate
        "max_output_px": 8192,         # cap on either output side
    },
    "overlay": {
        "hide_after_s": 2.0,
        "swap_axes": True,
        "stroke_px": 4,
        "color": (0, 255, 0),          # BGR
    },
    "presenter": {
        "dwell_s": 2.0,
        "fade_s": 0.3,
        "flash_s": 0.1,
    },
    "detector": {
        "canny": {"low": 50, "high": 150},
        "blur": {"ksize": 5},
        "epsilon": 0.02,               # approxPolyDP, fraction of perimeter
        "min_area_ratio": 0.05,
        "max_area_ratio": 0.98,
        "max_candidates": 10,
    },
    "camera": {
        "device": 0,
        "width": 1280,
        "height": 720,
    },
    "debug": False,
}


def merge_config(cfg: Optional[Dict]) -> Dict:
    """Overlay `cfg` on the defaults; nested dicts merge one level deep."""
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULT_CONFIG.items()}
    if not cfg:
        return merged
    for k, v in cfg.items():
        if isinstance(v, dict) and k in merged and isinstance(merged[k], dict):
            merged[k] = {**merged[k], **v}
        else:
            merged[k] = v
    return merged


def load_config(path: Optional[str | Path]) -> Dict:
    """
    Read a YAML config and merge it over the defaults.
    A missing path (None) yields the defaults; a missing file raises FileNotFoundError.
    """
    if path is None:
        return merge_config(None)
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Config file not found: {p}")
    with open(p, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")
    return merge_config(data)


def configure_logging(cfg: Optional[Dict] = None) -> None:
    level = logging.DEBUG if (cfg or {}).get("debug") else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
