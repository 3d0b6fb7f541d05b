"""Relative depth grid to a displayable grayscale image.

Depth values carry no sign or scale, so each grid is min-max normalised on
its own and passed through a log contrast stretch::

    n = (v - min) / (max - min)          # range 0 is treated as 1
    s = ln(1 + gain * n) / ln(base)      # gain=9, base=10 maps [0,1] -> [0,1]
    c = round(255 * s)

The stretch expands the near end of the range, where most of the detail
sits for Depth Anything style models.
"""

from __future__ import annotations

import numpy as np
from PIL import Image

from depthcam.types import DepthImage
from depthcam.vision.tensor import resample_filter


def log_stretch(normalised: np.ndarray, *, gain: float = 9.0, base: float = 10.0) -> np.ndarray:
    return np.log1p(gain * normalised) / np.log(base)


def depth_to_gray(
    depth: np.ndarray,
    *,
    stretch_gain: float = 9.0,
    stretch_base: float = 10.0,
) -> np.ndarray:
    """Map an ``(H, W)`` depth grid to ``(H, W)`` uint8 luminance."""
    grid = np.asarray(depth, dtype=np.float64)
    d_min, d_max = float(grid.min()), float(grid.max())
    value_range = d_max - d_min
    if value_range == 0:
        value_range = 1.0

    normalised = (grid - d_min) / value_range
    stretched = log_stretch(normalised, gain=stretch_gain, base=stretch_base)
    # Round half up, then clamp.
    return np.clip(np.floor(stretched * 255.0 + 0.5), 0, 255).astype(np.uint8)


def decode_depth(
    depth: np.ndarray,
    size: tuple[int, int],
    *,
    stretch_gain: float = 9.0,
    stretch_base: float = 10.0,
    resample: str = "bilinear",
) -> DepthImage:
    """Decode a depth grid into a gray RGB image of ``size=(width, height)``."""
    gray = depth_to_gray(depth, stretch_gain=stretch_gain, stretch_base=stretch_base)

    image = Image.fromarray(gray)
    if image.size != size:
        image = image.resize(size, resample_filter(resample))
    pixels = np.repeat(np.asarray(image, dtype=np.uint8)[:, :, None], 3, axis=2)

    return DepthImage(
        pixels=pixels,
        min_depth=float(np.min(depth)),
        max_depth=float(np.max(depth)),
    )
