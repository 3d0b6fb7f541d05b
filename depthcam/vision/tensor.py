from __future__ import annotations

import numpy as np
from PIL import Image

from depthcam.errors import ShapeMismatchError

RESAMPLE = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
    "lanczos": Image.Resampling.LANCZOS,
    "box": Image.Resampling.BOX,
    "hamming": Image.Resampling.HAMMING,
}


def resample_filter(name: str) -> Image.Resampling:
    try:
        return RESAMPLE[name]
    except KeyError:
        raise ValueError(f"unknown resample filter '{name}'") from None


def encode_tensor(
    image: np.ndarray,
    input_size: tuple[int, int],
    *,
    resample: str = "bilinear",
) -> np.ndarray:
    """Pack an RGB image into a ``[1, H, W, 3]`` float32 tensor in ``[0, 1]``.

    *input_size* is ``(H, W)``.  Channels stay in R, G, B order, one pixel
    after another (channel-last).
    """
    h_in, w_in = input_size
    pil = Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8))
    if pil.size != (w_in, h_in):
        pil = pil.resize((w_in, h_in), resample_filter(resample))

    tensor = (np.asarray(pil, dtype=np.float32) / 255.0)[None]

    expected = h_in * w_in * 3 * 4
    if tensor.nbytes != expected:
        raise ShapeMismatchError(
            f"input tensor has {tensor.nbytes} bytes, expected {expected}"
        )
    return tensor
