"""Planar YUV 4:2:0 camera frames to interleaved RGB.

The capture source hands over three planes (Y plus two chroma planes, either
order, any row/pixel stride).  They are gathered into one NV21 buffer (Y, then
interleaved V/U pairs), which OpenCV decodes to RGB.
"""

from __future__ import annotations

import logging

import cv2
import numpy as np

from depthcam.errors import ConversionError
from depthcam.types import PixelFormat, Plane, RawFrame

logger = logging.getLogger(__name__)


def _gather_plane(plane: Plane, rows: int, cols: int, name: str) -> np.ndarray:
    """Read-only (rows, cols) view of the samples in a strided plane buffer."""
    if plane.pixel_stride < 1:
        raise ConversionError(f"{name} plane has invalid pixel stride {plane.pixel_stride}")
    row_bytes = (cols - 1) * plane.pixel_stride + 1
    if plane.row_stride < row_bytes:
        raise ConversionError(
            f"{name} plane row stride {plane.row_stride} < {row_bytes} bytes per row"
        )

    buf = plane.as_array()
    # The last row may stop right after its final sample.
    needed = (rows - 1) * plane.row_stride + row_bytes
    if buf.size < needed:
        raise ConversionError(f"{name} plane holds {buf.size} bytes, expected >= {needed}")

    return np.lib.stride_tricks.as_strided(
        buf,
        shape=(rows, cols),
        strides=(plane.row_stride * buf.itemsize, plane.pixel_stride * buf.itemsize),
        writeable=False,
    )


def frame_to_nv21(frame: RawFrame) -> np.ndarray:
    """Interleave *frame* into an NV21 array of shape ``(H * 3 // 2, W)``."""
    w, h = frame.width, frame.height
    if w <= 0 or h <= 0:
        raise ConversionError(f"invalid frame size {w}x{h}")
    if w % 2 or h % 2:
        raise ConversionError(f"4:2:0 frames need even dimensions, got {w}x{h}")
    if len(frame.planes) != 3:
        raise ConversionError(f"expected 3 planes, got {len(frame.planes)}")

    try:
        fmt = PixelFormat(frame.pixel_format)
    except ValueError as exc:
        raise ConversionError(f"unsupported pixel format {frame.pixel_format!r}") from exc

    y_plane, c1_plane, c2_plane = frame.planes
    if fmt is PixelFormat.YUV_420:
        u_plane, v_plane = c1_plane, c2_plane
    else:
        v_plane, u_plane = c1_plane, c2_plane

    cw, ch = w // 2, h // 2
    y = _gather_plane(y_plane, h, w, "Y")
    u = _gather_plane(u_plane, ch, cw, "U")
    v = _gather_plane(v_plane, ch, cw, "V")

    nv21 = np.empty((h * 3 // 2, w), dtype=np.uint8)
    nv21[:h] = y
    vu = nv21[h:].reshape(ch, cw, 2)
    vu[:, :, 0] = v
    vu[:, :, 1] = u
    return nv21


def yuv420_to_rgb(frame: RawFrame, *, jpeg_quality: int | None = None) -> np.ndarray:
    """Decode *frame* to an ``(H, W, 3)`` uint8 RGB array.

    With *jpeg_quality* set, the decoded image takes a lossy JPEG round trip
    before it is returned.

    Raises:
        ConversionError: malformed planes or a decoder failure.
    """
    nv21 = frame_to_nv21(frame)
    try:
        if jpeg_quality is None:
            rgb = cv2.cvtColor(nv21, cv2.COLOR_YUV2RGB_NV21)
        else:
            bgr = cv2.cvtColor(nv21, cv2.COLOR_YUV2BGR_NV21)
            ok, encoded = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, jpeg_quality])
            if not ok:
                raise ConversionError("JPEG encoding failed")
            decoded = cv2.imdecode(encoded, cv2.IMREAD_COLOR)
            if decoded is None:
                raise ConversionError("JPEG decoding failed")
            rgb = cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)
    except cv2.error as exc:
        raise ConversionError(f"decoder failure: {exc}") from exc

    if rgb.shape != (frame.height, frame.width, 3):
        raise ConversionError(
            f"decoded image has shape {rgb.shape}, expected {(frame.height, frame.width, 3)}"
        )
    return rgb


def convert_frame(frame: RawFrame, *, jpeg_quality: int | None = None) -> np.ndarray | None:
    """Like :func:`yuv420_to_rgb` but returns ``None`` for unusable frames."""
    try:
        return yuv420_to_rgb(frame, jpeg_quality=jpeg_quality)
    except ConversionError as exc:
        logger.debug("dropping frame %d: %s", frame.frame_id, exc)
        return None
