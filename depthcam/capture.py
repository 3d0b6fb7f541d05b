"""Capture-side helpers: build planar frames and read them from a camera."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from types import TracebackType
from typing import Any

import cv2
import numpy as np

from depthcam.types import PixelFormat, Plane, RawFrame

logger = logging.getLogger(__name__)

SCHEDULER_BUFFERS = 3


def frame_from_bgr(
    bgr: np.ndarray,
    *,
    release: Callable[[], None] | None = None,
    swap_chroma: bool = False,
) -> RawFrame:
    """Build an I420 (or YV12 with *swap_chroma*) frame from a BGR array.

    Odd widths/heights are cropped by one pixel so the 4:2:0 planes line up.
    """
    h, w = bgr.shape[:2]
    bgr = bgr[: h - h % 2, : w - w % 2]
    h, w = bgr.shape[:2]

    i420 = cv2.cvtColor(np.ascontiguousarray(bgr), cv2.COLOR_BGR2YUV_I420).reshape(-1)
    y_size, c_size = w * h, (w // 2) * (h // 2)
    y = Plane(i420[:y_size].tobytes(), row_stride=w)
    u = Plane(i420[y_size : y_size + c_size].tobytes(), row_stride=w // 2)
    v = Plane(i420[y_size + c_size :].tobytes(), row_stride=w // 2)

    if swap_chroma:
        return RawFrame(w, h, PixelFormat.YVU_420, (y, v, u), release=release)
    return RawFrame(w, h, PixelFormat.YUV_420, (y, u, v), release=release)


def frame_from_rgb(rgb: np.ndarray, **kwargs: Any) -> RawFrame:
    return frame_from_bgr(cv2.cvtColor(np.ascontiguousarray(rgb), cv2.COLOR_RGB2BGR), **kwargs)


class CameraSource:
    """OpenCV camera exposed as a stream of planar :class:`RawFrame` objects.

    At most ``max_outstanding`` frames may be held by consumers at once.
    While that many are unreleased, captured images are discarded, the way
    a camera stalls when its buffer pool runs dry.  Feeding a
    :class:`~depthcam.scheduler.FrameScheduler` needs at least
    :data:`SCHEDULER_BUFFERS`: one frame in flight, one pending and the one
    arriving to replace it.
    """

    def __init__(
        self,
        device: int | str = 0,
        *,
        width: int | None = None,
        height: int | None = None,
        max_outstanding: int = SCHEDULER_BUFFERS,
    ) -> None:
        self._cap = cv2.VideoCapture(device)
        if not self._cap.isOpened():
            raise RuntimeError(f"Cannot open camera: {device}")
        if width:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height:
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.max_outstanding = max(1, max_outstanding)
        self._outstanding = 0
        self._lock = threading.Lock()
        self.last_bgr: np.ndarray | None = None
        self.stalled = 0

    @property
    def outstanding(self) -> int:
        with self._lock:
            return self._outstanding

    def _on_release(self) -> None:
        with self._lock:
            self._outstanding -= 1

    def frames(self, *, max_frames: int | None = None) -> Iterator[RawFrame | None]:
        """Yield frames (``None`` for stalled ticks) until the stream ends."""
        count = 0
        while self._cap.isOpened():
            ret, bgr = self._cap.read()
            if not ret:
                return
            self.last_bgr = bgr
            with self._lock:
                stalled = self._outstanding >= self.max_outstanding
                if stalled:
                    self.stalled += 1
                    logger.debug("capture stalled: %d frames outstanding", self._outstanding)
                else:
                    self._outstanding += 1
            yield None if stalled else frame_from_bgr(bgr, release=self._on_release)
            count += 1
            if max_frames and count >= max_frames:
                return

    def close(self) -> None:
        self._cap.release()

    def __enter__(self) -> CameraSource:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
