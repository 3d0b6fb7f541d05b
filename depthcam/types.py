from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from types import TracebackType
from typing import Any

import numpy as np

_FRAME_IDS = itertools.count()


def next_frame_id() -> int:
    return next(_FRAME_IDS)


class PixelFormat(str, Enum):
    """Planar 4:2:0 luma/chroma layouts accepted from the capture source."""

    YUV_420 = "yuv420"  # planes: Y, U (Cb), V (Cr)
    YVU_420 = "yvu420"  # planes: Y, V (Cr), U (Cb)


class FrameState(str, Enum):
    IDLE = "idle"
    CONVERTING = "converting"
    ENCODING = "encoding"
    INFERRING = "inferring"
    DECODING = "decoding"
    DELIVERED = "delivered"


@dataclass(slots=True)
class Plane:
    data: bytes | bytearray | memoryview | np.ndarray
    row_stride: int
    pixel_stride: int = 1

    def as_array(self) -> np.ndarray:
        """Return the plane bytes as a flat ``uint8`` view (copy for arrays)."""
        if isinstance(self.data, np.ndarray):
            return np.ascontiguousarray(self.data, dtype=np.uint8).reshape(-1)
        return np.frombuffer(self.data, dtype=np.uint8)


@dataclass(slots=True, eq=False)
class RawFrame:
    """One captured camera frame in a planar luma/chroma format.

    The frame owns a buffer lent by the capture subsystem.  ``close()`` hands
    it back through ``release`` exactly once; use the frame as a context
    manager so the buffer is returned on every exit path.
    """

    width: int
    height: int
    pixel_format: PixelFormat
    planes: tuple[Plane, Plane, Plane]
    frame_id: int = field(default_factory=next_frame_id)
    timestamp: float = field(default_factory=time.monotonic)
    release: Callable[[], None] | None = None
    _closed: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self.release is not None:
            self.release()

    def __enter__(self) -> RawFrame:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


@dataclass(slots=True)
class DepthImage:
    """Visualized depth map sized to the originating camera frame."""

    pixels: np.ndarray  # (H, W, 3) uint8, R == G == B
    frame_id: int = -1
    timestamp: float = 0.0
    min_depth: float = 0.0
    max_depth: float = 0.0
    elapsed_ms: float = 0.0

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def gray(self) -> np.ndarray:
        return self.pixels[:, :, 0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "frame_id": self.frame_id,
            "width": self.width,
            "height": self.height,
            "min_depth": round(float(self.min_depth), 6),
            "max_depth": round(float(self.max_depth), 6),
            "mean_luminance": round(float(self.gray.mean()), 3),
            "elapsed_ms": round(self.elapsed_ms, 1),
        }
