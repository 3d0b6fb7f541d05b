from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np
import pytest

from depthcam.types import PixelFormat, Plane, RawFrame


class FakeEngine:
    """Stands in for :class:`depthcam.vision.inference.DepthEngine`.

    Returns a fixed depth grid.  With ``block_first`` the first call waits on
    ``gate`` after setting ``entered``, which keeps one frame in flight.
    """

    def __init__(
        self,
        grid: np.ndarray | None = None,
        *,
        input_size: tuple[int, int] = (256, 256),
        available: bool = True,
        block_first: bool = False,
        fail_calls: tuple[int, ...] = (),
    ) -> None:
        self.grid = grid if grid is not None else diagonal_grid(64, 64)
        self.input_size = input_size
        self.available = available
        self.block_first = block_first
        self.fail_calls = set(fail_calls)
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.tensors: list[np.ndarray] = []
        self.closed = False

    def infer(self, tensor: np.ndarray) -> np.ndarray | None:
        call = len(self.tensors)
        self.tensors.append(tensor)
        if self.block_first and call == 0:
            self.entered.set()
            self.gate.wait(timeout=10)
        if call in self.fail_calls:
            return None
        return self.grid.copy()

    def describe(self) -> dict[str, Any]:
        return {"available": self.available, "input_shape": [1, *self.input_size, 3]}

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> FakeEngine:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def diagonal_grid(h: int, w: int) -> np.ndarray:
    ys, xs = np.mgrid[0:h, 0:w]
    return (xs + ys).astype(np.float32)


def planar_frame(
    width: int = 640,
    height: int = 480,
    *,
    luma: np.ndarray | None = None,
    chroma: int = 128,
    release: Callable[[], None] | None = None,
) -> RawFrame:
    """I420 frame; luma defaults to a left-to-right 0..255 gradient."""
    if luma is None:
        row = np.linspace(0, 255, width).round().astype(np.uint8)
        luma = np.tile(row, (height, 1))
    cw, ch = width // 2, height // 2
    chroma_plane = np.full((ch, cw), chroma, dtype=np.uint8).tobytes()
    return RawFrame(
        width,
        height,
        PixelFormat.YUV_420,
        (
            Plane(np.ascontiguousarray(luma, dtype=np.uint8).tobytes(), row_stride=width),
            Plane(chroma_plane, row_stride=cw),
            Plane(chroma_plane, row_stride=cw),
        ),
        release=release,
    )


class ReleaseCounter:
    def __init__(self) -> None:
        self.count = 0
        self._lock = threading.Lock()

    def __call__(self) -> None:
        with self._lock:
            self.count += 1


@pytest.fixture
def fake_engine() -> type[FakeEngine]:
    return FakeEngine


@pytest.fixture
def make_frame() -> Callable[..., RawFrame]:
    return planar_frame


@pytest.fixture
def make_grid() -> Callable[[int, int], np.ndarray]:
    return diagonal_grid


@pytest.fixture
def release_counter() -> Callable[[], ReleaseCounter]:
    return ReleaseCounter


@pytest.fixture
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "depth.onnx"
    path.write_bytes(b"onnx")
    return path
