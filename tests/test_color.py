from __future__ import annotations

import logging
from collections.abc import Callable

import numpy as np
import pytest

from depthcam.capture import frame_from_rgb
from depthcam.errors import ConversionError
from depthcam.types import PixelFormat, Plane, RawFrame
from depthcam.vision.color import _gather_plane, convert_frame, frame_to_nv21, yuv420_to_rgb


def _solid_rgb(h: int, w: int, color: tuple[int, int, int]) -> np.ndarray:
    return np.tile(np.array(color, dtype=np.uint8), (h, w, 1))


def _semi_planar(frame: RawFrame, *, row_pad: int = 0) -> RawFrame:
    """Re-pack an I420 frame the way Android lays out YUV_420_888 buffers:
    padded rows and U/V planes that are offset views into one VU buffer."""
    w, h = frame.width, frame.height
    cw, ch = w // 2, h // 2
    y = np.frombuffer(frame.planes[0].data, dtype=np.uint8).reshape(h, w)
    u = np.frombuffer(frame.planes[1].data, dtype=np.uint8).reshape(ch, cw)
    v = np.frombuffer(frame.planes[2].data, dtype=np.uint8).reshape(ch, cw)

    y_padded = np.zeros((h, w + row_pad), dtype=np.uint8)
    y_padded[:, :w] = y

    stride = cw * 2 + row_pad
    vu = np.zeros((ch, stride), dtype=np.uint8)
    vu[:, 0 : cw * 2 : 2] = v
    vu[:, 1 : cw * 2 : 2] = u
    flat = vu.reshape(-1)[: (ch - 1) * stride + cw * 2]

    return RawFrame(
        w,
        h,
        PixelFormat.YUV_420,
        (
            Plane(y_padded.tobytes(), row_stride=w + row_pad),
            Plane(flat[1:].tobytes(), row_stride=stride, pixel_stride=2),  # U
            Plane(flat[:-1].tobytes(), row_stride=stride, pixel_stride=2),  # V
        ),
    )


def test_output_has_frame_dimensions(make_frame: Callable[..., RawFrame]) -> None:
    rgb = yuv420_to_rgb(make_frame(640, 480))
    assert rgb.shape == (480, 640, 3)
    assert rgb.dtype == np.uint8


def test_neutral_chroma_gives_gray(make_frame: Callable[..., RawFrame]) -> None:
    luma = np.full((4, 6), 128, dtype=np.uint8)
    rgb = yuv420_to_rgb(make_frame(6, 4, luma=luma))
    r, g, b = (rgb[..., i].astype(int) for i in range(3))
    assert np.abs(r - g).max() <= 2
    assert np.abs(g - b).max() <= 2


def test_luma_gradient_survives(make_frame: Callable[..., RawFrame]) -> None:
    rgb = yuv420_to_rgb(make_frame(640, 480)).astype(float)
    assert rgb[:, :8].mean() < 30
    assert rgb[:, -8:].mean() > 225


def test_rgb_round_trip_keeps_color() -> None:
    rgb = yuv420_to_rgb(frame_from_rgb(_solid_rgb(16, 16, (255, 0, 0))))
    assert rgb[..., 0].min() > 200
    assert rgb[..., 1].max() < 50
    assert rgb[..., 2].max() < 50


def test_swapped_chroma_planes_decode_identically() -> None:
    image = _solid_rgb(8, 12, (30, 160, 220))
    normal = yuv420_to_rgb(frame_from_rgb(image))
    swapped = yuv420_to_rgb(frame_from_rgb(image, swap_chroma=True))
    np.testing.assert_array_equal(normal, swapped)


def test_strided_semi_planar_matches_planar() -> None:
    rng = np.random.default_rng(0)
    image = rng.integers(0, 256, size=(24, 32, 3), dtype=np.uint8)
    planar = frame_from_rgb(image)

    expected = frame_to_nv21(planar)
    for pad in (0, 16):
        np.testing.assert_array_equal(frame_to_nv21(_semi_planar(planar, row_pad=pad)), expected)


def test_nv21_layout_is_luma_then_vu_pairs() -> None:
    y = np.arange(16, dtype=np.uint8).reshape(4, 4)
    u = np.array([[100, 101], [102, 103]], dtype=np.uint8)
    v = np.array([[200, 201], [202, 203]], dtype=np.uint8)
    frame = RawFrame(
        4,
        4,
        PixelFormat.YUV_420,
        (Plane(y.tobytes(), 4), Plane(u.tobytes(), 2), Plane(v.tobytes(), 2)),
    )
    nv21 = frame_to_nv21(frame)
    np.testing.assert_array_equal(nv21[:4], y)
    assert nv21[4:].reshape(-1).tolist() == [200, 100, 201, 101, 202, 102, 203, 103]


def test_jpeg_round_trip_is_close_but_lossy(make_frame: Callable[..., RawFrame]) -> None:
    frame = make_frame(64, 48)
    direct = yuv420_to_rgb(frame).astype(int)
    lossy = yuv420_to_rgb(frame, jpeg_quality=80).astype(int)
    assert lossy.shape == direct.shape
    assert np.abs(lossy - direct).mean() < 10


def test_short_buffer_raises_conversion_error() -> None:
    frame = RawFrame(
        4,
        4,
        PixelFormat.YUV_420,
        (Plane(b"\x00" * 10, 4), Plane(b"\x80" * 4, 2), Plane(b"\x80" * 4, 2)),
    )
    with pytest.raises(ConversionError):
        yuv420_to_rgb(frame)


def test_odd_dimensions_are_rejected() -> None:
    frame = RawFrame(
        5,
        4,
        PixelFormat.YUV_420,
        (Plane(b"\x00" * 20, 5), Plane(b"\x80" * 6, 3), Plane(b"\x80" * 6, 3)),
    )
    with pytest.raises(ConversionError):
        frame_to_nv21(frame)


def test_unknown_pixel_format_is_rejected(make_frame: Callable[..., RawFrame]) -> None:
    frame = make_frame(4, 4)
    frame.pixel_format = "rgba"  # type: ignore[assignment]
    with pytest.raises(ConversionError):
        yuv420_to_rgb(frame)


def test_row_stride_smaller_than_row_is_rejected() -> None:
    frame = RawFrame(
        4,
        2,
        PixelFormat.YUV_420,
        (Plane(b"\x00" * 8, 3), Plane(b"\x80" * 2, 2), Plane(b"\x80" * 2, 2)),
    )
    with pytest.raises(ConversionError):
        frame_to_nv21(frame)


def test_convert_frame_returns_none_and_logs(caplog: pytest.LogCaptureFixture) -> None:
    frame = RawFrame(
        4,
        4,
        PixelFormat.YUV_420,
        (Plane(b"", 4), Plane(b"", 2), Plane(b"", 2)),
    )
    with caplog.at_level(logging.DEBUG, logger="depthcam.vision.color"):
        assert convert_frame(frame) is None
    assert "dropping frame" in caplog.text


def test_plane_samples_are_read_in_place() -> None:
    # Two rows of stride 6 holding three samples each at pixel stride 2; the
    # last row ends right after its final sample.
    data = bytearray([1, 0, 2, 0, 3, 0, 4, 0, 5, 0, 6])
    grid = _gather_plane(Plane(data, row_stride=6, pixel_stride=2), 2, 3, "U")

    assert grid.tolist() == [[1, 2, 3], [4, 5, 6]]
    assert np.shares_memory(grid, np.frombuffer(data, dtype=np.uint8))
    assert not grid.flags.writeable
