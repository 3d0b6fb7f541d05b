from __future__ import annotations

import numpy as np
import pytest

from depthcam.errors import ShapeMismatchError
from depthcam.vision.tensor import encode_tensor, resample_filter


@pytest.mark.parametrize("shape", [(480, 640), (256, 256), (3, 17), (1080, 1920)])
def test_byte_length_and_value_range(shape: tuple[int, int]) -> None:
    rng = np.random.default_rng(1)
    image = rng.integers(0, 256, size=(*shape, 3), dtype=np.uint8)

    tensor = encode_tensor(image, (256, 256))

    assert tensor.shape == (1, 256, 256, 3)
    assert tensor.dtype == np.float32
    assert tensor.nbytes == 256 * 256 * 3 * 4
    assert tensor.min() >= 0.0
    assert tensor.max() <= 1.0


def test_channels_stay_rgb_channel_last() -> None:
    image = np.zeros((10, 10, 3), dtype=np.uint8)
    image[..., 0] = 255
    image[..., 2] = 51

    tensor = encode_tensor(image, (8, 8))

    np.testing.assert_allclose(tensor[0, :, :, 0], 1.0)
    np.testing.assert_allclose(tensor[0, :, :, 1], 0.0)
    np.testing.assert_allclose(tensor[0, :, :, 2], 0.2, atol=1e-6)


def test_same_size_is_exact_division() -> None:
    image = np.arange(4 * 4 * 3, dtype=np.uint8).reshape(4, 4, 3)
    tensor = encode_tensor(image, (4, 4))
    np.testing.assert_allclose(tensor[0], image.astype(np.float32) / 255.0)


def test_non_square_input_size_is_height_then_width() -> None:
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    tensor = encode_tensor(image, (192, 320))
    assert tensor.shape == (1, 192, 320, 3)


def test_smooth_resize_keeps_gradient_monotonic() -> None:
    row = np.linspace(0, 255, 640).astype(np.uint8)
    image = np.repeat(np.tile(row, (480, 1))[:, :, None], 3, axis=2)
    tensor = encode_tensor(image, (256, 256))
    means = tensor[0, :, :, 0].mean(axis=0)
    assert np.all(np.diff(means) >= -1e-6)


def test_non_rgb_input_violates_contract() -> None:
    gray = np.zeros((16, 16), dtype=np.uint8)
    with pytest.raises(ShapeMismatchError):
        encode_tensor(gray, (8, 8))


def test_unknown_filter_name() -> None:
    with pytest.raises(ValueError):
        resample_filter("sinc")
