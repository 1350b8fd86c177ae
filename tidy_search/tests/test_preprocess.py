import io
import sys
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import NORM_MEAN, NORM_STD
from preprocess import DecodeError, center_crop, preprocess


def _image_bytes(size=(300, 200), color=(255, 255, 255), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=color).save(buf, fmt)
    return buf.getvalue()


def test_preprocess_shape_and_dtype():
    tensor = preprocess(_image_bytes(fmt="JPEG"))
    assert tensor.shape == (1, 3, 224, 224)
    assert tensor.dtype == np.float32


def test_preprocess_normalizes_per_channel():
    tensor = preprocess(_image_bytes(color=(255, 255, 255)))
    for c in range(3):
        expected = (1.0 - NORM_MEAN[c]) / NORM_STD[c]
        assert tensor[0, c, 0, 0] == pytest.approx(expected, rel=1e-5)
        assert tensor[0, c, 111, 111] == pytest.approx(expected, rel=1e-5)


def test_preprocess_channels_first():
    tensor = preprocess(_image_bytes(color=(255, 0, 0)))
    red = (1.0 - NORM_MEAN[0]) / NORM_STD[0]
    green = (0.0 - NORM_MEAN[1]) / NORM_STD[1]
    assert tensor[0, 0, 10, 10] == pytest.approx(red, rel=1e-5)
    assert tensor[0, 1, 10, 10] == pytest.approx(green, rel=1e-5)


def test_preprocess_grayscale_converted_to_rgb():
    buf = io.BytesIO()
    Image.new("L", (64, 64), color=128).save(buf, "PNG")
    assert preprocess(buf.getvalue()).shape == (1, 3, 224, 224)


def test_center_crop_keeps_middle():
    # left third red, middle third green, right third blue
    img = Image.new("RGB", (600, 200), color=(255, 0, 0))
    img.paste((0, 255, 0), (200, 0, 400, 200))
    img.paste((0, 0, 255), (400, 0, 600, 200))
    cropped = center_crop(img, 100)
    assert cropped.size == (100, 100)
    assert cropped.getpixel((50, 50)) == (0, 255, 0)


def test_empty_stream_rejected():
    with pytest.raises(DecodeError):
        preprocess(b"")


def test_garbage_stream_rejected():
    with pytest.raises(DecodeError):
        preprocess(b"this is not an image at all")


def test_truncated_stream_rejected():
    data = _image_bytes(size=(256, 256), fmt="PNG")
    with pytest.raises(DecodeError):
        preprocess(data[:64])
