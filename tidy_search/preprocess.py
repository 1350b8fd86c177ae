import io
import logging

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from config import CHANNELS, IMAGE_SIZE, NORM_MEAN, NORM_STD

# Large panoramas allowed; the crop frees the full-size image
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger(__name__)

_heif_registered = False

_MEAN = np.array(NORM_MEAN, dtype=np.float32)
_STD = np.array(NORM_STD, dtype=np.float32)


class DecodeError(Exception):
    """Raised when an image stream cannot be turned into a model tensor."""


def register_heif() -> None:
    """Register HEIF/HEIC opener with Pillow (idempotent)."""
    global _heif_registered
    if _heif_registered:
        return
    try:
        from pillow_heif import register_heif_opener

        register_heif_opener()
        _heif_registered = True
        logger.info("HEIF support registered")
    except ImportError:
        logger.warning("pillow-heif not installed; HEIF/HEIC files will be skipped")


def center_crop(img: Image.Image, size: int = IMAGE_SIZE) -> Image.Image:
    """Scale the short side to `size` and crop the centred square."""
    return ImageOps.fit(img, (size, size), Image.BICUBIC, centering=(0.5, 0.5))


def to_tensor(img: Image.Image) -> np.ndarray:
    """Normalise an RGB square image into a (1, C, H, W) float32 array."""
    arr = np.asarray(img, dtype=np.float32) / 255.0
    arr = (arr - _MEAN) / _STD
    return np.ascontiguousarray(arr.transpose(2, 0, 1)[np.newaxis], dtype=np.float32)


def preprocess(data: bytes, size: int = IMAGE_SIZE) -> np.ndarray:
    """Decode raw image bytes into the model's input tensor.

    Returns a (1, CHANNELS, size, size) float32 array. Raises DecodeError
    for empty, truncated or unrecognised streams.
    """
    if not data:
        raise DecodeError("Empty image stream")

    register_heif()
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGB")
            cropped = center_crop(img, size)
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as exc:
        raise DecodeError(f"Could not decode image: {exc}") from exc

    tensor = to_tensor(cropped)
    if tensor.shape != (1, CHANNELS, size, size):
        raise DecodeError(f"Unexpected tensor shape {tensor.shape}")
    return tensor
