"""Sizing and re-encoding of images before they are sent to the cloud engine."""
from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import math
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from menu_ocr.confidence.confidence import round_half_up
from menu_ocr.core.errors import ValidationError
from menu_ocr.ocr.base_ocr import ImageInput

logger = logging.getLogger(__name__)

MIN_LONG_EDGE = 1024
MAX_LONG_EDGE = 4096
DEFAULT_MAX_IMAGE_SIZE = 4 * 1024 * 1024
# Rough size of a high-quality JPEG per pixel; only used to pick a scale.
ESTIMATED_BYTES_PER_PIXEL = 0.3

DATA_URL_PREFIX = "data:image/"

_PIL_FORMATS = {"jpeg": "JPEG", "jpg": "JPEG", "png": "PNG", "webp": "WEBP"}


@dataclass(frozen=True)
class OptimalSize:
    width: int
    height: int
    scale: float


def _even(value: float) -> int:
    return max(2, round_half_up(value / 2) * 2)


def calculate_optimal_size(width: int, height: int, max_bytes: int = DEFAULT_MAX_IMAGE_SIZE) -> OptimalSize:
    if width <= 0 or height <= 0:
        raise ValidationError(f"Image dimensions must be positive, got {width}x{height}")

    long_edge = max(width, height)
    if long_edge < MIN_LONG_EDGE:
        scale = MIN_LONG_EDGE / long_edge
    elif long_edge > MAX_LONG_EDGE:
        scale = MAX_LONG_EDGE / long_edge
    else:
        scale = 1.0

    estimated = width * height * scale * scale * ESTIMATED_BYTES_PER_PIXEL
    if max_bytes > 0 and estimated > max_bytes:
        scale *= math.sqrt(max_bytes / estimated)
        scale = max(scale, MIN_LONG_EDGE / long_edge)

    return OptimalSize(width=_even(width * scale), height=_even(height * scale), scale=scale)


def convert_to_base64(image: ImageInput) -> str:
    """Return the bare base64 payload for ``image``."""
    if isinstance(image, str):
        if not image.startswith(DATA_URL_PREFIX) or "," not in image:
            raise ValidationError("String image data must be a data URL")
        return image.split(",", 1)[1]
    if isinstance(image, (bytes, bytearray)):
        return base64.b64encode(bytes(image)).decode("ascii")
    raise ValidationError(f"Unsupported image type: {type(image).__name__}")


def decode_image_bytes(image: ImageInput) -> bytes:
    if isinstance(image, (bytes, bytearray)):
        return bytes(image)
    try:
        return base64.b64decode(convert_to_base64(image), validate=True)
    except binascii.Error as exc:
        raise ValidationError("Data URL does not contain valid base64") from exc


def load_image(image: ImageInput) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(decode_image_bytes(image)))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError("Invalid image format: Please try a different image") from exc
    return img


def _render(image: ImageInput, quality: float, image_format: str, max_image_size: int) -> str:
    fmt = image_format.lower()
    pil_format = _PIL_FORMATS.get(fmt)
    if pil_format is None:
        raise ValidationError(f"Unsupported output format: {image_format!r}")

    src = load_image(image)
    size = calculate_optimal_size(src.width, src.height, max_image_size)
    out = src.resize((size.width, size.height), Image.Resampling.LANCZOS)
    if pil_format == "JPEG" and out.mode not in ("RGB", "L"):
        out = out.convert("RGB")

    buf = io.BytesIO()
    save_kwargs = {"quality": int(round_half_up(quality * 100))} if pil_format != "PNG" else {}
    out.save(buf, format=pil_format, **save_kwargs)
    payload = base64.b64encode(buf.getvalue()).decode("ascii")

    logger.debug(
        "image_optimized",
        extra={
            "source_size": f"{src.width}x{src.height}",
            "target_size": f"{size.width}x{size.height}",
            "encoded_bytes": buf.tell(),
        },
    )
    mime = "jpeg" if pil_format == "JPEG" else fmt
    return f"data:image/{mime};base64,{payload}"


async def optimize_image_for_api(
    image: ImageInput,
    *,
    quality: float = 0.9,
    image_format: str = "jpeg",
    max_image_size: int = DEFAULT_MAX_IMAGE_SIZE,
) -> str:
    """Re-render ``image`` at its optimal size; returns a new data URL."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _render, image, quality, image_format, max_image_size)
