"""Image sizing and encoding tests."""
from __future__ import annotations

import base64
import io

import pytest
from PIL import Image

from conftest import TINY_PNG_DATA_URL, as_data_url, make_png
from menu_ocr.core.errors import ValidationError
from menu_ocr.ocr.image_optimizer import (
    DEFAULT_MAX_IMAGE_SIZE,
    calculate_optimal_size,
    convert_to_base64,
    optimize_image_for_api,
)


# ---------------------------------------------------------------------------
# calculate_optimal_size
# ---------------------------------------------------------------------------

def test_small_image_is_upscaled() -> None:
    result = calculate_optimal_size(512, 384, DEFAULT_MAX_IMAGE_SIZE)
    assert result.width >= 1024
    assert result.scale > 1


def test_large_image_is_downscaled() -> None:
    result = calculate_optimal_size(8192, 6144, DEFAULT_MAX_IMAGE_SIZE)
    assert max(result.width, result.height) <= 4096
    assert result.scale < 1


def test_mid_sized_image_keeps_scale() -> None:
    result = calculate_optimal_size(1600, 1200, DEFAULT_MAX_IMAGE_SIZE)
    assert result.scale == pytest.approx(1.0)
    assert (result.width, result.height) == (1600, 1200)


def test_aspect_ratio_is_preserved() -> None:
    result = calculate_optimal_size(1600, 1200, DEFAULT_MAX_IMAGE_SIZE)
    assert abs(1600 / 1200 - result.width / result.height) < 0.01


def test_dimensions_are_even() -> None:
    result = calculate_optimal_size(1003, 777, DEFAULT_MAX_IMAGE_SIZE)
    assert result.width % 2 == 0
    assert result.height % 2 == 0


@pytest.mark.parametrize(
    "width,height",
    [(1, 1), (3, 2), (640, 480), (1003, 777), (1080, 1920), (3000, 4000), (5001, 3333), (12000, 9000)],
)
def test_output_bounds_hold_for_typical_photos(width: int, height: int) -> None:
    result = calculate_optimal_size(width, height, DEFAULT_MAX_IMAGE_SIZE)
    assert result.width % 2 == 0 and result.height % 2 == 0
    assert 1024 <= max(result.width, result.height) <= 4096
    assert abs(width / height - result.width / result.height) <= 0.01 * (width / height)


def test_byte_budget_shrinks_but_not_below_min_edge() -> None:
    result = calculate_optimal_size(4000, 3000, max_bytes=100_000)
    assert max(result.width, result.height) == 1024


def test_non_positive_dimensions_rejected() -> None:
    with pytest.raises(ValidationError):
        calculate_optimal_size(0, 100)


# ---------------------------------------------------------------------------
# convert_to_base64
# ---------------------------------------------------------------------------

def test_data_url_header_is_stripped() -> None:
    assert convert_to_base64(TINY_PNG_DATA_URL) == TINY_PNG_DATA_URL.split(",", 1)[1]


def test_non_data_url_string_rejected() -> None:
    with pytest.raises(ValidationError, match="String image data must be a data URL"):
        convert_to_base64("not-a-data-url")


def test_bytes_are_base64_encoded() -> None:
    png = make_png(2, 2)
    assert base64.b64decode(convert_to_base64(png)) == png


# ---------------------------------------------------------------------------
# optimize_image_for_api
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_optimize_returns_new_jpeg_payload() -> None:
    source = make_png(512, 384)
    original = bytes(source)

    out = await optimize_image_for_api(source, quality=0.8, image_format="jpeg")

    assert out.startswith("data:image/jpeg;base64,")
    img = Image.open(io.BytesIO(base64.b64decode(out.split(",", 1)[1])))
    assert img.size == (1024, 768)
    assert source == original


@pytest.mark.asyncio
async def test_optimize_accepts_data_url_and_png_output() -> None:
    out = await optimize_image_for_api(as_data_url(make_png(100, 50)), image_format="png")
    assert out.startswith("data:image/png;base64,")
    img = Image.open(io.BytesIO(base64.b64decode(out.split(",", 1)[1])))
    assert img.size == (1024, 512)


@pytest.mark.asyncio
async def test_optimize_rejects_garbage_bytes() -> None:
    with pytest.raises(ValidationError, match="Invalid image format"):
        await optimize_image_for_api(b"definitely not an image")
