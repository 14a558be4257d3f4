from __future__ import annotations

from io import BytesIO

import numpy as np
from PIL import Image

import services.preprocessing.image as image_mod
from services.preprocessing.image import (
    PreprocessOptions,
    boost_contrast,
    detect_mime_type,
    preprocess_image,
    trim_borders,
)
from tests.helpers import png_bytes


def test_detect_mime_type_by_magic_bytes():
    assert detect_mime_type(png_bytes()) == "image/png"
    assert detect_mime_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
    assert detect_mime_type(b"GIF89a....") == "image/gif"
    assert detect_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert detect_mime_type(b"%PDF-1.7") is None


def test_trim_borders_crops_to_content():
    arr = np.full((50, 80, 3), 255, dtype=np.uint8)
    arr[10:20, 30:40] = 0
    out = trim_borders(arr)
    assert out.shape[:2] == (10, 10)

    uniform = np.full((5, 5, 3), 7, dtype=np.uint8)
    assert trim_borders(uniform) is uniform


def test_boost_contrast_is_centered_on_mid_gray():
    arr = np.array([[[128, 0, 255]]], dtype=np.uint8)
    out = boost_contrast(arr, 1.2)
    assert out[0, 0, 0] == 128
    assert out[0, 0, 1] == 0
    assert out[0, 0, 2] == 255


def test_preprocess_upscales_into_width_band_and_flattens_alpha():
    img = Image.new("RGBA", (400, 100), (0, 0, 0, 0))
    for x in range(100, 300):
        for y in range(20, 80):
            img.putpixel((x, y), (10, 10, 10, 255))
    buf = BytesIO()
    img.save(buf, format="PNG")

    out = preprocess_image(buf.getvalue(), PreprocessOptions(min_width=1000, max_width=2000))
    assert out.mime_type == "image/png"
    assert out.width == 1000
    assert out.degraded_steps == []
    assert Image.open(BytesIO(out.data)).mode == "RGB"


def test_undecodable_input_passes_through():
    blob = b"GIF89a-not-really"
    out = preprocess_image(blob)
    assert out.data == blob
    assert out.mime_type == "image/gif"
    assert (out.width, out.height) == (0, 0)
    assert out.degraded


def test_failing_step_is_skipped_not_fatal(monkeypatch):
    def boom(*_args, **_kwargs):
        raise RuntimeError("sharpen broke")

    monkeypatch.setattr(image_mod, "unsharp_mask", boom)
    out = preprocess_image(png_bytes(1200, 300))
    assert out.degraded_steps == ["sharpen"]
    assert out.width == 1200
