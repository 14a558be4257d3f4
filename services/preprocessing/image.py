# services/preprocessing/image.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np
import yaml
from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

# Find project root (3 levels up from services/preprocessing/image.py)
PROJECT_ROOT = Path(__file__).resolve().parents[2]
CONFIG_PATH = PROJECT_ROOT / "config" / "thresholds.yaml"

try:
    if CONFIG_PATH.exists():
        with open(CONFIG_PATH, "r") as f:
            P_CFG = (yaml.safe_load(f) or {}).get("preprocessing", {}) or {}
    else:
        P_CFG = {}
except (OSError, yaml.YAMLError):
    P_CFG = {}

# DEFAULTS
MIN_WIDTH = int(P_CFG.get("min_width", 1000))
MAX_WIDTH = int(P_CFG.get("max_width", 2000))
CONTRAST_BOOST = float(P_CFG.get("contrast_boost", 1.2))
TRIM_THRESHOLD = int(P_CFG.get("trim_threshold", 10))
SHARPEN_SIGMA = 1.0
SHARPEN_AMOUNT = 1.0
OUTPUT_MIME = "image/png"
PNG_COMPRESSION = 6

_MAGIC: Tuple[Tuple[bytes, int, str], ...] = (
    (b"\x89PNG", 0, "image/png"),
    (b"\xff\xd8\xff", 0, "image/jpeg"),
    (b"GIF8", 0, "image/gif"),
)


@dataclass(frozen=True)
class PreprocessOptions:
    min_width: int = MIN_WIDTH
    max_width: int = MAX_WIDTH
    contrast_boost: float = CONTRAST_BOOST
    crop_whitespace: bool = True
    sharpen: bool = True
    background_color: Tuple[int, int, int] = (255, 255, 255)


@dataclass
class PreprocessedImage:
    data: bytes
    width: int
    height: int
    mime_type: str
    degraded_steps: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_steps)


def detect_mime_type(blob: bytes) -> Optional[str]:
    """Sniff PNG/JPEG/WebP/GIF from the header bytes. Returns None for anything else."""
    head = bytes(blob[:12])
    for magic, offset, mime in _MAGIC:
        if head[offset:offset + len(magic)] == magic:
            return mime
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return None


def measure(blob: bytes) -> Tuple[int, int]:
    try:
        with Image.open(BytesIO(blob)) as img:
            return img.size
    except (OSError, ValueError):
        return 0, 0


# --- individual steps (RGB uint8 arrays in, RGB uint8 arrays out) ---

def flatten(img: Image.Image, background: Tuple[int, int, int]) -> np.ndarray:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, background)
        canvas.paste(rgba, mask=rgba.getchannel("A"))
        return np.array(canvas)
    return np.array(img.convert("RGB"))


def trim_borders(arr: np.ndarray, threshold: int = TRIM_THRESHOLD) -> np.ndarray:
    """
    Crop borders that match the top-left pixel within `threshold` on every channel.
    A uniform image is returned unchanged.
    """
    bg = arr[0, 0].astype(np.int16)
    diff = np.abs(arr.astype(np.int16) - bg).max(axis=2)
    mask = diff > threshold
    if not mask.any():
        return arr
    rows = np.flatnonzero(mask.any(axis=1))
    cols = np.flatnonzero(mask.any(axis=0))
    return arr[rows[0]:rows[-1] + 1, cols[0]:cols[-1] + 1]


def resize_to_width_band(arr: np.ndarray, min_width: int, max_width: int) -> np.ndarray:
    h, w = arr.shape[:2]
    if w < min_width:
        target = min_width
    elif w > max_width:
        target = max_width
    else:
        return arr
    scale = target / float(w)
    new_h = max(1, int(round(h * scale)))
    return cv2.resize(arr, (target, new_h), interpolation=cv2.INTER_LANCZOS4)


def boost_contrast(arr: np.ndarray, multiplier: float) -> np.ndarray:
    if multiplier == 1:
        return arr
    offset = 128.0 - 128.0 * multiplier
    out = arr.astype(np.float32) * multiplier + offset
    return np.clip(np.rint(out), 0, 255).astype(np.uint8)


def unsharp_mask(arr: np.ndarray, sigma: float = SHARPEN_SIGMA, amount: float = SHARPEN_AMOUNT) -> np.ndarray:
    blurred = cv2.GaussianBlur(arr, (0, 0), sigma)
    return cv2.addWeighted(arr, 1.0 + amount, blurred, -amount, 0)


def encode_png(arr: np.ndarray) -> bytes:
    buf = BytesIO()
    Image.fromarray(arr).save(buf, format="PNG", compress_level=PNG_COMPRESSION)
    return buf.getvalue()


def _run_step(
    name: str,
    fn: Callable[[np.ndarray], np.ndarray],
    arr: np.ndarray,
    degraded: List[str],
) -> np.ndarray:
    try:
        return fn(arr)
    except Exception as e:  # each step falls back to pass-through
        logger.warning("Preprocess step %s skipped: %s", name, e)
        degraded.append(name)
        return arr


def preprocess_image(blob: bytes, options: Optional[PreprocessOptions] = None) -> PreprocessedImage:
    """
    Normalize a roster photo/scan for the vision model:
    flatten -> trim borders -> resize into width band -> contrast -> sharpen -> PNG.

    Never raises; if the image can't be decoded or encoded the original bytes are
    returned with their sniffed mime type.
    """
    opts = options or PreprocessOptions()
    degraded: List[str] = []

    try:
        img = Image.open(BytesIO(blob))
        img = ImageOps.exif_transpose(img)
        logger.info("Preprocess original: %sx%s, format=%s", img.width, img.height, img.format)
        arr = flatten(img, opts.background_color)
    except Exception as e:
        logger.warning("Preprocess failed, passing original bytes through: %s", e)
        return _passthrough(blob, ["decode"])

    if opts.crop_whitespace:
        arr = _run_step("trim", trim_borders, arr, degraded)
    arr = _run_step(
        "resize", lambda a: resize_to_width_band(a, opts.min_width, opts.max_width), arr, degraded
    )
    arr = _run_step("contrast", lambda a: boost_contrast(a, opts.contrast_boost), arr, degraded)
    if opts.sharpen:
        arr = _run_step("sharpen", unsharp_mask, arr, degraded)

    try:
        data = encode_png(arr)
    except Exception as e:
        logger.warning("Preprocess encode failed, passing original bytes through: %s", e)
        return _passthrough(blob, degraded + ["encode"])

    h, w = arr.shape[:2]
    logger.info("Preprocess final: %sx%s, format=png", w, h)
    return PreprocessedImage(data=data, width=w, height=h, mime_type=OUTPUT_MIME, degraded_steps=degraded)


def _passthrough(blob: bytes, degraded: List[str]) -> PreprocessedImage:
    w, h = measure(blob)
    return PreprocessedImage(
        data=blob,
        width=w,
        height=h,
        mime_type=detect_mime_type(blob) or OUTPUT_MIME,
        degraded_steps=list(degraded),
    )


def options_from_dict(cfg: Dict[str, Any]) -> PreprocessOptions:
    base = PreprocessOptions()
    known = {k: v for k, v in (cfg or {}).items() if k in base.__dataclass_fields__}
    if "background_color" in known:
        known["background_color"] = tuple(known["background_color"])
    return replace(base, **known)
