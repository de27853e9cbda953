"""
Preview imaging for placeholders with PIL.

- Pixelated low-res preview of the source (shown on every slot while loading)
- Red pixelated error overlay with a warning sign (shown on failed slots)
- Optimal render size from the source aspect ratio
"""

import os
import base64
import logging
from io import BytesIO
from typing import Optional

from PIL import Image, ImageDraw, UnidentifiedImageError

from .models import Size

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

MAX_LONG_EDGE = int(os.getenv("VARIATION_MAX_LONG_EDGE", "3840"))
PIXEL_SIZE = int(os.getenv("VARIATION_PIXEL_SIZE", "20"))

# Overlays are display-only; keep them small regardless of canvas size
MAX_OVERLAY_EDGE = 512

ERROR_TINT = (220, 38, 38)
FALLBACK_BACKGROUND = (70, 12, 12)
WARNING_FILL = (250, 204, 21)
WARNING_MARK = (24, 24, 27)


# ── Data URLs ────────────────────────────────────────────────────────────────

def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Return (bytes, mime_type) for a base64 data URL."""
    if not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("Not a data URL")
    header, payload = data_url.split(",", 1)
    mime_type = header[5:].split(";", 1)[0] or "application/octet-stream"
    if ";base64" not in header:
        raise ValueError("Only base64 data URLs are supported")
    return base64.b64decode(payload), mime_type


def _encode_png(img: Image.Image) -> str:
    output = BytesIO()
    img.save(output, format="PNG")
    return to_data_url(output.getvalue(), "image/png")


def _fit(width: float, height: float, max_edge: int = MAX_OVERLAY_EDGE) -> tuple[int, int]:
    w, h = max(1, int(round(width))), max(1, int(round(height)))
    scale = min(1.0, max_edge / max(w, h))
    return max(1, int(w * scale)), max(1, int(h * scale))


# ── Sizing ───────────────────────────────────────────────────────────────────

def optimal_dimensions(width: float, height: float, max_long_edge: int = MAX_LONG_EDGE) -> Size:
    """
    Render size for variations: 16:9 landscape or 9:16 portrait,
    long edge capped at max_long_edge (3840x2160 / 2160x3840 by default).
    """
    short_edge = int(round(max_long_edge * 9 / 16))
    if height <= 0 or width / height >= 1:
        return Size(width=max_long_edge, height=short_edge)
    return Size(width=short_edge, height=max_long_edge)


# ── Pixelation ───────────────────────────────────────────────────────────────

def _pixelate(img: Image.Image, width: int, height: int, pixel_size: int) -> Image.Image:
    blocks_w = max(1, width // max(1, pixel_size))
    blocks_h = max(1, height // max(1, pixel_size))
    small = img.convert("RGB").resize((blocks_w, blocks_h), Image.Resampling.BILINEAR)
    return small.resize((width, height), Image.Resampling.NEAREST)


def create_pixelated_preview(
    image_bytes: bytes,
    width: float,
    height: float,
    pixel_size: int = PIXEL_SIZE,
) -> str:
    """Pixelated PNG data URL of the source at (roughly) display size."""
    target_w, target_h = _fit(width, height)
    img = Image.open(BytesIO(image_bytes))
    return _encode_png(_pixelate(img, target_w, target_h, pixel_size))


# ── Error overlay ────────────────────────────────────────────────────────────

def _draw_warning_sign(canvas: Image.Image) -> None:
    width, height = canvas.size
    size = min(width, height) * 0.3
    left = (width - size) / 2
    top = (height - size) / 2
    draw = ImageDraw.Draw(canvas)
    draw.polygon(
        [(left + size / 2, top), (left + size, top + size), (left, top + size)],
        fill=WARNING_FILL,
    )
    bar_w = max(1.0, size * 0.08)
    cx = left + size / 2
    draw.rectangle(
        [cx - bar_w / 2, top + size * 0.35, cx + bar_w / 2, top + size * 0.7],
        fill=WARNING_MARK,
    )
    draw.rectangle(
        [cx - bar_w / 2, top + size * 0.78, cx + bar_w / 2, top + size * 0.78 + bar_w],
        fill=WARNING_MARK,
    )


def create_fallback_overlay(width: float, height: float) -> str:
    target_w, target_h = _fit(width, height)
    canvas = Image.new("RGB", (target_w, target_h), FALLBACK_BACKGROUND)
    _draw_warning_sign(canvas)
    return _encode_png(canvas)


def create_error_overlay(
    source: Optional[str],
    width: float,
    height: float,
    pixel_size: int = PIXEL_SIZE,
) -> str:
    """
    Red-tinted pixelated overlay with a centered warning sign.

    `source` is a data URL (usually the slot's pixelated preview). Any
    source that cannot be decoded falls back to a generic overlay, so this
    always returns a usable image.
    """
    if not source:
        return create_fallback_overlay(width, height)

    try:
        image_bytes, _ = decode_data_url(source)
        img = Image.open(BytesIO(image_bytes))
        target_w, target_h = _fit(width, height)
        pixelated = _pixelate(img, target_w, target_h, pixel_size)
    except (ValueError, UnidentifiedImageError, OSError) as e:
        logger.warning(f"Error overlay source unusable, using fallback: {e}")
        return create_fallback_overlay(width, height)

    grayscale = pixelated.convert("L").convert("RGB")
    red = Image.new("RGB", grayscale.size, ERROR_TINT)
    tinted = Image.blend(grayscale, red, 0.55)
    _draw_warning_sign(tinted)
    return _encode_png(tinted)
