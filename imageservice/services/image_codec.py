"""Raster codec and overlay compositor built on Pillow.

Everything here is synchronous and CPU-bound; async callers run it through
``asyncio.to_thread``. Decoded images never outlive the call that opened them.
"""

import logging
import re
import xml.etree.ElementTree as ET
from functools import lru_cache
from io import BytesIO

from PIL import Image, ImageColor, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from imageservice.config import settings
from imageservice.errors import CompositorFailure, InvalidInput

logger = logging.getLogger(__name__)

DECODE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError)

# Modes each output encoder accepts without conversion
ENCODER_MODES = {
    "png": {"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"},
    "jpeg": {"L", "RGB", "CMYK"},
    "webp": {"RGB", "RGBA"},
}

FALLBACK_FONTS = ("DejaVuSans.ttf", "Arial.ttf", "arial.ttf")

_PATH_TOKEN = re.compile(r"[MLml]|[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


def _pil_format(fmt: str) -> str:
    fmt = fmt.lower()
    return "jpeg" if fmt == "jpg" else fmt


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA", "RGBa", "La") or "transparency" in img.info


def _encode(img: Image.Image, fmt: str) -> bytes:
    fmt = _pil_format(fmt)
    allowed = ENCODER_MODES.get(fmt)
    if allowed is not None and img.mode not in allowed:
        img = img.convert("RGBA" if _has_alpha(img) and "RGBA" in allowed else "RGB")
    buffer = BytesIO()
    img.save(buffer, format=fmt.upper())
    return buffer.getvalue()


# ── Codec capability ─────────────────────────────────────────────────────────

def decode_metadata(data: bytes) -> tuple[int, int] | None:
    """Get image width and height, or None if the bytes don't decode."""
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
    except DECODE_ERRORS:
        return None
    if not width or not height:
        return None
    return width, height


def reencode(data: bytes, target_format: str | None = None) -> bytes:
    """Decode any Pillow-supported image and write it in the target format.

    EXIF orientation is applied so stored pixels are upright. Undecodable
    input raises InvalidInput.
    """
    fmt = target_format or settings.canonical_format
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            upright = ImageOps.exif_transpose(img)
            return _encode(upright, fmt)
    except DECODE_ERRORS as e:
        raise InvalidInput("Unsupported or corrupt image", error=str(e)) from e


# ── Overlay rasterization ────────────────────────────────────────────────────

def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_color(value: str | None) -> tuple[int, int, int, int] | None:
    if not value:
        return None
    try:
        rgb = ImageColor.getrgb(value.strip())
    except ValueError:
        return None
    return rgb if len(rgb) == 4 else (*rgb, 255)


def _number(value: str | None, default: float) -> float:
    if value is None:
        return default
    match = _PATH_TOKEN.search(value)
    if not match or match.group(0) in "MLml":
        return default
    return float(match.group(0))


def parse_path_data(d: str) -> list[list[tuple[float, float]]]:
    """Split move/line path data into subpaths of absolute points."""
    subpaths: list[list[tuple[float, float]]] = []
    command = "M"
    numbers: list[float] = []
    current = (0.0, 0.0)

    for token in _PATH_TOKEN.findall(d):
        if token in "MLml":
            command = token
            numbers = []
            continue
        numbers.append(float(token))
        if len(numbers) < 2:
            continue
        x, y = numbers
        numbers = []
        if command.islower():
            x, y = current[0] + x, current[1] + y
        current = (x, y)
        if command in "Mm" or not subpaths:
            subpaths.append([current])
            # Extra pairs after a move are implicit lines
            command = "L" if command == "M" else "l"
        else:
            subpaths[-1].append(current)
    return subpaths


@lru_cache(maxsize=32)
def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    candidates = ([settings.font_path] if settings.font_path else []) + list(FALLBACK_FONTS)
    for name in candidates:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _draw_path(draw: ImageDraw.ImageDraw, el: ET.Element, sx: float, sy: float) -> None:
    color = _parse_color(el.get("stroke"))
    if color is None:
        # An unknown or missing stroke paints nothing
        logger.warning("Skipping path with unusable stroke color %r", el.get("stroke"))
        return
    width = max(1, round(_number(el.get("stroke-width"), 1.0) * (sx + sy) / 2))
    radius = width / 2

    for subpath in parse_path_data(el.get("d", "")):
        if len(subpath) < 2:
            continue
        points = [(x * sx, y * sy) for x, y in subpath]
        draw.line(points, fill=color, width=width, joint="curve")
        # Round caps
        for x, y in (points[0], points[-1]):
            draw.ellipse((x - radius, y - radius, x + radius, y + radius), fill=color)


def _visible_run(font, content: str, x: float, canvas_width: int) -> tuple[float, str]:
    """Drop glyphs lying wholly left or right of the canvas.

    Pillow rasterizes the full string before clipping, so off-canvas text
    still costs memory. Returns the shifted start x and the remaining text.
    """
    if x < 0:
        lo, hi = 0, len(content)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if x + font.getlength(content[:mid]) <= 0:
                lo = mid
            else:
                hi = mid - 1
        x += font.getlength(content[:lo])
        content = content[lo:]

    available = canvas_width - x
    if available <= 0:
        return x, ""
    if font.getlength(content) > available:
        # Keep the first glyph that crosses the right edge
        lo, hi = 1, len(content)
        while lo < hi:
            mid = (lo + hi) // 2
            if font.getlength(content[:mid]) > available:
                hi = mid
            else:
                lo = mid + 1
        content = content[:lo]
    return x, content


def _draw_text(
    draw: ImageDraw.ImageDraw,
    el: ET.Element,
    sx: float,
    sy: float,
    canvas: tuple[int, int],
) -> None:
    content = "".join(el.itertext())
    if not content:
        return
    color = _parse_color(el.get("fill"))
    if color is None:
        color = (0, 0, 0, 255)
    size = max(1, round(_number(el.get("font-size"), 16.0) * sy))
    # A glyph taller than the canvas shows no more than the canvas itself
    size = min(size, max(canvas))
    font = _load_font(size)
    x = _number(el.get("x"), 0.0) * sx
    y = _number(el.get("y"), 0.0) * sy
    x, content = _visible_run(font, content, x, canvas[0])
    if not content:
        return
    if isinstance(font, ImageFont.FreeTypeFont):
        # SVG text is positioned by its baseline
        draw.text((x, y), content, fill=color, font=font, anchor="ls")
    else:
        draw.text((x, y - size), content, fill=color, font=font)


def rasterize_overlay(overlay: bytes | str, size: tuple[int, int]) -> Image.Image:
    """Paint an SVG overlay onto a transparent RGBA layer of the given size."""
    if isinstance(overlay, str):
        overlay = overlay.encode("utf-8")
    root = ET.fromstring(overlay)
    if _local_name(root.tag) != "svg":
        raise ValueError(f"Overlay root element is <{_local_name(root.tag)}>, not <svg>")

    width, height = size
    view_box = [float(v) for v in re.split(r"[\s,]+", root.get("viewBox", "").strip()) if v]
    if len(view_box) == 4 and view_box[2] > 0 and view_box[3] > 0:
        frame_w, frame_h = view_box[2], view_box[3]
    else:
        frame_w = _number(root.get("width"), width) or width
        frame_h = _number(root.get("height"), height) or height
    sx, sy = width / frame_w, height / frame_h

    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    # Document order is paint order
    for el in root.iter():
        name = _local_name(el.tag)
        if name == "path":
            _draw_path(draw, el, sx, sy)
        elif name == "text":
            _draw_text(draw, el, sx, sy, size)
    return layer


def composite(base: bytes, overlay: bytes | str, target_format: str | None = None) -> bytes:
    """Alpha-composite an SVG overlay over a raster image and encode the result.

    Opaque bases come back without an alpha channel, so an overlay that paints
    nothing leaves every pixel unchanged.
    """
    fmt = target_format or settings.canonical_format
    try:
        with Image.open(BytesIO(base)) as src:
            src.load()
            keep_alpha = _has_alpha(src)
            canvas = src.convert("RGBA")
        layer = rasterize_overlay(overlay, canvas.size)
        result = Image.alpha_composite(canvas, layer)
        if not keep_alpha:
            result = result.convert("RGB")
        return _encode(result, fmt)
    except (*DECODE_ERRORS, ET.ParseError) as e:
        raise CompositorFailure("Failed to annotate image", error=str(e)) from e
