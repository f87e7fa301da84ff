"""Overlay rendering: annotation strokes and labels to an SVG document.

The renderer is a pure function of its inputs. Strokes with fewer than two
points and labels without text are dropped; everything else renders with
defaults. Paint order is all strokes in request order, then all labels in
request order.
"""

from collections.abc import Iterable

from imageservice.config import settings
from imageservice.models.annotation import Stroke, TextLabel

SVG_NAMESPACE = "http://www.w3.org/2000/svg"
FONT_FAMILY = "Arial, sans-serif"


def resolve_canvas(dimensions: tuple[int, int] | None) -> tuple[int, int]:
    """Return (width, height), substituting the fallback canvas when unknown."""
    fallback_w = settings.fallback_canvas_width
    fallback_h = settings.fallback_canvas_height
    if not dimensions:
        return fallback_w, fallback_h
    width, height = dimensions
    return (width or fallback_w), (height or fallback_h)


def format_number(value: float) -> str:
    """Whole numbers print without a decimal point (10.0 -> "10")."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def escape_text(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;")


def escape_attribute(value: str) -> str:
    return escape_text(value).replace('"', "&quot;")


def path_data(points) -> str:
    """Open polyline: a move to the first point, then a line to each next one."""
    parts = []
    for idx, point in enumerate(points):
        coords = f"{format_number(point.x)} {format_number(point.y)}"
        parts.append(coords if idx == 0 else f"L {coords}")
    return "M " + " ".join(parts)


def render_stroke(stroke: Stroke) -> str:
    return (
        f'<path d="{path_data(stroke.points)}" fill="none" '
        f'stroke="{escape_attribute(stroke.color)}" '
        f'stroke-width="{format_number(stroke.width)}" '
        'stroke-linecap="round" stroke-linejoin="round" />'
    )


def render_text(label: TextLabel) -> str:
    return (
        f'<text x="{format_number(label.x)}" y="{format_number(label.y)}" '
        f'fill="{escape_attribute(label.color)}" '
        f'font-size="{format_number(label.font_size)}" '
        f'font-family="{FONT_FAMILY}">{escape_text(label.text)}</text>'
    )


def render_overlay(
    width: int,
    height: int,
    strokes: Iterable[Stroke] | None = None,
    texts: Iterable[TextLabel] | None = None,
) -> str:
    """Build the overlay document for a canvas of exactly width x height."""
    strokes = strokes if isinstance(strokes, (list, tuple)) else []
    texts = texts if isinstance(texts, (list, tuple)) else []

    parts = [
        f'<svg width="{width}" height="{height}" viewBox="0 0 {width} {height}" '
        f'xmlns="{SVG_NAMESPACE}">'
    ]
    parts.extend(render_stroke(s) for s in strokes if s.renderable)
    parts.extend(render_text(t) for t in texts if t.renderable)
    parts.append("</svg>")
    return "".join(parts)
