"""Placeholder images served for slide image URLs."""

from __future__ import annotations

from xml.sax.saxutils import escape

ASPECT_SIZES: dict[str, tuple[int, int]] = {
    "1:1": (400, 400),
    "3:4": (300, 400),
    "4:3": (400, 300),
    "9:16": (270, 480),
    "16:9": (480, 270),
}
MAX_LABEL_CHARS = 80


def aspect_to_size(aspect: str | None) -> tuple[int, int]:
    return ASPECT_SIZES.get(aspect or "1:1", (400, 400))


def placeholder_svg(label: str, aspect: str | None = None) -> str:
    """Neutral SVG placeholder with the label drawn under a picture glyph."""
    w, h = aspect_to_size(aspect)
    text = escape(label[:MAX_LABEL_CHARS], {'"': "&quot;"})
    cx, cy = w // 2, h // 2
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{w}" height="{h}" '
        f'viewBox="0 0 {w} {h}">'
        f'<rect width="100%" height="100%" fill="#f3f4f6"/>'
        f'<rect x="{cx - 20}" y="{cy - 24}" width="40" height="40" rx="8" fill="#d1d5db"/>'
        f'<path d="M{cx - 8} {cy - 8} l6 8 4-4 6 8h-22z" fill="#9ca3af"/>'
        f'<circle cx="{cx + 8}" cy="{cy - 10}" r="4" fill="#9ca3af"/>'
        f'<text x="50%" y="{cy + 28}" dominant-baseline="middle" text-anchor="middle" '
        f'font-family="system-ui,sans-serif" font-size="11" fill="#9ca3af">{text}</text>'
        f"</svg>"
    )
