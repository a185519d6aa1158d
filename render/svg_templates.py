"""
SVG preparation for deterministic capture, and the social-card templates.
"""

import re
from typing import Tuple
from xml.sax.saxutils import escape, quoteattr

CARD_WIDTH = 1200
CARD_HEIGHT = 630

_SVG_OPEN = re.compile(r"<svg\b([^>]*)>", re.IGNORECASE)
_AUDIO = re.compile(r"<audio\b[^>]*>[\s\S]*?</audio>|<audio\b[^>]*/>", re.IGNORECASE)
_SCRIPT = re.compile(r"<script\b[^>]*>[\s\S]*?</script>|<script\b[^>]*/>", re.IGNORECASE)
_NUMBER = r"[-+]?\d*\.?\d+"

# Pause every CSS animation at its first frame
PAUSE_ANIMATION_STYLE = (
    '<style type="text/css">'
    "* { animation-play-state: paused !important; animation-delay: -0.001s !important; }"
    "</style>"
)


def _root_attr(attrs: str, name: str):
    match = re.search(r"(?<![\w:-])%s\s*=\s*[\"']([^\"']*)[\"']" % re.escape(name), attrs)
    return match.group(1) if match else None


def _length(value):
    if value is None:
        return None
    match = re.fullmatch(r"\s*(%s)\s*(px)?\s*" % _NUMBER, value)
    return float(match.group(1)) if match else None


def svg_dimensions(markup: str, default: Tuple[int, int]) -> Tuple[int, int]:
    """Native (width, height) from the root width/height, else viewBox, else default."""
    opening = _SVG_OPEN.search(markup)
    if not opening:
        return default
    attrs = opening.group(1)

    width = _length(_root_attr(attrs, "width"))
    height = _length(_root_attr(attrs, "height"))
    if width and height:
        return round(width), round(height)

    view_box = _root_attr(attrs, "viewBox")
    if view_box:
        parts = re.findall(_NUMBER, view_box)
        if len(parts) == 4 and float(parts[2]) > 0 and float(parts[3]) > 0:
            return round(float(parts[2])), round(float(parts[3]))
    return default


def prepare_svg(markup: str, width: int, height: int) -> str:
    """
    Make markup safe to capture as a single deterministic frame: add a
    viewBox if missing, pause animations, drop audio and script elements.
    """
    prepared = _AUDIO.sub("", markup)
    prepared = _SCRIPT.sub("", prepared)

    opening = _SVG_OPEN.search(prepared)
    if not opening:
        raise ValueError("markup has no <svg> root element")

    attrs = opening.group(1)
    self_closing = attrs.rstrip().endswith("/")
    if self_closing:
        attrs = attrs.rstrip()[:-1]
    if _root_attr(attrs, "viewBox") is None:
        attrs = f'{attrs} viewBox="0 0 {width} {height}"'
    # Self-closing roots have nothing to pause
    if self_closing:
        new_open = f"<svg{attrs}/>"
    else:
        new_open = f"<svg{attrs}>{PAUSE_ANIMATION_STYLE}"
    return prepared[:opening.start()] + new_open + prepared[opening.end():]


def build_backdrop_svg(thumb_ref: str, width: int = CARD_WIDTH, height: int = CARD_HEIGHT) -> str:
    """Full-bleed thumbnail over the dark base; blurred after capture."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<svg width="{width}" height="{height}" viewBox="0 0 {width} {height}" xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink">
  <rect width="{width}" height="{height}" fill="#0a0a0f"/>
  <image xlink:href={quoteattr(thumb_ref)} x="-100" y="-100" width="{width + 200}" height="{height + 200}" preserveAspectRatio="xMidYMid slice"/>
</svg>"""


def build_card_svg(
    token_id: int,
    thumb_ref: str,
    backdrop_ref: str,
    title: str,
    collection: str,
    tagline: str,
    width: int = CARD_WIDTH,
    height: int = CARD_HEIGHT,
) -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<svg width="{width}" height="{height}" viewBox="0 0 {width} {height}" xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink">
  <defs>
    <linearGradient id="overlay" x1="0%" y1="0%" x2="100%" y2="0%">
      <stop offset="0%" stop-color="#0a0a0f" stop-opacity="0.3"/>
      <stop offset="40%" stop-color="#0a0a0f" stop-opacity="0.7"/>
      <stop offset="100%" stop-color="#0a0a0f" stop-opacity="0.95"/>
    </linearGradient>
    <clipPath id="nftClip">
      <rect x="60" y="65" width="500" height="500" rx="16"/>
    </clipPath>
  </defs>

  <rect width="{width}" height="{height}" fill="#0a0a0f"/>
  <image xlink:href={quoteattr(backdrop_ref)} x="0" y="0" width="{width}" height="{height}"/>
  <rect width="{width}" height="{height}" fill="url(#overlay)"/>

  <rect x="60" y="73" width="500" height="500" rx="16" fill="#000000" opacity="0.5"/>
  <rect x="60" y="65" width="500" height="500" rx="16" fill="#1a1a1f"/>
  <image xlink:href={quoteattr(thumb_ref)} x="60" y="65" width="500" height="500" preserveAspectRatio="xMidYMid slice" clip-path="url(#nftClip)"/>

  <g font-family="system-ui, -apple-system, 'Segoe UI', Roboto, sans-serif">
    <text x="620" y="220" font-size="28" font-weight="400" fill="#ffffff" fill-opacity="0.6">{escape(collection)}</text>
    <text x="620" y="290" font-size="42" font-weight="700" fill="#ffffff">{escape(title)}</text>
    <text x="620" y="400" font-size="96" font-weight="800" fill="#ffffff">#{int(token_id)}</text>
    <text x="620" y="480" font-size="22" font-weight="400" fill="#ffffff" fill-opacity="0.5">{escape(tagline)}</text>
  </g>

  <rect x="0" y="0" width="{width}" height="{height}" fill="none" stroke="#ffffff" stroke-opacity="0.1" stroke-width="2"/>
</svg>"""
