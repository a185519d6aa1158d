"""
RenderSurface backed by CairoSVG.

settle() inlines every external <image> reference (http(s) URLs and local
files) as a data URI so capture() never depends on network timing, then
waits the fixed settle delay. Resolved references are cached for the life
of the surface, which is reused across a whole run.
"""

import base64
import io
import logging
import mimetypes
import re
import time
from pathlib import Path
from typing import Callable, Dict, Optional
from urllib.parse import unquote, urlparse
from xml.sax.saxutils import unescape

import cairosvg
import requests
from PIL import Image

from render.surface import Region

logger = logging.getLogger(__name__)

mimetypes.add_type("image/webp", ".webp")

_IMAGE_HREF = re.compile(r"(<image\b[^>]*?\b(?:xlink:)?href\s*=\s*)([\"'])([^\"']+)\2", re.IGNORECASE)

# cairo composites PNG natively; anything else is transcoded before inlining
_NATIVE_TYPES = {"image/png", "image/svg+xml"}

# Shared assets (banners, fonts-as-images) hit; per-token refs fall out
CACHE_SIZE = 64


class CairoSurface:
    def __init__(
        self,
        timeout: float = 10.0,
        session=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep
        self._markup: Optional[str] = None
        self._cache: Dict[str, str] = {}

    def load(self, markup: str) -> None:
        self._markup = markup

    def settle(self, duration_sec: float) -> None:
        if self._markup is None:
            raise RuntimeError("settle() before load()")
        self._markup = _IMAGE_HREF.sub(self._inline_match, self._markup)
        if duration_sec > 0:
            self._sleep(duration_sec)

    def capture(self, region: Region) -> bytes:
        if self._markup is None:
            raise RuntimeError("capture() before load()")
        return cairosvg.svg2png(
            bytestring=self._markup.encode("utf-8"),
            output_width=region.width,
            output_height=region.height,
        )

    def close(self) -> None:
        self.session.close()
        self._cache.clear()

    # -------------------------------------------------

    def _inline_match(self, match) -> str:
        prefix, quote = match.group(1), match.group(2)
        # attribute text is XML-escaped; resolve the literal reference
        ref = unescape(match.group(3), {"&quot;": '"', "&apos;": "'"})
        return f"{prefix}{quote}{self._resolve(ref)}{quote}"

    def _resolve(self, ref: str) -> str:
        if ref.startswith(("data:", "#")):
            return ref
        if ref in self._cache:
            return self._cache[ref]

        parsed = urlparse(ref)
        if parsed.scheme in ("http", "https"):
            resp = self.session.get(ref, timeout=self.timeout)
            resp.raise_for_status()
            content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
            body = resp.content
        else:
            path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(ref)
            body = path.read_bytes()
            content_type = mimetypes.guess_type(path.name)[0] or ""

        if content_type not in _NATIVE_TYPES:
            body = _to_png(body)
            content_type = "image/png"

        data_uri = f"data:{content_type};base64,{base64.b64encode(body).decode('ascii')}"
        if len(self._cache) >= CACHE_SIZE:
            self._cache.pop(next(iter(self._cache)))
        self._cache[ref] = data_uri
        logger.debug("resolved %s (%d bytes)", ref, len(body))
        return data_uri


def _to_png(body: bytes) -> bytes:
    with Image.open(io.BytesIO(body)) as img:
        out = io.BytesIO()
        img.convert("RGBA").save(out, format="PNG")
        return out.getvalue()
