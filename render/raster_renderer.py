"""
Raster Renderer.

Derives fixed-size rasters from the local SVG corpus:

- thumbnails/{id}.webp : first frame of the artwork, contain-fit to THUMB_WIDTH
- og-images/{id}.png   : 1200x630 social card composed around the thumbnail

Work is spread over a fixed pool of RenderSurfaces. Each window holds at most
one item per surface, so a surface only ever renders one item at a time and
is reused for the whole run. An existing output file skips the item.
"""

import base64
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from models.upload_task import ArtifactKind
from render.surface import Region, RenderSurface
from render.svg_templates import (
    CARD_HEIGHT,
    CARD_WIDTH,
    build_backdrop_svg,
    build_card_svg,
    prepare_svg,
    svg_dimensions,
)
from runtime.artifacts import ArtifactKey, LocalArtifactIndex, write_atomic
from runtime.errors import RenderError, StagePrecondition
from runtime.progress import ProgressTracker, StageTally
from runtime.windows import run_windows

logger = logging.getLogger(__name__)

BACKDROP_BLUR_RADIUS = 30
BACKDROP_BRIGHTNESS = 0.4


@dataclass
class CardText:
    collection: str
    title: str
    tagline: str


def to_thumbnail(png: bytes, width: int, aspect: Tuple[int, int], quality: int = 85) -> bytes:
    """Contain-fit a captured frame into width x (width * h / w), transparent padding, WebP."""
    native_w, native_h = aspect
    target = (width, max(round(width * native_h / native_w), 1))
    with Image.open(io.BytesIO(png)) as frame:
        fitted = ImageOps.pad(
            frame.convert("RGBA"), target, method=Image.Resampling.LANCZOS, color=(0, 0, 0, 0)
        )
    out = io.BytesIO()
    fitted.save(out, format="WEBP", quality=quality)
    return out.getvalue()


def blur_and_dim(png: bytes) -> bytes:
    with Image.open(io.BytesIO(png)) as frame:
        backdrop = frame.convert("RGB").filter(ImageFilter.GaussianBlur(BACKDROP_BLUR_RADIUS))
    backdrop = ImageEnhance.Brightness(backdrop).enhance(BACKDROP_BRIGHTNESS)
    out = io.BytesIO()
    backdrop.save(out, format="PNG")
    return out.getvalue()


def png_data_uri(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


class RasterRenderer:
    def __init__(
        self,
        index: LocalArtifactIndex,
        surfaces: Sequence[RenderSurface],
        settle_sec: float = 0.5,
        thumb_width: int = 400,
        thumb_quality: int = 85,
        native_size: Tuple[int, int] = (936, 1080),
        card_text: Optional[CardText] = None,
        thumb_base_url: Optional[str] = None,
    ):
        if not surfaces:
            raise ValueError("at least one render surface is required")
        self.index = index
        self.surfaces = list(surfaces)
        self.settle_sec = settle_sec
        self.thumb_width = thumb_width
        self.thumb_quality = thumb_quality
        self.native_size = native_size
        self.card_text = card_text or CardText("", "", "")
        self.thumb_base_url = thumb_base_url.rstrip("/") if thumb_base_url else None

    # -------------------------------------------------
    # Thumbnails
    # -------------------------------------------------

    def render_thumbnail(self, token_id: int, surface: RenderSurface) -> Path:
        out_path = self.index.path_for(ArtifactKey(token_id, ArtifactKind.THUMB))
        try:
            markup = self.index.path_for(ArtifactKey(token_id, ArtifactKind.SVG)).read_text(encoding="utf-8")
            width, height = svg_dimensions(markup, self.native_size)

            surface.load(prepare_svg(markup, width, height))
            surface.settle(self.settle_sec)
            frame = surface.capture(Region(width, height))

            thumb = to_thumbnail(frame, self.thumb_width, (width, height), self.thumb_quality)
        except Exception as e:
            raise RenderError(token_id, e) from e
        return write_atomic(out_path, thumb)

    def render_thumbnails(self, token_ids: Optional[Sequence[int]] = None) -> StageTally:
        if not self.index.dir_for(ArtifactKind.SVG).is_dir():
            raise StagePrecondition(f"No images directory at {self.index.dir_for(ArtifactKind.SVG)}")
        self.index.ensure_dirs(ArtifactKind.THUMB)
        ids = self.index.token_ids(ArtifactKind.SVG) if token_ids is None else list(token_ids)
        return self._run("thumbnails", ids, ArtifactKind.THUMB, self.render_thumbnail)

    # -------------------------------------------------
    # Social cards
    # -------------------------------------------------

    def thumb_ref(self, token_id: int) -> str:
        if self.thumb_base_url:
            return f"{self.thumb_base_url}/{token_id}.webp"
        key = ArtifactKey(token_id, ArtifactKind.THUMB)
        if not self.index.exists(key):
            raise FileNotFoundError(f"thumbnail missing for token {token_id}")
        return self.index.path_for(key).resolve().as_uri()

    def card_title(self, token_id: int) -> str:
        # Prefer the item's own name when its metadata is on disk
        path = self.index.path_for(ArtifactKey(token_id, ArtifactKind.METADATA))
        if path.is_file():
            try:
                name = json.loads(path.read_text(encoding="utf-8")).get("name")
                if name:
                    return str(name)
            except ValueError:
                logger.warning("unreadable metadata for token %d, using default title", token_id)
        return self.card_text.title

    def render_card(self, token_id: int, surface: RenderSurface) -> Path:
        out_path = self.index.path_for(ArtifactKey(token_id, ArtifactKind.OG))
        region = Region(CARD_WIDTH, CARD_HEIGHT)
        try:
            thumb_ref = self.thumb_ref(token_id)

            surface.load(build_backdrop_svg(thumb_ref))
            surface.settle(self.settle_sec)
            backdrop = blur_and_dim(surface.capture(region))

            surface.load(
                build_card_svg(
                    token_id,
                    thumb_ref=thumb_ref,
                    backdrop_ref=png_data_uri(backdrop),
                    title=self.card_title(token_id),
                    collection=self.card_text.collection,
                    tagline=self.card_text.tagline,
                )
            )
            surface.settle(self.settle_sec)
            card = surface.capture(region)
        except Exception as e:
            raise RenderError(token_id, e) from e
        return write_atomic(out_path, card)

    def render_cards(self, token_ids: Optional[Sequence[int]] = None, limit: Optional[int] = None) -> StageTally:
        if not self.index.dir_for(ArtifactKind.SVG).is_dir():
            raise StagePrecondition(f"No images directory at {self.index.dir_for(ArtifactKind.SVG)}")
        self.index.ensure_dirs(ArtifactKind.OG)
        ids = self.index.token_ids(ArtifactKind.SVG) if token_ids is None else list(token_ids)
        if limit is not None:
            ids = [tid for tid in ids if tid < limit]
        return self._run("og-images", ids, ArtifactKind.OG, self.render_card)

    # -------------------------------------------------

    def _run(
        self,
        stage: str,
        token_ids: List[int],
        kind: ArtifactKind,
        render_one: Callable[[int, RenderSurface], Path],
    ) -> StageTally:
        tally = StageTally(stage=stage)
        pending = []
        for token_id in token_ids:
            if self.index.exists(ArtifactKey(token_id, kind)):
                tally.skipped += 1
            else:
                pending.append(token_id)

        logger.info(
            "%s: %d to render (%d already exist), %d surfaces",
            stage, len(pending), tally.skipped, len(self.surfaces),
        )
        progress = ProgressTracker(tally, total=len(pending))

        def work(token_id: int, slot: int) -> Path:
            return render_one(token_id, self.surfaces[slot])

        for window in run_windows(pending, len(self.surfaces), work):
            for settled in window:
                if settled.ok:
                    tally.processed += 1
                else:
                    logger.warning("Error rendering token %d: %s", settled.item, settled.error)
                    tally.record_failure(settled.item, settled.error)
            progress.report()

        logger.info("%s (%.1fs)", tally.summary_line(), progress.elapsed_sec())
        return tally

    def output_stats(self, kind: ArtifactKind) -> Tuple[int, int]:
        """(file count, total bytes) of rendered outputs of this kind."""
        count = total = 0
        for token_id in self.index.token_ids(kind):
            total += self.index.path_for(ArtifactKey(token_id, kind)).stat().st_size
            count += 1
        return count, total

    def close(self) -> None:
        for surface in self.surfaces:
            surface.close()
