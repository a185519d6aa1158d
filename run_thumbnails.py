"""
Generate WebP thumbnails from DATA_DIR/images/*.svg.

Each SVG is rasterized with animations paused at their first frame, padded
to the native aspect ratio and scaled to THUMB_WIDTH. Existing thumbnails
are kept, so the script can be re-run after an interruption.

Usage:
    python run_thumbnails.py [--parallelism N]
"""

import argparse
import sys

import config
from models.upload_task import ArtifactKind
from render.cairo_surface import CairoSurface
from render.raster_renderer import RasterRenderer
from runtime.artifacts import LocalArtifactIndex
from runtime.errors import StagePrecondition
from runtime.progress import banner, print_tallies


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Render SVG thumbnails")
    parser.add_argument("--parallelism", type=int, default=config.RENDER_PARALLELISM)
    parser.add_argument("--data-dir", default=config.DATA_DIR)
    args = parser.parse_args(argv)

    config.configure_logging()
    banner(
        "Thumbnail Generator",
        f"Source: {args.data_dir}/images  Output: {args.data_dir}/thumbnails",
        f"Size: {config.THUMB_WIDTH}px wide, quality {config.THUMB_QUALITY}",
        f"Parallel surfaces: {args.parallelism}",
    )

    index = LocalArtifactIndex(args.data_dir)
    surfaces = [CairoSurface(timeout=config.RENDER_TIMEOUT_SEC) for _ in range(max(args.parallelism, 1))]
    renderer = RasterRenderer(
        index,
        surfaces,
        settle_sec=config.RENDER_SETTLE_MS / 1000,
        thumb_width=config.THUMB_WIDTH,
        thumb_quality=config.THUMB_QUALITY,
        native_size=(config.SVG_WIDTH, config.SVG_HEIGHT),
    )

    try:
        tally = renderer.render_thumbnails()
    except StagePrecondition as e:
        print(f"Error: {e}")
        print("Run python run_indexer.py first.")
        return 1
    finally:
        renderer.close()

    print_tallies([tally])
    count, total_bytes = renderer.output_stats(ArtifactKind.THUMB)
    if count:
        print(f"Average size: {total_bytes / count / 1024:.1f} KB")
        print(f"Total size: {total_bytes / 1024 / 1024:.2f} MB ({count} files)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
