"""
Generate 1200x630 social preview cards and upload them to og/{id}.png.

Usage:
    python run_og_images.py [--limit N] [--generate-only | --upload-only | --retry-failed]

--limit N only handles token ids below N (useful for a trial run).
Failed card uploads are recorded in the shared failure ledger;
--retry-failed replays only the og/ entries from it.
"""

import argparse
import sys
from pathlib import Path

import config
from models.upload_task import ArtifactKind
from render.raster_renderer import CardText, RasterRenderer
from runtime.artifacts import LocalArtifactIndex
from runtime.errors import SinkUnavailable, StagePrecondition
from runtime.persistence.blob_store import BlobStore
from runtime.persistence.failure_ledger import LEDGER_NAME, FailureLedger
from runtime.policies.retry_policy import RetryPolicy
from runtime.progress import banner, print_tallies
from runtime.publisher import Publisher, scan_upload_tasks


def render_cards(index: LocalArtifactIndex, limit=None):
    # cairo is only needed when cards are generated
    from render.cairo_surface import CairoSurface

    surfaces = [CairoSurface(timeout=config.RENDER_TIMEOUT_SEC) for _ in range(max(config.RENDER_PARALLELISM, 1))]
    renderer = RasterRenderer(
        index,
        surfaces,
        settle_sec=config.RENDER_SETTLE_MS / 1000,
        card_text=CardText(
            collection=config.COLLECTION_NAME,
            title=config.COLLECTION_TITLE,
            tagline=config.COLLECTION_TAGLINE,
        ),
        thumb_base_url=config.OG_THUMB_BASE_URL,
    )
    try:
        return renderer.render_cards(limit=limit)
    finally:
        renderer.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Generate and upload OG images")
    parser.add_argument("--limit", type=int, default=None)
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--generate-only", action="store_true")
    mode.add_argument("--upload-only", action="store_true")
    mode.add_argument("--retry-failed", action="store_true", help="replay failed og/ uploads only")
    parser.add_argument("--data-dir", default=config.DATA_DIR)
    args = parser.parse_args(argv)

    config.configure_logging()
    banner(
        "OG Image Generator",
        f"Output: {args.data_dir}/og-images",
        f"Thumbnails from: {config.OG_THUMB_BASE_URL or 'local thumbnails'}",
        f"Limit: {args.limit if args.limit is not None else 'all'}",
    )

    index = LocalArtifactIndex(args.data_dir)
    tallies = []

    if not (args.upload_only or args.retry_failed):
        try:
            tallies.append(render_cards(index, limit=args.limit))
        except StagePrecondition as e:
            print(f"Error: {e}")
            print("Run python run_indexer.py first.")
            print_tallies(tallies)
            return 1

    if not args.generate_only:
        try:
            blob_store = BlobStore.from_env()
            publisher = Publisher(
                blob_store,
                FailureLedger(Path(args.data_dir) / LEDGER_NAME),
                retry_policy=RetryPolicy(config.get_upload_policy()),
                window_size=config.UPLOAD_PARALLELISM,
            )
            if args.retry_failed:
                run = publisher.replay_failures(kinds=(ArtifactKind.OG,))
            else:
                blob_store.check()
                tasks = scan_upload_tasks(index, kinds=(ArtifactKind.OG,))
                if args.limit is not None:
                    tasks = [t for t in tasks if t.token_id < args.limit]
                run = publisher.publish_blobs(tasks, stage="og-upload")
        except SinkUnavailable as e:
            print(f"Error: {e}")
            print_tallies(tallies)
            return 1

        tallies.append(run.tally)
        if run.failures:
            print(f"\n{len(run.failures)} card uploads failed; retry with: python run_og_images.py --retry-failed")

    print_tallies(tallies)
    return 0


if __name__ == "__main__":
    sys.exit(main())
