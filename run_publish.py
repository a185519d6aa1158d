"""
Publish the local corpus: execute the SQL batch on the local and remote
databases, then upload SVGs, thumbnails and social cards to object storage.

Usage:
    python run_publish.py                  # database + all blobs
    python run_publish.py --retry-failed   # only blobs listed in the failure ledger
    python run_publish.py --rebuild-sql    # regenerate import.sql from metadata/*.json
    python run_publish.py --skip-db | --skip-blobs
    python run_publish.py --kinds svg,thumb

Uploads already present remotely with the same size are skipped, so an
interrupted run can simply be started again.
"""

import argparse
import logging
import sys
from pathlib import Path

import config
from ingest.indexer import SQL_BATCH_NAME
from ingest.sql_batch import build_batch_from_metadata
from models.upload_task import ArtifactKind
from runtime.artifacts import LocalArtifactIndex
from runtime.errors import SinkUnavailable, StagePrecondition
from runtime.persistence.blob_store import BlobStore
from runtime.persistence.failure_ledger import LEDGER_NAME, FailureLedger
from runtime.persistence.local_store import LocalStore
from runtime.persistence.sql_store import D1Store, SQLStore
from runtime.policies.retry_policy import RetryPolicy
from runtime.progress import StageTally, banner, print_tallies
from runtime.publisher import PUBLISHED_KINDS, Publisher, publish_database

logger = logging.getLogger(__name__)


def parse_kinds(value: str):
    kinds = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        kind = ArtifactKind(part)
        if kind not in PUBLISHED_KINDS:
            raise argparse.ArgumentTypeError(f"{part} is not a published artifact kind")
        kinds.append(kind)
    return tuple(kinds)


def rebuild_sql(data_dir: Path, tally: StageTally) -> Path:
    """Regenerate import.sql from every metadata/{id}.json on disk."""
    store = LocalStore(data_dir)
    records = []
    for token_id in store.metadata_ids():
        try:
            records.append(store.read_record(token_id))
        except (OSError, ValueError) as e:
            logger.warning("Skipping unreadable metadata for token %d: %s", token_id, e)
            tally.record_failure(token_id, e)
    tally.processed = len(records)

    builder = build_batch_from_metadata(records)
    total_supply = max((r.token_id for r in records), default=-1) + 1
    return builder.write(data_dir / SQL_BATCH_NAME, indexed_count=len(records), total_supply=total_supply)


def database_sinks():
    sinks = []
    if config.SKIP_LOCAL_DB:
        logger.info("SKIP_LOCAL_DB set, local database skipped")
    else:
        sinks.append(SQLStore(lazy=True))
    remote = D1Store.from_env()
    if remote is None:
        logger.info("D1 credentials not configured, remote database skipped")
    else:
        sinks.append(remote)
    return sinks


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Publish indexed data to databases and object storage")
    parser.add_argument("--retry-failed", action="store_true", help="replay the failure ledger only")
    parser.add_argument("--rebuild-sql", action="store_true", help="regenerate import.sql from metadata")
    parser.add_argument("--skip-db", action="store_true")
    parser.add_argument("--skip-blobs", action="store_true")
    parser.add_argument("--kinds", type=parse_kinds, default=PUBLISHED_KINDS)
    parser.add_argument("--data-dir", default=config.DATA_DIR)
    args = parser.parse_args(argv)

    config.configure_logging()
    data_dir = Path(args.data_dir)
    banner(
        "Publish",
        f"Data: {data_dir.resolve()}",
        f"Bucket: {config.S3_BUCKET or '(not configured)'}",
        f"Kinds: {', '.join(k.value for k in args.kinds)}",
        "Mode: retry failed uploads" if args.retry_failed else "Mode: full scan",
    )

    tallies = []
    exit_code = 0

    # Database
    if not args.skip_db and not args.retry_failed:
        sql_path = data_dir / SQL_BATCH_NAME
        if args.rebuild_sql or not sql_path.is_file():
            if not args.rebuild_sql:
                print(f"No SQL batch at {sql_path}; rebuilding from metadata")
            rebuild_tally = StageTally(stage="rebuild-sql")
            rebuild_sql(data_dir, rebuild_tally)
            tallies.append(rebuild_tally)
            empty = rebuild_tally.processed == 0
        else:
            empty = False

        if empty:
            print("No metadata to publish; run python run_indexer.py first.")
            exit_code = 1
        else:
            sinks = database_sinks()
            if sinks:
                db_tally = publish_database(sql_path.read_text(encoding="utf-8"), sinks)
                tallies.append(db_tally)
                if not db_tally.clean:
                    exit_code = 1

    # Blobs
    if not args.skip_blobs:
        ledger = FailureLedger(data_dir / LEDGER_NAME)
        try:
            blob_store = BlobStore.from_env()
            publisher = Publisher(
                blob_store,
                ledger,
                retry_policy=RetryPolicy(config.get_upload_policy()),
                window_size=config.UPLOAD_PARALLELISM,
            )
            if args.retry_failed:
                run = publisher.replay_failures()
            else:
                index = LocalArtifactIndex(data_dir)
                if not index.dir_for(ArtifactKind.SVG).is_dir():
                    raise StagePrecondition(f"No images directory at {index.dir_for(ArtifactKind.SVG)}")
                run = publisher.publish(index, kinds=args.kinds)
            tallies.append(run.tally)
            if run.failures:
                print(f"\n{len(run.failures)} uploads failed; retry with: python run_publish.py --retry-failed")
        except (SinkUnavailable, StagePrecondition) as e:
            print(f"Error: {e}")
            exit_code = 1

    print_tallies(tallies)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
