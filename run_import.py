"""
Import encoded records that were already extracted to URI_DIR/{id}.txt
(e.g. by a Foundry script) instead of reading them from the chain.

Usage:
    python run_import.py [--uri-dir DIR] [--apply]

--apply executes the resulting SQL batch on the local and remote databases.
"""

import argparse
import sys
from pathlib import Path

import config
from ingest.chain_reader import FileSource
from ingest.indexer import SQL_BATCH_NAME, run_indexer
from ingest.sql_batch import SQLBatchBuilder
from runtime.errors import StagePrecondition
from runtime.persistence.local_store import LocalStore
from runtime.persistence.sql_store import D1Store, SQLStore
from runtime.progress import banner, print_tallies
from runtime.publisher import publish_database


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Import pre-extracted token URIs")
    parser.add_argument("--uri-dir", default=config.URI_DIR)
    parser.add_argument("--data-dir", default=config.DATA_DIR)
    parser.add_argument("--apply", action="store_true", help="execute import.sql on the databases")
    args = parser.parse_args(argv)

    config.configure_logging()
    banner("Import Existing Extracted Data")

    source = FileSource(args.uri_dir, batch_size=config.BATCH_SIZE)
    try:
        ids = source.token_ids()
    except StagePrecondition as e:
        print(f"Error: {e}")
        print("Extract token URIs first, one uri/{id}.txt per token.")
        return 1
    if not ids:
        print("No existing data to import.")
        return 1
    print(f"Found {len(ids)} URI files in {args.uri_dir}\n")

    data_dir = Path(args.data_dir)
    run = run_indexer(
        source,
        LocalStore(data_dir),
        ids,
        total_supply=source.resolve_supply(config.MAX_TOKENS),
        builder=SQLBatchBuilder(header=f"Imported from {args.uri_dir}"),
        sql_path=data_dir / SQL_BATCH_NAME,
        stage="import",
    )
    tallies = [run.tally]

    if args.apply:
        sinks = [SQLStore(lazy=True)]
        remote = D1Store.from_env()
        if remote is not None:
            sinks.append(remote)
        tallies.append(publish_database(run.sql_path.read_text(encoding="utf-8"), sinks))

    print_tallies(tallies)
    print(f"SQL file: {run.sql_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
