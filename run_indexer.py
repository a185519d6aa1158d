"""
Index on-chain metadata and SVG images into DATA_DIR.

Usage:
    python run_indexer.py [--start N] [--max N] [--batch-size N]

Resumable: tokens whose images/{id}.svg already exists are skipped without
an RPC call. Writes DATA_DIR/import.sql for the publish step.
"""

import argparse
import sys
from pathlib import Path

import config
from ingest.chain_reader import ChainClient, SourceReader
from ingest.indexer import SQL_BATCH_NAME, run_indexer, token_range
from runtime.persistence.local_store import LocalStore
from runtime.progress import banner, print_tallies


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Index NFT metadata from the contract")
    parser.add_argument("--start", type=int, default=config.START_TOKEN)
    parser.add_argument("--max", type=int, default=config.MAX_TOKENS, dest="max_tokens")
    parser.add_argument("--batch-size", type=int, default=config.BATCH_SIZE)
    parser.add_argument("--data-dir", default=config.DATA_DIR)
    args = parser.parse_args(argv)

    config.configure_logging()
    banner(
        "NFT Metadata Indexer",
        f"RPC URL: {config.RPC_URL}",
        f"Contract: {config.CONTRACT_ADDRESS}",
        f"Batch Size: {args.batch_size} (delay {config.BATCH_DELAY_SEC}s)",
        f"Start Token: {args.start}  Max Tokens: {args.max_tokens}",
    )

    data_dir = Path(args.data_dir)
    store = LocalStore(data_dir)
    print(f"Output directory: {data_dir.resolve()}\n")

    client = ChainClient(config.RPC_URL, config.CONTRACT_ADDRESS, timeout=config.RPC_TIMEOUT_SEC)
    reader = SourceReader(client, batch_size=args.batch_size, batch_delay_sec=config.BATCH_DELAY_SEC)

    total_supply = reader.resolve_supply(args.max_tokens)
    ids = token_range(args.start, total_supply, args.max_tokens)

    run = run_indexer(
        reader,
        store,
        ids,
        total_supply=total_supply,
        sql_path=data_dir / SQL_BATCH_NAME,
    )

    print_tallies([run.tally])
    print(f"SQL batch: {run.sql_path}")
    print("\nNext step: python run_thumbnails.py, then python run_publish.py")
    return 0


if __name__ == "__main__":
    sys.exit(main())
