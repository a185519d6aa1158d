"""
Ingest stage: Source Reader -> Record Decoder -> Local Store (+ SQL batch).

Fetch, decode and write run together per token inside a window; the SQL
builder and the tally are only touched between windows, on the calling
thread.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from ingest.record_decoder import decode_record
from ingest.sql_batch import SQLBatchBuilder
from models.token_record import TokenRecord
from runtime.errors import DecodeError, FetchError
from runtime.persistence.local_store import LocalStore
from runtime.progress import ProgressTracker, StageTally

logger = logging.getLogger(__name__)

SQL_BATCH_NAME = "import.sql"


@dataclass
class IndexOutcome:
    token_id: int
    record: TokenRecord
    written: bool


@dataclass
class IndexRun:
    tally: StageTally
    records: List[TokenRecord]
    sql_path: Optional[Path]
    total_supply: int


def token_range(start: int, total_supply: int, max_tokens: int) -> range:
    """Dense id range [start, min(total_supply, max_tokens))."""
    return range(max(start, 0), min(total_supply, max_tokens))


def run_indexer(
    source,
    store: LocalStore,
    token_ids: Sequence[int],
    total_supply: int,
    builder: Optional[SQLBatchBuilder] = None,
    sql_path: Optional[Path] = None,
    stage: str = "index",
) -> IndexRun:
    """
    Materialize every pending token in token_ids.

    Tokens whose image already exists are skipped without a remote read.
    Per-token FetchError / DecodeError (or any other exception) is counted
    and logged; siblings and later windows carry on.
    """
    builder = builder or SQLBatchBuilder()
    tally = StageTally(stage=stage)

    pending = []
    for token_id in token_ids:
        if store.is_materialized(token_id):
            tally.skipped += 1
        else:
            pending.append(token_id)

    logger.info(
        "%s: %d tokens requested, %d already materialized, %d to fetch",
        stage, len(token_ids), tally.skipped, len(pending),
    )

    def index_token(token_id: int, _slot: int) -> IndexOutcome:
        fetched = source.fetch(token_id)
        decoded = decode_record(token_id, fetched.encoded)
        written = store.write(decoded)
        return IndexOutcome(token_id=token_id, record=decoded.record, written=written)

    progress = ProgressTracker(tally, total=len(pending))
    records: List[TokenRecord] = []

    for window in source.windows(pending, index_token):
        for settled in window:
            token_id = settled.item
            if settled.error is not None:
                _log_failure(token_id, settled.error)
                tally.record_failure(token_id, settled.error)
                continue

            outcome = settled.value
            if not outcome.written:
                # materialized by someone else between the scan and the write
                tally.skipped += 1
                continue
            builder.add(outcome.record)
            records.append(outcome.record)
            tally.processed += 1
            logger.info("✓ Token %d: %s", token_id, outcome.record.name)
        progress.report()

    written_path = None
    if sql_path is not None:
        corpus_ids = store.metadata_ids()
        _add_carried_records(builder, store, corpus_ids, {r.token_id for r in records})
        written_path = builder.write(sql_path, indexed_count=len(corpus_ids), total_supply=total_supply)

    logger.info("%s (%.1fs)", tally.summary_line(), progress.elapsed_sec())
    return IndexRun(tally=tally, records=records, sql_path=written_path, total_supply=total_supply)


def _add_carried_records(builder: SQLBatchBuilder, store: LocalStore, corpus_ids, added) -> None:
    """Add every locally materialized token this run did not write itself."""
    carried = 0
    for token_id in corpus_ids:
        if token_id in added:
            continue
        try:
            builder.add(store.read_record(token_id))
        except (OSError, ValueError) as e:
            logger.warning("Token %d metadata unreadable, left out of the SQL batch: %s", token_id, e)
            continue
        carried += 1
    if carried:
        logger.info("SQL batch includes %d tokens materialized by earlier runs", carried)


def _log_failure(token_id: int, error: BaseException) -> None:
    if isinstance(error, (FetchError, DecodeError)):
        logger.warning("✗ Token %d %s error: %s", token_id, error.kind, error.cause)
    else:
        logger.error("✗ Token %d unexpected %s: %s", token_id, type(error).__name__, error)
