"""
Batch SQL Builder.

Accumulates one upsert per token record (plus its attribute rows) and the
collection bookkeeping statements into a single ordered SQL text. The text
is written to disk before any sink executes it.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Union

from models.token_record import TokenRecord
from runtime.artifacts import write_atomic

logger = logging.getLogger(__name__)


def escape_sql(value) -> str:
    """Escape text for a single-quoted SQL literal: double ' and \\."""
    return str(value).replace("\\", "\\\\").replace("'", "''")


def sql_literal(value) -> str:
    return f"'{escape_sql(value)}'"


class SQLBatchBuilder:
    def __init__(self, header: Optional[str] = None):
        self._statements: List[str] = []
        self._records = 0
        self.header = header or "Auto-generated SQL batch"

    def __len__(self) -> int:
        return self._records

    @property
    def statements(self) -> List[str]:
        return list(self._statements)

    def add(self, record: TokenRecord) -> None:
        metadata_json = json.dumps(record.to_metadata(), ensure_ascii=False)
        tid = int(record.token_id)
        self._statements.append(
            "INSERT INTO nfts (token_id, name, description, image_cid, metadata_json) "
            f"VALUES ({tid}, {sql_literal(record.name)}, {sql_literal(record.description)}, "
            f"{sql_literal(record.image_ref)}, {sql_literal(metadata_json)}) "
            "ON CONFLICT(token_id) DO UPDATE SET name = excluded.name, "
            "description = excluded.description, image_cid = excluded.image_cid, "
            "metadata_json = excluded.metadata_json;"
        )
        # Replace, never merge, the record's attribute rows
        self._statements.append(f"DELETE FROM attributes WHERE token_id = {tid};")
        for attr in record.attributes:
            self._statements.append(
                "INSERT INTO attributes (token_id, trait_type, value) "
                f"VALUES ({tid}, {sql_literal(attr.trait_type)}, {sql_literal(attr.value)});"
            )
        self._records += 1

    def render(self, indexed_count: int, total_supply: int) -> str:
        lines = [
            f"-- {self.header}",
            f"-- Generated at: {datetime.now(timezone.utc).isoformat()}",
            "",
        ]
        lines.extend(self._statements)
        lines.append("")
        lines.append("-- Update collection metadata")
        for key, value in (("indexed_count", indexed_count), ("total_supply", total_supply)):
            lines.append(
                f"UPDATE collection_metadata SET value = {sql_literal(value)}, "
                f"updated_at = CURRENT_TIMESTAMP WHERE key = {sql_literal(key)};"
            )
        return "\n".join(lines) + "\n"

    def write(self, path: Union[str, Path], indexed_count: int, total_supply: int) -> Path:
        sql = self.render(indexed_count, total_supply)
        write_atomic(path, sql)
        logger.info("SQL batch written to %s (%d records, %.1f KB)", path, self._records, len(sql) / 1024)
        return Path(path)


def build_batch_from_metadata(records: Iterable[TokenRecord]) -> SQLBatchBuilder:
    """Rebuild the batch for an entire local corpus."""
    builder = SQLBatchBuilder(header="Rebuilt from local metadata")
    for record in records:
        builder.add(record)
    return builder
