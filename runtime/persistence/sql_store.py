import logging
import os
import sqlite3
from typing import List, Optional

import psycopg2
import requests

import config
from runtime.errors import SinkUnavailable
from runtime.persistence.sink_result import SinkResult

logger = logging.getLogger(__name__)


def split_statements(sql: str) -> List[str]:
    """
    Split SQL text into statements on top-level semicolons.

    Single-quoted literals (with '' and \\ escapes) and -- comments are
    respected, so a ';' inside a name never splits a statement.
    """
    statements = []
    current = []
    i = 0
    n = len(sql)
    in_literal = False

    while i < n:
        ch = sql[i]
        if in_literal:
            current.append(ch)
            if ch == "\\" and i + 1 < n:
                current.append(sql[i + 1])
                i += 2
                continue
            if ch == "'":
                if i + 1 < n and sql[i + 1] == "'":
                    current.append("'")
                    i += 2
                    continue
                in_literal = False
            i += 1
            continue

        if ch == "-" and sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = n if newline == -1 else newline + 1
            continue
        if ch == "'":
            in_literal = True
            current.append(ch)
        elif ch == ";":
            stmt = "".join(current).strip()
            if stmt:
                statements.append(stmt + ";")
            current = []
        else:
            current.append(ch)
        i += 1

    tail = "".join(current).strip()
    if tail:
        statements.append(tail)
    return statements


class SQLStore:
    """Local relational sink: sqlite or postgres, chosen by DATABASE_URL."""

    name = "local database"

    def __init__(self, database_url: Optional[str] = None, lazy=False):
        self._conn = None
        self.backend = None
        self.lazy = lazy

        self.database_url = database_url or os.getenv("DATABASE_URL") or config.DATABASE_URL
        if not self.database_url:
            raise RuntimeError("DATABASE_URL not set")

        if not lazy:
            self._connect()

    # -------------------------------------------------

    def _cursor(self):
        return self.conn.cursor()

    def _init_sqlite_schema(self):
        cur = self.conn.cursor()
        cur.executescript("""
        CREATE TABLE IF NOT EXISTS nfts (
            token_id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            image_cid TEXT,
            metadata_json TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS attributes (
            token_id INTEGER NOT NULL REFERENCES nfts(token_id),
            trait_type TEXT NOT NULL,
            value TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_attributes_token ON attributes(token_id);
        CREATE INDEX IF NOT EXISTS idx_attributes_trait ON attributes(trait_type, value);

        CREATE TABLE IF NOT EXISTS collection_metadata (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        INSERT OR IGNORE INTO collection_metadata (key, value) VALUES ('indexed_count', '0');
        INSERT OR IGNORE INTO collection_metadata (key, value) VALUES ('total_supply', '0');
        """)
        self.conn.commit()
        cur.close()

    # -------------------------------------------------
    # Batches
    # -------------------------------------------------

    def execute_batch(self, sql: str) -> SinkResult:
        """Apply the whole batch in one transaction; roll back on any error."""
        conn = self.conn
        if self.backend == "sqlite":
            try:
                conn.executescript("BEGIN;\n" + sql + "\nCOMMIT;")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.rollback()
                return SinkResult.failure(e)
            return SinkResult.success()

        cur = self._cursor()
        try:
            cur.execute(sql)
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            return SinkResult.failure(e)
        finally:
            cur.close()
        return SinkResult.success()

    def count_records(self) -> int:
        cur = self._cursor()
        try:
            cur.execute("SELECT COUNT(*) FROM nfts")
            row = cur.fetchone()
            return int(row[0]) if row else 0
        finally:
            cur.close()

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -------------------------------------------------

    def _connect(self):
        if self._conn is not None:
            return

        if self.database_url.startswith("sqlite"):
            path = self.database_url.replace("sqlite:///", "")
            try:
                self._conn = sqlite3.connect(path, check_same_thread=False)
            except sqlite3.Error as e:
                raise SinkUnavailable(self.name, e) from e
            self.backend = "sqlite"
            logger.info("[sql] using sqlite (%s)", path)

            self._init_sqlite_schema()

        elif self.database_url.startswith("postgres"):
            try:
                self._conn = psycopg2.connect(self.database_url)
            except psycopg2.OperationalError as e:
                raise SinkUnavailable(self.name, e) from e
            self.backend = "postgres"
            logger.info("[sql] using postgres")

        else:
            raise RuntimeError(
                f"Unsupported DATABASE_URL: {self.database_url}"
            )

    @property
    def conn(self):
        if self._conn is None:
            self._connect()
        return self._conn


class D1Store:
    """Remote relational sink: Cloudflare D1 over its HTTP query API."""

    name = "remote database (D1)"
    API_BASE = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        account_id: str,
        database_id: str,
        api_token: str,
        max_statements: int = 500,
        timeout: float = 60.0,
        session=None,
    ):
        self.url = f"{self.API_BASE}/accounts/{account_id}/d1/database/{database_id}/query"
        self.api_token = api_token
        self.max_statements = max(max_statements, 1)
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_env(cls) -> Optional["D1Store"]:
        """None when remote credentials are not configured."""
        if not all([config.D1_ACCOUNT_ID, config.D1_DATABASE_ID, config.D1_API_TOKEN]):
            return None
        return cls(
            config.D1_ACCOUNT_ID,
            config.D1_DATABASE_ID,
            config.D1_API_TOKEN,
            max_statements=config.D1_MAX_STATEMENTS,
        )

    def execute_batch(self, sql: str) -> SinkResult:
        statements = split_statements(sql)
        chunks = [
            statements[i:i + self.max_statements]
            for i in range(0, len(statements), self.max_statements)
        ]
        for n, chunk in enumerate(chunks, start=1):
            try:
                resp = self.session.post(
                    self.url,
                    headers={"Authorization": f"Bearer {self.api_token}"},
                    json={"sql": "\n".join(chunk)},
                    timeout=self.timeout,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                raise SinkUnavailable(self.name, e) from e

            if resp.status_code in (401, 403):
                raise SinkUnavailable(self.name, f"HTTP {resp.status_code}: check D1_API_TOKEN")
            try:
                body = resp.json()
            except ValueError:
                return SinkResult.failure(f"chunk {n}/{len(chunks)}: HTTP {resp.status_code}, non-JSON body")

            if resp.status_code >= 400 or not body.get("success"):
                errors = "; ".join(
                    e.get("message", str(e)) if isinstance(e, dict) else str(e)
                    for e in body.get("errors") or []
                ) or f"HTTP {resp.status_code}"
                return SinkResult.failure(f"chunk {n}/{len(chunks)}: {errors}")
            logger.debug("[d1] chunk %d/%d applied (%d statements)", n, len(chunks), len(chunk))
        return SinkResult.success()
