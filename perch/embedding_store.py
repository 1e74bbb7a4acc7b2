"""
Embedding store using SQLite.

One row per item id holding a mapping of embedding kind to vector (or
null when the item had too little text to embed). Rows are written and
deleted wholesale; there are no partial updates of a record.

The store is a plain key/value map: per-row writes are atomic, there are
no cross-row transactions. Blocking SQLite calls run in a worker thread.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .embedding import validate_vector
from .errors import PreconditionViolation
from .types import EmbeddingKind, EmbeddingRecord, KIND_ORDER

logger = logging.getLogger(__name__)


def encode_record(record: EmbeddingRecord, dimension: Optional[int] = None) -> str:
    """
    Serialize a record to JSON, validating kinds and vectors.

    Raises:
        PreconditionViolation: On unknown kinds or malformed vectors
    """
    data = {}
    for kind, vector in record.items():
        try:
            kind = EmbeddingKind(kind)
        except ValueError:
            raise PreconditionViolation(f"Unknown embedding kind: {kind!r}") from None
        data[kind.value] = None if vector is None else validate_vector(vector, dimension)
    return json.dumps(data)


def decode_record(record_json: str) -> EmbeddingRecord:
    """Parse a stored record, ordering kinds canonically."""
    data = json.loads(record_json)
    parsed = {EmbeddingKind(k): v for k, v in data.items()}
    return {k: parsed[k] for k in KIND_ORDER if k in parsed}


def _record_dimension(record: EmbeddingRecord) -> Optional[int]:
    for vector in record.values():
        if vector:
            return len(vector)
    return None


class EmbeddingStore:
    """
    SQLite-backed store of embedding records keyed by item id.

    The vector dimension is fixed by the first vector saved; later records
    with a different dimension are rejected.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._dimension: Optional[int] = None
        self.write_count = 0
        self._init_db()

    def _init_db(self) -> None:
        """Open the database and create the embeddings table if missing."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        # WAL lets a CLI status call read while a sync writes
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS embeddings (
                item_id TEXT PRIMARY KEY,
                record_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS store_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        self._conn.commit()

        row = self._conn.execute(
            "SELECT value FROM store_meta WHERE key = 'dimension'"
        ).fetchone()
        if row is not None:
            self._dimension = int(row["value"])

    @property
    def dimension(self) -> Optional[int]:
        """Vector dimension of this store, None until the first vector is saved."""
        return self._dimension

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    # -------------------------------------------------------------------------
    # Blocking implementations
    # -------------------------------------------------------------------------

    def _save_sync(self, records: dict[str, EmbeddingRecord]) -> int:
        with self._lock:
            # Validate everything before the first write
            dimension = self._dimension
            encoded = []
            for item_id, record in records.items():
                if dimension is None:
                    dimension = _record_dimension(record)
                encoded.append((item_id, encode_record(record, dimension)))

            if dimension is not None and self._dimension is None:
                self._conn.execute(
                    "INSERT OR REPLACE INTO store_meta (key, value) VALUES ('dimension', ?)",
                    (str(dimension),),
                )
                self._dimension = dimension

            now = self._now()
            for item_id, record_json in encoded:
                self._conn.execute("""
                    INSERT OR REPLACE INTO embeddings (item_id, record_json, updated_at)
                    VALUES (?, ?, ?)
                """, (item_id, record_json, now))
                self._conn.commit()
                self.write_count += 1
            return len(encoded)

    def _get_many_sync(self, item_ids: list[str]) -> dict[str, EmbeddingRecord]:
        with self._lock:
            results = {}
            # Chunk to stay under SQLite's bound-parameter limit
            for start in range(0, len(item_ids), 500):
                chunk = item_ids[start:start + 500]
                placeholders = ",".join("?" * len(chunk))
                cursor = self._conn.execute(f"""
                    SELECT item_id, record_json FROM embeddings
                    WHERE item_id IN ({placeholders})
                """, chunk)
                for row in cursor:
                    results[row["item_id"]] = decode_record(row["record_json"])
            return results

    def _delete_sync(self, item_ids: list[str]) -> int:
        with self._lock:
            deleted = 0
            for start in range(0, len(item_ids), 500):
                chunk = item_ids[start:start + 500]
                placeholders = ",".join("?" * len(chunk))
                cursor = self._conn.execute(
                    f"DELETE FROM embeddings WHERE item_id IN ({placeholders})", chunk
                )
                deleted += cursor.rowcount
            self._conn.commit()
            self.write_count += 1
            return deleted

    def _list_ids_sync(self) -> list[str]:
        with self._lock:
            cursor = self._conn.execute("SELECT item_id FROM embeddings ORDER BY item_id")
            return [row["item_id"] for row in cursor]

    def _clear_sync(self) -> int:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM embeddings")
            self._conn.execute("DELETE FROM store_meta WHERE key = 'dimension'")
            self._conn.commit()
            self._dimension = None
            self.write_count += 1
            return cursor.rowcount

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def save(self, item_id: str, record: EmbeddingRecord) -> None:
        """
        Create or replace the record of one item.

        Raises:
            PreconditionViolation: If the record holds a malformed vector
        """
        logger.debug("Saving embeddings for item %s", item_id)
        await asyncio.to_thread(self._save_sync, {item_id: record})

    async def save_all(self, records: dict[str, EmbeddingRecord]) -> int:
        """
        Create or replace many records, one write per item id.

        All records are validated before anything is written.

        Returns:
            Number of records written
        """
        if not records:
            return 0
        return await asyncio.to_thread(self._save_sync, dict(records))

    async def delete(self, item_ids: str | Iterable[str]) -> int:
        """
        Delete the records of one or many items.

        Returns:
            Number of records that existed and were deleted
        """
        if isinstance(item_ids, str):
            item_ids = [item_ids]
        item_ids = list(dict.fromkeys(item_ids))
        if not item_ids:
            return 0
        deleted = await asyncio.to_thread(self._delete_sync, item_ids)
        logger.info("Deleted embeddings for %d of %d items", deleted, len(item_ids))
        return deleted

    async def clear(self) -> int:
        """Delete every record. Returns the number deleted."""
        count = await asyncio.to_thread(self._clear_sync)
        logger.info("Cleared %d embedding entries", count)
        return count

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def get(self, item_id: str) -> EmbeddingRecord:
        """Record of one item; empty dict if nothing is stored."""
        records = await asyncio.to_thread(self._get_many_sync, [item_id])
        return records.get(item_id, {})

    async def get_many(self, item_ids: list[str]) -> dict[str, EmbeddingRecord]:
        """Records for the given ids. Ids without a record are omitted."""
        if not item_ids:
            return {}
        return await asyncio.to_thread(self._get_many_sync, list(item_ids))

    async def list_ids(self) -> list[str]:
        """All item ids that have a stored record."""
        return await asyncio.to_thread(self._list_ids_sync)

    async def count(self) -> int:
        return len(await self.list_ids())

    def close(self) -> None:
        """Release the SQLite connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
