# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""SQLite record store with an FTS5 full-text index.

The ``memories`` table holds every MemoryRecord; ``memories_fts`` is an
external-content FTS5 table over content, summary and tags, kept in sync by
triggers. BM25 ranking comes from the FTS5 ``bm25()`` auxiliary function,
where lower is better.

One connection is shared by all threads and guarded by a lock, so the
store can be called from ``asyncio.to_thread`` workers.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

import numpy as np

from cortex_memory.errors import (
    EmbeddingDimensionError,
    LexicalSyntaxError,
    StoreError,
    StoreUnavailableError,
)
from cortex_memory.schemas.memory_types import (
    MemoryRecord,
    MemoryStatus,
    MemoryType,
    Provenance,
    Tier,
    utc_now,
)

logger = logging.getLogger(__name__)

TABLE_NAME = "memories"
FTS_TABLE_NAME = "memories_fts"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    id TEXT PRIMARY KEY,
    version INTEGER NOT NULL DEFAULT 1,
    content TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    memory_type TEXT NOT NULL DEFAULT 'learning',
    tags TEXT NOT NULL DEFAULT '[]',
    source TEXT NOT NULL DEFAULT 'jsonl',
    session_id TEXT,
    project_hash TEXT,
    extraction_confidence REAL NOT NULL DEFAULT 0.5,
    usage_count INTEGER NOT NULL DEFAULT 0,
    usage_success_rate REAL NOT NULL DEFAULT 0.5,
    decay_score REAL NOT NULL DEFAULT 1.0,
    status TEXT NOT NULL DEFAULT 'active',
    embedding BLOB,
    promoted_from TEXT,
    promoted_at TEXT,
    deleted_reason TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE_NAME} USING fts5(
    content,
    summary,
    tags,
    content='{TABLE_NAME}',
    content_rowid='rowid'
);

CREATE INDEX IF NOT EXISTS idx_memories_type ON {TABLE_NAME}(memory_type);
CREATE INDEX IF NOT EXISTS idx_memories_project ON {TABLE_NAME}(project_hash);
CREATE INDEX IF NOT EXISTS idx_memories_source ON {TABLE_NAME}(source);
CREATE INDEX IF NOT EXISTS idx_memories_status ON {TABLE_NAME}(status);
CREATE INDEX IF NOT EXISTS idx_memories_created ON {TABLE_NAME}(created_at);

CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON {TABLE_NAME} BEGIN
    INSERT INTO {FTS_TABLE_NAME}(rowid, content, summary, tags)
    VALUES (new.rowid, new.content, new.summary, new.tags);
END;

CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON {TABLE_NAME} BEGIN
    INSERT INTO {FTS_TABLE_NAME}({FTS_TABLE_NAME}, rowid, content, summary, tags)
    VALUES ('delete', old.rowid, old.content, old.summary, old.tags);
END;

CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE ON {TABLE_NAME} BEGIN
    INSERT INTO {FTS_TABLE_NAME}({FTS_TABLE_NAME}, rowid, content, summary, tags)
    VALUES ('delete', old.rowid, old.content, old.summary, old.tags);
    INSERT INTO {FTS_TABLE_NAME}(rowid, content, summary, tags)
    VALUES (new.rowid, new.content, new.summary, new.tags);
END;
"""

_COLUMNS = (
    "id, version, content, summary, memory_type, tags, source, session_id, "
    "project_hash, extraction_confidence, usage_count, usage_success_rate, "
    "decay_score, status, embedding, promoted_from, promoted_at, "
    "deleted_reason, created_at, updated_at"
)


@dataclass(frozen=True)
class MetadataFilter:
    """Metadata predicates applied to both retrieval paths.

    Attributes:
        status: Required status (None = any).
        source: Required provenance source kind.
        memory_type: Required memory type.
        project_hash: Project scope. Ignored when None.
        include_global: With a project_hash, also match records that have
            no project (global memories).
    """

    status: Optional[MemoryStatus] = MemoryStatus.ACTIVE
    source: Optional[str] = None
    memory_type: Optional[MemoryType] = None
    project_hash: Optional[str] = None
    include_global: bool = True

    def matches(self, record: MemoryRecord) -> bool:
        """Check a hydrated record against the filter."""
        if self.status is not None and record.status != self.status:
            return False
        if self.source is not None and record.source != self.source:
            return False
        if self.memory_type is not None and record.memory_type != self.memory_type:
            return False
        if self.project_hash is not None:
            if record.project_hash == self.project_hash:
                return True
            return self.include_global and record.project_hash is None
        return True

    def to_sql(self, alias: str = "m") -> tuple[str, list[Any]]:
        """Render the filter as a WHERE fragment plus parameters."""
        conditions: list[str] = []
        params: list[Any] = []
        if self.status is not None:
            conditions.append(f"{alias}.status = ?")
            params.append(MemoryStatus(self.status).value)
        if self.source is not None:
            conditions.append(f"{alias}.source = ?")
            params.append(self.source)
        if self.memory_type is not None:
            conditions.append(f"{alias}.memory_type = ?")
            params.append(MemoryType(self.memory_type).value)
        if self.project_hash is not None:
            if self.include_global:
                conditions.append(
                    f"({alias}.project_hash = ? OR {alias}.project_hash IS NULL)"
                )
            else:
                conditions.append(f"{alias}.project_hash = ?")
            params.append(self.project_hash)
        return (" AND ".join(conditions) or "1 = 1"), params


def _encode_embedding(embedding: Optional[list[float]]) -> Optional[bytes]:
    if embedding is None:
        return None
    return np.asarray(embedding, dtype=np.float32).tobytes()


def _decode_embedding(blob: Optional[bytes]) -> Optional[list[float]]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).astype(float).tolist()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SQLiteRecordStore:
    """Record store and lexical index backed by one SQLite database.

    Example:
        >>> store = SQLiteRecordStore(":memory:")
        >>> record = store.add(MemoryRecord(content="Use WAL mode for SQLite"))
        >>> store.lexical_search('"sqlite"', limit=5)[0][0] == record.id
        True
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        embedding_dim: Optional[int] = None,
    ):
        """Open (and create if needed) the database.

        Args:
            db_path: Database file, or ":memory:".
            embedding_dim: When set, embeddings must have this length.
        """
        self.db_path = str(db_path)
        self.embedding_dim = embedding_dim
        self._lock = threading.RLock()
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open record store {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._closed = False
        logger.debug(f"Opened record store at {self.db_path}")

    def __enter__(self) -> "SQLiteRecordStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True

    def _execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        if self._closed:
            raise StoreUnavailableError("Record store is closed")
        try:
            return self._conn.execute(sql, params)
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise StoreUnavailableError(str(e)) from e
            raise

    def _check_embedding(self, record: MemoryRecord) -> None:
        if (
            self.embedding_dim is not None
            and record.embedding is not None
            and len(record.embedding) != self.embedding_dim
        ):
            raise EmbeddingDimensionError(self.embedding_dim, len(record.embedding))

    def _row_params(self, record: MemoryRecord) -> tuple:
        return (
            record.id,
            record.version,
            record.content,
            record.summary,
            record.memory_type.value,
            json.dumps(record.tags),
            record.provenance.source,
            record.provenance.session_id,
            record.provenance.project_hash,
            record.extraction_confidence,
            record.usage_count,
            record.usage_success_rate,
            record.decay_score,
            record.status.value,
            _encode_embedding(record.embedding),
            record.promoted_from.value if record.promoted_from else None,
            _iso(record.promoted_at),
            record.deleted_reason,
            _iso(record.created_at),
            _iso(record.updated_at),
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> MemoryRecord:
        return MemoryRecord(
            id=row["id"],
            version=row["version"],
            content=row["content"],
            summary=row["summary"] or "",
            memory_type=MemoryType(row["memory_type"]),
            tags=json.loads(row["tags"] or "[]"),
            provenance=Provenance(
                source=row["source"],
                session_id=row["session_id"],
                project_hash=row["project_hash"],
            ),
            extraction_confidence=row["extraction_confidence"],
            usage_count=row["usage_count"],
            usage_success_rate=row["usage_success_rate"],
            decay_score=row["decay_score"],
            status=MemoryStatus(row["status"]),
            embedding=_decode_embedding(row["embedding"]),
            promoted_from=Tier(row["promoted_from"]) if row["promoted_from"] else None,
            promoted_at=datetime.fromisoformat(row["promoted_at"]) if row["promoted_at"] else None,
            deleted_reason=row["deleted_reason"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # CRUD

    def add(self, record: MemoryRecord) -> MemoryRecord:
        """Insert a new record.

        Raises:
            EmbeddingDimensionError: Embedding has the wrong length.
            StoreError: A record with this id already exists.
        """
        self._check_embedding(record)
        placeholders = ", ".join("?" * 20)
        with self._lock:
            try:
                self._execute(
                    f"INSERT INTO {TABLE_NAME} ({_COLUMNS}) VALUES ({placeholders})",
                    self._row_params(record),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Record {record.id} already exists") from e
        return record

    def get(self, record_id: str) -> Optional[MemoryRecord]:
        with self._lock:
            row = self._execute(
                f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE id = ?", (record_id,)
            ).fetchone()
        return self._from_row(row) if row else None

    def get_many(self, record_ids: list[str]) -> dict[str, MemoryRecord]:
        """Fetch several records at once; missing ids are omitted."""
        if not record_ids:
            return {}
        placeholders = ", ".join("?" * len(record_ids))
        with self._lock:
            rows = self._execute(
                f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE id IN ({placeholders})",
                list(record_ids),
            ).fetchall()
        return {row["id"]: self._from_row(row) for row in rows}

    def update(self, record: MemoryRecord) -> MemoryRecord:
        """Overwrite a record, bumping its version and update time.

        Returns:
            The stored record with the new version.

        Raises:
            StoreError: The record does not exist.
        """
        self._check_embedding(record)
        with self._lock:
            current = self._execute(
                f"SELECT version FROM {TABLE_NAME} WHERE id = ?", (record.id,)
            ).fetchone()
            if current is None:
                raise StoreError(f"Record {record.id} not found")
            stored = record.model_copy(
                update={"version": current["version"] + 1, "updated_at": utc_now()}
            )
            params = self._row_params(stored)
            assignments = ", ".join(f"{col.strip()} = ?" for col in _COLUMNS.split(",")[1:])
            self._execute(
                f"UPDATE {TABLE_NAME} SET {assignments} WHERE id = ?",
                (*params[1:], stored.id),
            )
            self._conn.commit()
        return stored

    def soft_delete(self, record_id: str, reason: Optional[str] = None) -> bool:
        """Mark a record deleted. Returns False if it does not exist."""
        with self._lock:
            cursor = self._execute(
                f"UPDATE {TABLE_NAME} SET status = ?, deleted_reason = ?, "
                f"version = version + 1, updated_at = ? WHERE id = ?",
                (MemoryStatus.DELETED.value, reason, _iso(utc_now()), record_id),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def hard_delete(self, record_id: str) -> bool:
        """Physically remove a record and its index entry."""
        with self._lock:
            cursor = self._execute(f"DELETE FROM {TABLE_NAME} WHERE id = ?", (record_id,))
            self._conn.commit()
            return cursor.rowcount > 0

    def list_records(
        self,
        metadata_filter: Optional[MetadataFilter] = None,
        limit: Optional[int] = None,
    ) -> list[MemoryRecord]:
        """List records matching the filter, newest first."""
        where, params = (metadata_filter or MetadataFilter()).to_sql("m")
        sql = f"SELECT {_COLUMNS} FROM {TABLE_NAME} m WHERE {where} ORDER BY m.created_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._execute(sql, params).fetchall()
        return [self._from_row(row) for row in rows]

    def count(self, metadata_filter: Optional[MetadataFilter] = None) -> int:
        where, params = (metadata_filter or MetadataFilter(status=None)).to_sql("m")
        with self._lock:
            row = self._execute(
                f"SELECT COUNT(*) AS n FROM {TABLE_NAME} m WHERE {where}", params
            ).fetchone()
        return int(row["n"])

    def iter_embeddings(self) -> Iterator[tuple[str, list[float]]]:
        """Yield (id, embedding) for active records that carry one."""
        with self._lock:
            rows = self._execute(
                f"SELECT id, embedding FROM {TABLE_NAME} "
                f"WHERE embedding IS NOT NULL AND status = ?",
                (MemoryStatus.ACTIVE.value,),
            ).fetchall()
        for row in rows:
            yield row["id"], _decode_embedding(row["embedding"])

    def record_usage(
        self, record_id: str, success: bool, blend: float = 0.2
    ) -> Optional[MemoryRecord]:
        """Apply one access outcome to a record's usage statistics."""
        with self._lock:
            record = self.get(record_id)
            if record is None:
                return None
            return self.update(record.with_usage(success, blend))

    # Lexical index

    def lexical_search(
        self,
        fts_query: str,
        metadata_filter: Optional[MetadataFilter] = None,
        limit: int = 30,
    ) -> list[tuple[str, float, datetime]]:
        """Run a BM25 search over content, summary and tags.

        Args:
            fts_query: An already sanitised FTS5 MATCH expression.
            metadata_filter: Predicates on the joined records.
            limit: Maximum hits.

        Returns:
            (id, bm25, created_at) tuples, best match first. BM25 values
            are negative; lower means more relevant.

        Raises:
            LexicalSyntaxError: FTS5 rejected the query.
        """
        if not fts_query:
            return []
        where, params = (metadata_filter or MetadataFilter()).to_sql("m")
        sql = (
            f"SELECT m.id, m.created_at, bm25({FTS_TABLE_NAME}) AS bm25_score "
            f"FROM {FTS_TABLE_NAME} f JOIN {TABLE_NAME} m ON f.rowid = m.rowid "
            f"WHERE {FTS_TABLE_NAME} MATCH ? AND {where} "
            f"ORDER BY bm25_score LIMIT ?"
        )
        with self._lock:
            try:
                rows = self._execute(sql, [fts_query, *params, limit]).fetchall()
            except sqlite3.OperationalError as e:
                message = str(e)
                if "fts5" in message or "syntax" in message or "no such column" in message:
                    raise LexicalSyntaxError(message) from e
                raise StoreError(message) from e
        return [
            (row["id"], float(row["bm25_score"]), datetime.fromisoformat(row["created_at"]))
            for row in rows
        ]
