"""Embedding store backed by a single SQLite table.

Every record carries exactly one provenance: a media-index id (system
photo library) or a document URI (user-selected folder). The surrogate
`internal_id` is assigned on insert and is the only identity the rest of
the system uses.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import numpy as np

from config import EMBEDDING_DIM
from vectors import is_zero

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS image_embedding (
    internal_id INTEGER PRIMARY KEY AUTOINCREMENT,
    media_index_id INTEGER,
    document_uri TEXT,
    modified_at INTEGER NOT NULL,
    embedding BLOB NOT NULL CHECK (length(embedding) = {blob_size}),
    CHECK ((media_index_id IS NULL) != (document_uri IS NULL))
);
"""

_COLUMNS = "internal_id, media_index_id, document_uri, modified_at, embedding"

# little-endian float32, independent of host byte order
_BLOB_DTYPE = np.dtype("<f4")


class StoreError(Exception):
    """A database operation failed; nothing from that call was committed."""


class InvalidEmbeddingError(ValueError):
    """Embedding has the wrong length or is the all-zero failure sentinel."""


@dataclass(frozen=True)
class MediaIndexSource:
    media_index_id: int


@dataclass(frozen=True)
class DocumentSource:
    document_uri: str


SourceId = MediaIndexSource | DocumentSource


@dataclass(frozen=True)
class NewEmbedding:
    source: SourceId
    modified_at: int
    embedding: np.ndarray


@dataclass(frozen=True, eq=False)
class EmbeddingRecord:
    internal_id: int
    source: SourceId
    modified_at: int
    embedding: np.ndarray

    def to_dict(self) -> dict:
        data: dict = {"internal_id": self.internal_id, "modified_at": self.modified_at}
        if isinstance(self.source, MediaIndexSource):
            data["media_index_id"] = self.source.media_index_id
        else:
            data["document_uri"] = self.source.document_uri
        return data


def _source_columns(source: SourceId) -> tuple[int | None, str | None]:
    if isinstance(source, MediaIndexSource):
        return int(source.media_index_id), None
    if isinstance(source, DocumentSource):
        if not source.document_uri:
            raise ValueError("document_uri must not be empty")
        return None, source.document_uri
    raise TypeError(f"Unknown source type: {type(source).__name__}")


class EmbeddingStore:
    def __init__(self, db_path: Path, dim: int = EMBEDDING_DIM):
        self._db_path = db_path
        self.dim = dim
        self._lock = threading.Lock()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        # Shared across the indexing worker and request threads; _lock serialises use.
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA.format(blob_size=dim * _BLOB_DTYPE.itemsize))
        self._conn.commit()

    def close(self):
        with self._lock:
            self._conn.close()

    # -- encoding --

    def _encode(self, embedding) -> bytes:
        vec = np.asarray(embedding, dtype=_BLOB_DTYPE)
        if vec.shape != (self.dim,):
            raise InvalidEmbeddingError(
                f"Embedding shape {vec.shape} does not match dimension {self.dim}"
            )
        if is_zero(vec):
            raise InvalidEmbeddingError("Refusing to store an all-zero embedding")
        return vec.tobytes()

    def _row_to_record(self, row: tuple) -> EmbeddingRecord:
        internal_id, media_index_id, document_uri, modified_at, blob = row
        if media_index_id is not None:
            source: SourceId = MediaIndexSource(media_index_id)
        else:
            source = DocumentSource(document_uri)
        embedding = np.frombuffer(blob, dtype=_BLOB_DTYPE).astype(np.float32)
        return EmbeddingRecord(internal_id, source, modified_at, embedding)

    def _row_values(self, new: NewEmbedding) -> tuple:
        media_index_id, document_uri = _source_columns(new.source)
        return media_index_id, document_uri, int(new.modified_at), self._encode(new.embedding)

    # -- writes --

    def insert(self, new: NewEmbedding) -> int:
        """Append one record and return its internal_id. Committed on return."""
        values = self._row_values(new)
        with self._lock:
            try:
                cursor = self._conn.execute(
                    """INSERT INTO image_embedding
                       (media_index_id, document_uri, modified_at, embedding)
                       VALUES (?, ?, ?, ?)""",
                    values,
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(f"Insert failed: {exc}") from exc
        return cursor.lastrowid

    def insert_many(self, news: Iterable[NewEmbedding]) -> list[int]:
        """Insert several records in one transaction. All or nothing."""
        rows = [self._row_values(n) for n in news]
        ids: list[int] = []
        with self._lock:
            try:
                for values in rows:
                    cursor = self._conn.execute(
                        """INSERT INTO image_embedding
                           (media_index_id, document_uri, modified_at, embedding)
                           VALUES (?, ?, ?, ?)""",
                        values,
                    )
                    ids.append(cursor.lastrowid)
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(f"Bulk insert failed: {exc}") from exc
        return ids

    def delete_many(self, internal_ids: Iterable[int]) -> int:
        """Delete by internal id. Unknown ids are ignored. Returns rows deleted."""
        ids = sorted({int(i) for i in internal_ids})
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"DELETE FROM image_embedding WHERE internal_id IN ({placeholders})",
                    ids,
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(f"Delete failed: {exc}") from exc
        return cursor.rowcount

    def clear_all(self) -> int:
        """Remove every record. Returns rows deleted."""
        with self._lock:
            try:
                cursor = self._conn.execute("DELETE FROM image_embedding")
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(f"Clear failed: {exc}") from exc
        return cursor.rowcount

    # -- reads --

    def get(self, internal_id: int) -> EmbeddingRecord | None:
        with self._lock:
            try:
                row = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM image_embedding WHERE internal_id = ?",
                    (int(internal_id),),
                ).fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"Lookup failed: {exc}") from exc
        return self._row_to_record(row) if row else None

    def scan_all(self) -> list[EmbeddingRecord]:
        """Every record, ordered by internal_id, from a single consistent read."""
        with self._lock:
            try:
                rows = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM image_embedding ORDER BY internal_id"
                ).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Scan failed: {exc}") from exc
        return [self._row_to_record(r) for r in rows]

    def count(self) -> int:
        with self._lock:
            try:
                return self._conn.execute("SELECT COUNT(*) FROM image_embedding").fetchone()[0]
            except sqlite3.Error as exc:
                raise StoreError(f"Count failed: {exc}") from exc
