"""Content variants of catalogued files and their embeddings."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, Iterator, List, Optional

import numpy as np

from filecatalog.errors import DimensionMismatchError, NotFoundError
from filecatalog.index.storage import (
    SQLiteDatabase,
    blob_to_vector,
    dumps_json,
    loads_json,
    vector_to_blob,
)
from filecatalog.models import ContentRecord, ContentType

LOGGER = logging.getLogger(__name__)


def _row_to_content(row: sqlite3.Row) -> ContentRecord:
    return ContentRecord(
        id=row["id"],
        file_id=row["file_id"],
        content_type=ContentType(row["content_type"]),
        text=row["content"],
        annotations=loads_json(row["annotations"]),
        language=row["language"],
        embedding=blob_to_vector(row["embedding"]),
    )


class ContentStore:
    """Operations over the ``file_contents`` table.

    There is at most one row per (file, content type). Re-storing identical
    text is a no-op; storing different text replaces it and drops the now
    stale embedding.
    """

    def __init__(self, database: SQLiteDatabase) -> None:
        self.database = database

    @property
    def _conn(self) -> sqlite3.Connection:
        return self.database.connection

    def upsert(
        self,
        file_id: int,
        content_type: ContentType,
        text: str,
        *,
        annotations: Optional[Dict[str, Any]] = None,
        language: Optional[str] = None,
    ) -> tuple[ContentRecord, str]:
        """Store a content variant.

        Returns:
            (record, status) where status is 'inserted', 'updated', or 'unchanged'.
        """
        with self.database.transaction() as conn:
            existing = conn.execute(
                "SELECT * FROM file_contents WHERE file_id = ? AND content_type = ?",
                (file_id, content_type.value),
            ).fetchone()

            if existing is None:
                content_id = conn.execute(
                    """
                    INSERT INTO file_contents(file_id, content_type, content, annotations, language)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (file_id, content_type.value, text, dumps_json(annotations), language),
                ).lastrowid
                status = "inserted"
            elif (
                existing["content"] == text
                and loads_json(existing["annotations"]) == (annotations or {})
                and existing["language"] == language
            ):
                content_id = existing["id"]
                status = "unchanged"
            else:
                content_id = existing["id"]
                text_changed = existing["content"] != text
                conn.execute(
                    """
                    UPDATE file_contents
                    SET content = ?, annotations = ?, language = ?,
                        embedding = CASE WHEN ? THEN NULL ELSE embedding END,
                        embedding_dim = CASE WHEN ? THEN NULL ELSE embedding_dim END,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (
                        text,
                        dumps_json(annotations),
                        language,
                        text_changed,
                        text_changed,
                        content_id,
                    ),
                )
                status = "updated"

            row = conn.execute("SELECT * FROM file_contents WHERE id = ?", (content_id,)).fetchone()

        LOGGER.debug("Content %s for file %s: %s", content_type.value, file_id, status)
        return _row_to_content(row), status

    def get(self, content_id: int) -> Optional[ContentRecord]:
        row = self._conn.execute(
            "SELECT * FROM file_contents WHERE id = ?", (content_id,)
        ).fetchone()
        return _row_to_content(row) if row else None

    def require(self, content_id: int) -> ContentRecord:
        record = self.get(content_id)
        if record is None:
            raise NotFoundError(f"No content with id {content_id}")
        return record

    def for_file(self, file_id: int) -> List[ContentRecord]:
        rows = self._conn.execute(
            "SELECT * FROM file_contents WHERE file_id = ? ORDER BY id", (file_id,)
        ).fetchall()
        return [_row_to_content(row) for row in rows]

    def pending_embeddings(self, limit: Optional[int] = None) -> List[ContentRecord]:
        """Content rows that have no embedding yet, oldest first."""
        sql = "SELECT * FROM file_contents WHERE embedding IS NULL ORDER BY id"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [_row_to_content(row) for row in self._conn.execute(sql, params).fetchall()]

    def set_embedding(self, content_id: int, vector: np.ndarray) -> None:
        """Store ``vector`` for a content row.

        A row that already carries a vector of a different dimension is left
        untouched and the call fails; mixing dimensions needs a rebuild.
        """
        vector = np.asarray(vector, dtype="float32").reshape(-1)
        with self.database.transaction() as conn:
            row = conn.execute(
                "SELECT embedding_dim FROM file_contents WHERE id = ?", (content_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"No content with id {content_id}")
            current = row["embedding_dim"]
            if current is not None and current != vector.shape[0]:
                raise DimensionMismatchError(
                    current, vector.shape[0], f"existing embedding of content {content_id}"
                )
            conn.execute(
                """
                UPDATE file_contents
                SET embedding = ?, embedding_dim = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (vector_to_blob(vector), int(vector.shape[0]), content_id),
            )

    def iter_embedded(self) -> Iterator[ContentRecord]:
        """Yield rows with an embedding in insertion order."""
        cursor = self._conn.execute(
            "SELECT * FROM file_contents WHERE embedding IS NOT NULL ORDER BY id"
        )
        for row in cursor:
            yield _row_to_content(row)

    def embedding_dimensions(self) -> List[int]:
        return [
            row["embedding_dim"]
            for row in self._conn.execute(
                """
                SELECT DISTINCT embedding_dim FROM file_contents
                WHERE embedding_dim IS NOT NULL ORDER BY embedding_dim
                """
            )
        ]

    def clear_embeddings(self) -> int:
        """Drop every stored vector, e.g. before re-embedding with a new model."""
        cursor = self._conn.execute(
            """
            UPDATE file_contents SET embedding = NULL, embedding_dim = NULL
            WHERE embedding IS NOT NULL
            """
        )
        LOGGER.info("Cleared %d embeddings", cursor.rowcount)
        return cursor.rowcount
