"""Catalog of file identities keyed by content hash."""

from __future__ import annotations

import json
import logging
import mimetypes
import sqlite3
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Sequence

from filecatalog.errors import (
    DuplicateIdentityError,
    FileReadError,
    InvalidTransitionError,
    NotFoundError,
)
from filecatalog.index.storage import SQLiteDatabase, dumps_json, loads_json
from filecatalog.models import (
    ALLOWED_TRANSITIONS,
    DuplicateSet,
    FileRecord,
    FileStatus,
    PathObservation,
    Tag,
)
from filecatalog.utils.files import hash_path, hash_stream

LOGGER = logging.getLogger(__name__)


def _row_to_record(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        id=row["id"],
        content_hash=row["content_hash"],
        original_path=Path(row["original_path"]),
        centralized_path=Path(row["centralized_path"]) if row["centralized_path"] else None,
        filename=row["filename"],
        file_type=row["file_type"],
        mime_type=row["mime_type"],
        size_bytes=row["size_bytes"],
        modified_at=row["modified_at"],
        status=FileStatus(row["status"]),
        error_message=row["error_message"],
        metadata=loads_json(row["metadata"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def describe_path(path: Path, content_hash: str, size: int) -> FileRecord:
    """Build an unsaved record for a file seen at ``path``."""
    path = Path(path)
    try:
        modified_at: Optional[float] = path.stat().st_mtime
    except OSError:
        modified_at = None
    mime_type, _ = mimetypes.guess_type(path.name)
    return FileRecord(
        content_hash=content_hash,
        original_path=path,
        filename=path.name,
        file_type=path.suffix.lower(),
        mime_type=mime_type,
        size_bytes=size,
        modified_at=modified_at,
    )


class CatalogStore:
    """Operations over the ``files``, ``file_paths`` and tag tables."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self.database = database

    @property
    def _conn(self) -> sqlite3.Connection:
        return self.database.connection

    # -- identity ---------------------------------------------------------

    def find_or_create(
        self, path: Path, stream: Optional[BinaryIO] = None
    ) -> tuple[FileRecord, bool]:
        """Return the record for the content at ``path``, creating it if new."""
        record, outcome = self.register(path, stream)
        return record, outcome == "added"

    def register(
        self, path: Path, stream: Optional[BinaryIO] = None
    ) -> tuple[FileRecord, str]:
        """Record that the content at ``path`` was seen there.

        The outcome is ``"added"`` for new content, ``"duplicate"`` for known
        content at a new path and ``"known"`` when this exact path was
        already recorded for it.

        The hash is computed before touching the database, so an unreadable
        file leaves no trace. Concurrent callers racing on the same content
        are resolved by the unique index on ``content_hash``.
        """
        path = Path(path)
        if stream is None:
            content_hash, size = hash_path(path)
        else:
            try:
                content_hash, size = hash_stream(stream)
            except OSError as exc:
                raise FileReadError(path, exc.strerror or str(exc)) from exc

        candidate = describe_path(path, content_hash, size)
        with self.database.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO files(content_hash, original_path, filename, file_type,
                                  mime_type, size_bytes, modified_at, status, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(content_hash) DO NOTHING
                """,
                self._insert_params(candidate),
            )
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM files WHERE content_hash = ?", (content_hash,)
            ).fetchone()
            new_path = conn.execute(
                "INSERT OR IGNORE INTO file_paths(file_id, path) VALUES (?, ?)",
                (row["id"], str(path)),
            ).rowcount == 1

        if created:
            outcome = "added"
            LOGGER.debug("Catalogued %s (%s)", path, content_hash[:12])
        elif new_path:
            outcome = "duplicate"
            LOGGER.debug("Duplicate of %s: %s", row["original_path"], path)
        else:
            outcome = "known"
        return _row_to_record(row), outcome

    def insert(self, record: FileRecord) -> FileRecord:
        """Insert a fully described record; an existing hash is an error."""
        try:
            with self.database.transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO files(content_hash, original_path, filename, file_type,
                                      mime_type, size_bytes, modified_at, status, metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._insert_params(record),
                )
                conn.execute(
                    "INSERT OR IGNORE INTO file_paths(file_id, path) VALUES (?, ?)",
                    (cursor.lastrowid, str(record.original_path)),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateIdentityError(record.content_hash) from exc
        return self.require(record.content_hash)

    @staticmethod
    def _insert_params(record: FileRecord) -> tuple:
        return (
            record.content_hash,
            str(record.original_path),
            record.filename,
            record.file_type,
            record.mime_type,
            record.size_bytes,
            record.modified_at,
            record.status.value,
            dumps_json(record.metadata),
        )

    def get(self, content_hash: str) -> Optional[FileRecord]:
        row = self._conn.execute(
            "SELECT * FROM files WHERE content_hash = ?", (content_hash,)
        ).fetchone()
        return _row_to_record(row) if row else None

    def get_by_id(self, file_id: int) -> Optional[FileRecord]:
        row = self._conn.execute("SELECT * FROM files WHERE id = ?", (file_id,)).fetchone()
        return _row_to_record(row) if row else None

    def require(self, content_hash: str) -> FileRecord:
        record = self.get(content_hash)
        if record is None:
            raise NotFoundError(f"No file with hash {content_hash}")
        return record

    def resolve(self, prefix: str) -> FileRecord:
        """Find a record by full hash or unambiguous hash prefix."""
        rows = self._conn.execute(
            "SELECT * FROM files WHERE content_hash LIKE ? LIMIT 2", (f"{prefix}%",)
        ).fetchall()
        if len(rows) != 1:
            raise NotFoundError(
                f"No file with hash {prefix}" if not rows else f"Ambiguous hash prefix {prefix}"
            )
        return _row_to_record(rows[0])

    def list_by_status(self, *statuses: FileStatus) -> List[FileRecord]:
        if not statuses:
            rows = self._conn.execute("SELECT * FROM files ORDER BY id").fetchall()
        else:
            placeholders = ", ".join("?" for _ in statuses)
            rows = self._conn.execute(
                f"SELECT * FROM files WHERE status IN ({placeholders}) ORDER BY id",
                [status.value for status in statuses],
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def paths_for(self, content_hash: str) -> List[PathObservation]:
        rows = self._conn.execute(
            """
            SELECT p.file_id, p.path, p.observed_at
            FROM file_paths p JOIN files f ON f.id = p.file_id
            WHERE f.content_hash = ?
            ORDER BY p.id
            """,
            (content_hash,),
        ).fetchall()
        return [
            PathObservation(file_id=row["file_id"], path=Path(row["path"]), observed_at=row["observed_at"])
            for row in rows
        ]

    # -- status -----------------------------------------------------------

    def set_status(
        self,
        content_hash: str,
        status: FileStatus,
        error_message: Optional[str] = None,
    ) -> FileRecord:
        """Move a record to ``status`` with one conditional update.

        The update only matches rows whose current status may legally lead to
        ``status``, so two callers racing on the same record cannot both win.
        """
        if not self._transition(content_hash, status, error_message):
            current = self.get(content_hash)
            if current is None:
                raise NotFoundError(f"No file with hash {content_hash}")
            raise InvalidTransitionError(content_hash, current.status.value, status.value)
        return self.require(content_hash)

    def claim(self, content_hash: str) -> bool:
        """Atomically take a discovered or failed record into processing.

        Returns ``False`` when the record is not in a claimable status, which
        includes losing the race to another worker.
        """
        if self._transition(content_hash, FileStatus.PROCESSING, None):
            return True
        if self.get(content_hash) is None:
            raise NotFoundError(f"No file with hash {content_hash}")
        return False

    def reset(self, content_hash: str) -> FileRecord:
        """Send a processed record back to discovered for reprocessing."""
        return self.set_status(content_hash, FileStatus.DISCOVERED)

    def recover_stale(self, older_than: float) -> List[str]:
        """Move records stuck in ``processing`` for ``older_than`` seconds to ``error``.

        A worker that died mid-job leaves its claim behind; once in ``error``
        the file can be retried like any other failure.
        """
        with self.database.transaction() as conn:
            rows = conn.execute(
                """
                SELECT content_hash FROM files
                WHERE status = ? AND updated_at <= datetime('now', ?)
                ORDER BY id
                """,
                (FileStatus.PROCESSING.value, f"-{max(0.0, older_than)} seconds"),
            ).fetchall()
            hashes = [row["content_hash"] for row in rows]
            for content_hash in hashes:
                conn.execute(
                    "UPDATE files SET status = ?, error_message = ? WHERE content_hash = ? AND status = ?",
                    (
                        FileStatus.ERROR.value,
                        f"Interrupted: still processing after {older_than:g}s",
                        content_hash,
                        FileStatus.PROCESSING.value,
                    ),
                )
        if hashes:
            LOGGER.warning("Recovered %d stale processing records", len(hashes))
        return hashes

    def _transition(
        self, content_hash: str, status: FileStatus, error_message: Optional[str]
    ) -> bool:
        sources = sorted(source.value for source in ALLOWED_TRANSITIONS[status])
        placeholders = ", ".join("?" for _ in sources)
        cursor = self._conn.execute(
            f"""
            UPDATE files SET status = ?, error_message = ?
            WHERE content_hash = ? AND status IN ({placeholders})
            """,
            [
                status.value,
                error_message if status is FileStatus.ERROR else None,
                content_hash,
                *sources,
            ],
        )
        return cursor.rowcount == 1

    def relocate(self, content_hash: str, centralized_path: Path) -> FileRecord:
        cursor = self._conn.execute(
            "UPDATE files SET centralized_path = ? WHERE content_hash = ?",
            (str(centralized_path), content_hash),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"No file with hash {content_hash}")
        return self.require(content_hash)

    def update_metadata(self, content_hash: str, values: Dict[str, Any]) -> FileRecord:
        """Merge ``values`` into the record's metadata map."""
        with self.database.transaction() as conn:
            row = conn.execute(
                "SELECT metadata FROM files WHERE content_hash = ?", (content_hash,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"No file with hash {content_hash}")
            merged = loads_json(row["metadata"])
            merged.update(values)
            conn.execute(
                "UPDATE files SET metadata = ? WHERE content_hash = ?",
                (dumps_json(merged), content_hash),
            )
        return self.require(content_hash)

    # -- duplicates -------------------------------------------------------

    def iter_duplicate_hashes(self) -> Iterator[str]:
        """Yield hashes observed at more than one path.

        Lazy: rows are pulled from the cursor as the caller iterates. Call
        again to restart.
        """
        cursor = self._conn.execute(
            """
            SELECT f.content_hash
            FROM files f JOIN file_paths p ON p.file_id = f.id
            GROUP BY f.id
            HAVING COUNT(p.id) > 1
            """
        )
        for row in cursor:
            yield row["content_hash"]

    def find_duplicate_hashes(self) -> List[str]:
        return list(self.iter_duplicate_hashes())

    def duplicate_sets(self) -> List[DuplicateSet]:
        sets = []
        for content_hash in self.find_duplicate_hashes():
            observations = self.paths_for(content_hash)
            sets.append(
                DuplicateSet(
                    content_hash=content_hash,
                    paths=[obs.path for obs in observations],
                    kept_file_id=observations[0].file_id if observations else None,
                )
            )
        return sets

    def refresh_duplicate_summary(self) -> int:
        """Rebuild the ``file_duplicates`` convenience table."""
        sets = self.duplicate_sets()
        with self.database.transaction() as conn:
            conn.execute("DELETE FROM file_duplicates")
            for dup in sets:
                conn.execute(
                    """
                    INSERT INTO file_duplicates(content_hash, kept_file_id,
                                                duplicate_paths, duplicate_count)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        dup.content_hash,
                        dup.kept_file_id,
                        json.dumps([str(p) for p in dup.paths]),
                        dup.count,
                    ),
                )
        return len(sets)

    # -- tags -------------------------------------------------------------

    def tag(
        self,
        content_hash: str,
        name: str,
        *,
        category: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Tag:
        record = self.require(content_hash)
        with self.database.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO tags(name, category, color) VALUES (?, ?, ?)",
                (name, category, color),
            )
            row = conn.execute("SELECT * FROM tags WHERE name = ?", (name,)).fetchone()
            conn.execute(
                "INSERT OR IGNORE INTO file_tags(file_id, tag_id) VALUES (?, ?)",
                (record.id, row["id"]),
            )
        return Tag(id=row["id"], name=row["name"], category=row["category"], color=row["color"])

    def untag(self, content_hash: str, name: str) -> bool:
        record = self.require(content_hash)
        cursor = self._conn.execute(
            """
            DELETE FROM file_tags
            WHERE file_id = ? AND tag_id = (SELECT id FROM tags WHERE name = ?)
            """,
            (record.id, name),
        )
        return cursor.rowcount > 0

    def tags_for(self, content_hash: str) -> List[Tag]:
        rows = self._conn.execute(
            """
            SELECT t.* FROM tags t
            JOIN file_tags ft ON ft.tag_id = t.id
            JOIN files f ON f.id = ft.file_id
            WHERE f.content_hash = ?
            ORDER BY t.name
            """,
            (content_hash,),
        ).fetchall()
        return [
            Tag(id=row["id"], name=row["name"], category=row["category"], color=row["color"])
            for row in rows
        ]

    def files_with_tag(self, name: str) -> List[FileRecord]:
        rows = self._conn.execute(
            """
            SELECT f.* FROM files f
            JOIN file_tags ft ON ft.file_id = f.id
            JOIN tags t ON t.id = ft.tag_id
            WHERE t.name = ?
            ORDER BY f.id
            """,
            (name,),
        ).fetchall()
        return [_row_to_record(row) for row in rows]

    # -- reporting --------------------------------------------------------

    def stats(self, *, top_types: int = 10) -> Dict[str, Any]:
        conn = self._conn
        totals = conn.execute(
            "SELECT COUNT(*) AS total, COALESCE(SUM(size_bytes), 0) AS size FROM files"
        ).fetchone()
        by_status = {
            row["status"]: row["n"]
            for row in conn.execute("SELECT status, COUNT(*) AS n FROM files GROUP BY status")
        }
        file_types: Sequence[tuple[str, int]] = [
            (row["file_type"] or "(none)", row["n"])
            for row in conn.execute(
                """
                SELECT file_type, COUNT(*) AS n FROM files
                GROUP BY file_type ORDER BY n DESC, file_type LIMIT ?
                """,
                (top_types,),
            )
        ]
        return {
            "total_files": totals["total"],
            "total_size": totals["size"],
            "by_status": by_status,
            "file_types": list(file_types),
            "duplicate_sets": sum(1 for _ in self.iter_duplicate_hashes()),
        }
