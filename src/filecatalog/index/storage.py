"""SQLite persistence shared by the catalog and content stores."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import numpy as np

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS files (
        id INTEGER PRIMARY KEY,
        content_hash TEXT NOT NULL UNIQUE,
        original_path TEXT NOT NULL,
        centralized_path TEXT,
        filename TEXT NOT NULL,
        file_type TEXT NOT NULL,
        mime_type TEXT,
        size_bytes INTEGER NOT NULL,
        modified_at REAL,
        status TEXT NOT NULL DEFAULT 'discovered',
        error_message TEXT,
        metadata TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_files_status ON files(status)",
    "CREATE INDEX IF NOT EXISTS idx_files_file_type ON files(file_type)",
    "CREATE INDEX IF NOT EXISTS idx_files_original_path ON files(original_path)",
    """
    CREATE TRIGGER IF NOT EXISTS files_updated
    AFTER UPDATE ON files
    BEGIN
        UPDATE files SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
    END;
    """,
    """
    CREATE TABLE IF NOT EXISTS file_paths (
        id INTEGER PRIMARY KEY,
        file_id INTEGER NOT NULL,
        path TEXT NOT NULL,
        observed_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(file_id, path),
        FOREIGN KEY(file_id) REFERENCES files(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_file_paths_file_id ON file_paths(file_id)",
    """
    CREATE TABLE IF NOT EXISTS file_contents (
        id INTEGER PRIMARY KEY,
        file_id INTEGER NOT NULL,
        content_type TEXT NOT NULL,
        content TEXT NOT NULL,
        annotations TEXT,
        language TEXT,
        embedding BLOB,
        embedding_dim INTEGER,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(file_id) REFERENCES files(id) ON DELETE CASCADE
    )
    """,
    """CREATE UNIQUE INDEX IF NOT EXISTS idx_file_contents_file_type
        ON file_contents(file_id, content_type)
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        category TEXT,
        color TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tags_category ON tags(category)",
    """
    CREATE TABLE IF NOT EXISTS file_tags (
        file_id INTEGER NOT NULL,
        tag_id INTEGER NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY(file_id, tag_id),
        FOREIGN KEY(file_id) REFERENCES files(id) ON DELETE CASCADE,
        FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS file_duplicates (
        id INTEGER PRIMARY KEY,
        content_hash TEXT NOT NULL UNIQUE,
        kept_file_id INTEGER,
        duplicate_paths TEXT NOT NULL,
        duplicate_count INTEGER NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(kept_file_id) REFERENCES files(id) ON DELETE SET NULL
    )
    """,
)


def dumps_json(value: Optional[Dict[str, Any]]) -> str:
    return json.dumps(value or {}, ensure_ascii=True, sort_keys=True)


def loads_json(value: Optional[str]) -> Dict[str, Any]:
    return json.loads(value) if value else {}


def vector_to_blob(vector: np.ndarray) -> bytes:
    return sqlite3.Binary(np.asarray(vector, dtype="float32").tobytes())


def blob_to_vector(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype="float32").copy()


class SQLiteDatabase:
    """Owns the SQLite file, its schema and one connection per thread.

    Statements run in autocommit mode so each one is atomic on its own;
    :meth:`transaction` groups several statements under ``BEGIN IMMEDIATE``.
    """

    def __init__(self, db_path: Path, *, busy_timeout: float = 30.0) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        with self._lock:
            self._connections.append(conn)
        return conn

    @property
    def connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
        return conn

    def close(self) -> None:
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local = threading.local()

    def __enter__(self) -> "SQLiteDatabase":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.connection
        if conn.in_transaction:
            yield conn
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
