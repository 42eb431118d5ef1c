"""
Store - The sink contract and a SQLite-backed reference sink.

The pipeline only needs three things from a sink: what it already holds
(path and fingerprint), a way to add or replace one file, and headline
numbers. SqliteStore keeps one row per path and upserts on conflict, so
re-uploading a changed file replaces its previous version.
"""

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import List, Optional, Protocol, runtime_checkable

from .config import IndexerConfig
from .errors import SinkInitError
from .models import IndexRecord, StoreInfo


logger = logging.getLogger(__name__)


@runtime_checkable
class Sink(Protocol):
    """Destination for accepted files."""

    def list_files(self) -> List[IndexRecord]:
        ...

    def upload_file(
        self,
        path: str,
        content: str,
        fingerprint: str,
        size: int,
        last_modified: float,
    ) -> bool:
        ...

    def get_info(self) -> StoreInfo:
        ...


class SqliteStore:
    """
    File store in a single SQLite database.

    One connection shared across upload threads, guarded by a lock.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._get_connection()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            # Performance optimizations
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._init_tables()
        return self._conn

    def _init_tables(self):
        """Create the files table if it doesn't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS files (
                path TEXT PRIMARY KEY,
                fingerprint TEXT NOT NULL,
                size INTEGER NOT NULL,
                last_modified REAL NOT NULL,
                content TEXT NOT NULL,
                line_count INTEGER NOT NULL,
                indexed_at REAL NOT NULL
            );
        """)
        self._conn.commit()

    def list_files(self) -> List[IndexRecord]:
        """Every stored path with its fingerprint."""
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT path, fingerprint FROM files ORDER BY path"
            )
            return [IndexRecord(row["path"], row["fingerprint"]) for row in cursor.fetchall()]

    def upload_file(
        self,
        path: str,
        content: str,
        fingerprint: str,
        size: int,
        last_modified: float,
    ) -> bool:
        """Insert or replace one file. Returns False if the write failed."""
        line_count = len(content.split("\n"))
        try:
            with self._lock:
                conn = self._get_connection()
                conn.execute(
                    """
                    INSERT INTO files
                        (path, fingerprint, size, last_modified, content, line_count, indexed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(path) DO UPDATE SET
                        fingerprint = excluded.fingerprint,
                        size = excluded.size,
                        last_modified = excluded.last_modified,
                        content = excluded.content,
                        line_count = excluded.line_count,
                        indexed_at = excluded.indexed_at
                    """,
                    (path, fingerprint, size, last_modified, content, line_count, time.time()),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to store {path}: {e}")
            return False
        return True

    def get_content(self, path: str) -> Optional[str]:
        """Stored content for a path, or None."""
        with self._lock:
            row = self._get_connection().execute(
                "SELECT content FROM files WHERE path = ?", (path,)
            ).fetchone()
        return row["content"] if row else None

    def get_info(self) -> StoreInfo:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT COUNT(*) AS n, COALESCE(SUM(size), 0) AS total, "
                "MAX(indexed_at) AS updated FROM files"
            ).fetchone()
        return StoreInfo(
            file_count=row["n"],
            total_size=row["total"],
            last_updated=row["updated"],
        )

    def close(self):
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def open_store(store_name: Optional[str] = None, config: IndexerConfig | None = None) -> SqliteStore:
    """
    Open (creating if needed) the named store under the data directory.

    Raises:
        SinkInitError: If the database cannot be opened
    """
    config = config or IndexerConfig()
    db_path = config.store_path(store_name)
    try:
        store = SqliteStore(db_path)
    except (OSError, sqlite3.Error) as e:
        raise SinkInitError(f"{db_path}: {e}") from e
    logger.debug(f"Opened store {db_path}")
    return store
