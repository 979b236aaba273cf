"""SQLite-backed store of the last observed tree of each project."""

import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .exceptions import SnapshotStoreError
from .models import SnapshotEntry


@dataclass
class Snapshot:
    """
    Previous observation of a project.
    
    Attributes:
        entries: Entries keyed by canonical project-relative path
        watermark_ms: Start time of the diff cycle that produced the entries
        root_exists: Whether the project root existed at that time
    """
    entries: Dict[str, SnapshotEntry] = field(default_factory=dict)
    watermark_ms: int = 0
    root_exists: bool = True


class SnapshotStore:
    """
    Durable per-project snapshots.
    
    Features:
    - Wholesale atomic replacement of a project snapshot
    - Survives process restarts, so changes made while the watcher was
      down are reported by the first diff after startup
    - Thread-safe operations
    """

    def __init__(self, db_path: Path):
        """
        Initialize the store.
        
        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._lock = threading.Lock()
        self._local = threading.local()
        self._closed = False

        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode
            )
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        return self._local.conn

    def _init_db(self) -> None:
        """Initialize the database schema."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS snapshot_entries (
                project_id TEXT NOT NULL,
                path TEXT NOT NULL,
                is_directory INTEGER NOT NULL,
                mod_time_ms INTEGER NOT NULL,
                PRIMARY KEY (project_id, path)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS snapshot_meta (
                project_id TEXT PRIMARY KEY,
                watermark_ms INTEGER NOT NULL,
                root_exists INTEGER NOT NULL,
                updated_at REAL NOT NULL
            )
        """)

    def _check_open(self) -> None:
        if self._closed:
            raise SnapshotStoreError("Snapshot store is closed")

    def previous(self, project_id: str) -> Optional[Snapshot]:
        """
        Load the last snapshot of a project.
        
        Returns:
            The snapshot, or None if the project has never been diffed
        """
        self._check_open()

        with self._lock:
            conn = self._get_connection()
            meta = conn.execute(
                "SELECT watermark_ms, root_exists FROM snapshot_meta WHERE project_id = ?",
                (project_id,),
            ).fetchone()
            if meta is None:
                return None

            rows = conn.execute(
                "SELECT path, is_directory, mod_time_ms FROM snapshot_entries WHERE project_id = ?",
                (project_id,),
            ).fetchall()

        entries = {
            path: SnapshotEntry(path=path, is_directory=bool(is_dir), mod_time_ms=mtime)
            for path, is_dir, mtime in rows
        }
        return Snapshot(entries=entries, watermark_ms=meta[0], root_exists=bool(meta[1]))

    def replace(
        self,
        project_id: str,
        entries: Iterable[SnapshotEntry],
        watermark_ms: int,
        root_exists: bool = True,
    ) -> None:
        """
        Replace the snapshot of a project in one transaction.
        
        Args:
            project_id: Project to replace
            entries: Complete current walk result
            watermark_ms: Watermark for the next diff
            root_exists: Whether the project root currently exists
        """
        self._check_open()

        rows = [(project_id, e.path, int(e.is_directory), e.mod_time_ms) for e in entries]

        with self._lock:
            conn = self._get_connection()
            conn.execute("BEGIN")
            try:
                conn.execute("DELETE FROM snapshot_entries WHERE project_id = ?", (project_id,))
                conn.executemany(
                    "INSERT INTO snapshot_entries (project_id, path, is_directory, mod_time_ms) VALUES (?, ?, ?, ?)",
                    rows,
                )
                conn.execute(
                    "INSERT OR REPLACE INTO snapshot_meta (project_id, watermark_ms, root_exists, updated_at) VALUES (?, ?, ?, ?)",
                    (project_id, watermark_ms, int(root_exists), time.time()),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def delete(self, project_id: str) -> bool:
        """
        Forget a project.
        
        Returns:
            True if a snapshot existed
        """
        self._check_open()

        with self._lock:
            conn = self._get_connection()
            conn.execute("BEGIN")
            try:
                conn.execute("DELETE FROM snapshot_entries WHERE project_id = ?", (project_id,))
                cursor = conn.execute("DELETE FROM snapshot_meta WHERE project_id = ?", (project_id,))
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            return cursor.rowcount > 0

    def project_ids(self) -> List[str]:
        """Projects that have a stored snapshot."""
        self._check_open()

        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("SELECT project_id FROM snapshot_meta ORDER BY project_id")
            return [row[0] for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the store connection of the calling thread."""
        self._closed = True
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
