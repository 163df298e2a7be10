"""Local index state for tracked Shared Drives.

This module provides:
- StoredItem: an indexed Drive file or folder
- DriveState: SQLite-based storage of drive items, change feed cursors and
  changed paths not yet acknowledged by Autoscan

Architecture:
    Items are stored with their single parent ID. Paths are not stored;
    they are resolved on demand by walking parents up to the drive root,
    so renaming or moving a folder is a single-row update.

    Changed paths are queued in the pending table in the same transaction
    that advances the cursor, and stay there until acknowledged.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from atrain.drive.api import DriveItem

logger = logging.getLogger(__name__)

# Guard against parent cycles in corrupt data
MAX_PATH_DEPTH = 256


@dataclass
class StoredItem:
    """Indexed item of a drive."""

    id: str
    drive_id: str
    name: str
    parent: str | None
    mime_type: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> StoredItem:
        """Create StoredItem from database row."""
        return cls(
            id=row["id"],
            drive_id=row["drive_id"],
            name=row["name"],
            parent=row["parent"],
            mime_type=row["mime_type"],
        )


class DriveState:
    """SQLite-based index of Shared Drive items.

    Several DriveState instances may share one database file; each one
    holds its own connection.
    """

    def __init__(self, db_path: Path) -> None:
        """Open (and create if needed) the index database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS drives (
                id TEXT PRIMARY KEY,
                page_token TEXT NOT NULL,
                synced_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS items (
                drive_id TEXT NOT NULL,
                id TEXT NOT NULL,
                name TEXT NOT NULL,
                parent TEXT,
                mime_type TEXT NOT NULL,
                PRIMARY KEY (drive_id, id)
            );

            CREATE INDEX IF NOT EXISTS idx_items_parent ON items (drive_id, parent);

            CREATE TABLE IF NOT EXISTS pending (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                drive_id TEXT NOT NULL,
                kind TEXT NOT NULL CHECK (kind IN ('created', 'deleted')),
                path TEXT NOT NULL,
                UNIQUE (drive_id, kind, path)
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes so a partially applied sync is never committed."""
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    # === Change feed cursors ===

    def get_page_token(self, drive_id: str) -> str | None:
        """Get the stored change feed cursor of a drive."""
        with self._lock:
            row = self._conn.execute(
                "SELECT page_token FROM drives WHERE id = ?", (drive_id,)
            ).fetchone()
        return row["page_token"] if row else None

    def set_page_token(self, drive_id: str, page_token: str) -> None:
        """Store the change feed cursor of a drive."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO drives (id, page_token, synced_at) VALUES (?, ?, ?)",
                (drive_id, page_token, time.time()),
            )

    # === Pending notifications ===

    def add_pending(self, drive_id: str, created: Iterable[str], deleted: Iterable[str]) -> None:
        """Queue changed paths until they are acknowledged."""
        rows = [(drive_id, "created", path) for path in created]
        rows += [(drive_id, "deleted", path) for path in deleted]
        with self._lock:
            self._conn.executemany(
                "INSERT OR IGNORE INTO pending (drive_id, kind, path) VALUES (?, ?, ?)",
                rows,
            )

    def get_pending(self, drive_id: str) -> tuple[list[str], list[str]]:
        """Get queued paths of a drive in the order they were queued.

        Returns:
            (created, deleted) path lists.
        """
        with self._lock:
            rows = self._conn.execute(
                "SELECT kind, path FROM pending WHERE drive_id = ? ORDER BY seq",
                (drive_id,),
            ).fetchall()
        created = [row["path"] for row in rows if row["kind"] == "created"]
        deleted = [row["path"] for row in rows if row["kind"] == "deleted"]
        return created, deleted

    def remove_pending(self, drive_id: str, created: Iterable[str], deleted: Iterable[str]) -> None:
        """Drop acknowledged paths from the queue."""
        rows = [(drive_id, "created", path) for path in created]
        rows += [(drive_id, "deleted", path) for path in deleted]
        with self._lock:
            self._conn.executemany(
                "DELETE FROM pending WHERE drive_id = ? AND kind = ? AND path = ?",
                rows,
            )

    # === Items ===

    def get_item(self, drive_id: str, item_id: str) -> StoredItem | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM items WHERE drive_id = ? AND id = ?",
                (drive_id, item_id),
            ).fetchone()
        return StoredItem.from_row(row) if row else None

    def upsert_items(self, drive_id: str, items: Iterable[DriveItem]) -> None:
        """Insert or update items of a drive."""
        with self._lock:
            self._conn.executemany(
                """
                INSERT OR REPLACE INTO items (drive_id, id, name, parent, mime_type)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (drive_id, item.id, item.name, item.parent, item.mime_type)
                    for item in items
                ],
            )

    def delete_tree(self, drive_id: str, item_id: str) -> int:
        """Delete an item and all of its descendants.

        Returns:
            Number of rows deleted.
        """
        with self._lock:
            cursor = self._conn.execute(
                """
                WITH RECURSIVE tree(id) AS (
                    SELECT ?
                    UNION
                    SELECT items.id FROM items JOIN tree ON items.parent = tree.id
                    WHERE items.drive_id = ?
                )
                DELETE FROM items WHERE drive_id = ? AND id IN (SELECT id FROM tree)
                """,
                (item_id, drive_id, drive_id),
            )
        return cursor.rowcount

    def clear_drive(self, drive_id: str) -> None:
        """Forget every item, pending path and the cursor of a drive."""
        with self._lock:
            self._conn.execute("DELETE FROM items WHERE drive_id = ?", (drive_id,))
            self._conn.execute("DELETE FROM pending WHERE drive_id = ?", (drive_id,))
            self._conn.execute("DELETE FROM drives WHERE id = ?", (drive_id,))

    def count_items(self, drive_id: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM items WHERE drive_id = ?", (drive_id,)
            ).fetchone()
        return int(row["n"])

    def path_of(self, drive_id: str, item_id: str) -> str | None:
        """Resolve the absolute path of an item within its drive.

        Returns:
            Path such as "/Movies/Film (2020)/film.mkv", or None if an
            ancestor is not indexed.
        """
        names: list[str] = []
        current: str | None = item_id
        for _ in range(MAX_PATH_DEPTH):
            if current is None:
                return None
            if current == drive_id:
                return "/" + "/".join(reversed(names))
            item = self.get_item(drive_id, current)
            if item is None:
                return None
            names.append(item.name)
            current = item.parent

        logger.warning("Path of %s in drive %s is too deep or cyclic", item_id, drive_id)
        return None
