"""Local SQLite attachment store."""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from ruleguard.attachments.base import AttachmentStore
from ruleguard.errors import AttachmentError


class LocalAttachmentStore(AttachmentStore):
    """Stores trade images as blobs in a local SQLite database.

    AUTOINCREMENT keeps deleted ids from being handed out again.
    """

    def __init__(self, db_path: Path):
        """Initialize the attachment store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        return sqlite3.connect(self.db_path)

    def _init_schema(self) -> None:
        """Initialize database schema on first run."""
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS attachments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    data BLOB NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def save(self, data: bytes) -> int:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO attachments (data, created_at) VALUES (?, ?)",
                (sqlite3.Binary(data), datetime.now().isoformat()),
            )
            conn.commit()
            return cursor.lastrowid
        except sqlite3.Error as e:
            raise AttachmentError(f"Failed to save attachment: {e}") from e
        finally:
            conn.close()

    def get(self, attachment_id: int) -> Optional[bytes]:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT data FROM attachments WHERE id = ?", (attachment_id,))
            row = cursor.fetchone()
            return bytes(row[0]) if row else None
        finally:
            conn.close()

    def delete(self, attachment_id: int) -> None:
        conn = self._get_connection()
        try:
            conn.execute("DELETE FROM attachments WHERE id = ?", (attachment_id,))
            conn.commit()
        except sqlite3.Error as e:
            raise AttachmentError(f"Failed to delete attachment {attachment_id}: {e}") from e
        finally:
            conn.close()

    def count(self) -> int:
        """Get the number of stored attachments."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM attachments")
            return cursor.fetchone()[0]
        finally:
            conn.close()
