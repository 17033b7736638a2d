"""
Key/value settings stored in the grimoire database.

Settings share the database file with the items but not the repository:
this store has its own connection and commits each write immediately.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .errors import StorageFailure

# Keys the CLI reads
EXPORT_PATH = "export_path"
SUGGESTION_PROVIDER = "llm_provider"
SUGGESTION_MODEL = "llm_model"


class SettingsStore:
    """Flat string settings in the ``settings`` table."""

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to the SQLite database file
        """
        self._db_path = Path(db_path)
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the settings table."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageFailure(e) from e

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row is not None else default

    def set(self, key: str, value: str) -> None:
        """Store a value, trimmed of surrounding whitespace."""
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                    (key, value.strip()),
                )
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageFailure(e) from e

    def delete(self, key: str) -> bool:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            self._conn.commit()
        return cursor.rowcount > 0

    def all(self) -> dict[str, str]:
        with self._lock:
            cursor = self._conn.execute("SELECT key, value FROM settings ORDER BY key")
            return {row[0]: row[1] for row in cursor}

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
