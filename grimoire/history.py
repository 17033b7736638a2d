"""
Append-only version history for items.

Each entry is a full snapshot of an item as it was before an update or
restore replaced it. Entries are never edited; they are purged only
together with their item. Retention is unbounded.

Like the search index, the ledger writes on the repository's connection and
leaves transaction control to the caller.
"""

from __future__ import annotations

import json
import sqlite3

from .errors import NotFound
from .types import HistoryEntry, Item


class HistoryLedger:
    """SQLite-backed history in the ``item_history`` table."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    @staticmethod
    def create_schema(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS item_history (
                item_id INTEGER NOT NULL,
                version INTEGER NOT NULL,
                snapshot TEXT NOT NULL,
                recorded_at TEXT NOT NULL,
                PRIMARY KEY (item_id, version)
            )
        """)

    def record(self, item: Item, recorded_at: str) -> HistoryEntry:
        """
        Append a snapshot of ``item`` at its current version.

        The (item_id, version) primary key makes a second snapshot of the
        same version an IntegrityError rather than a silent overwrite.
        """
        snapshot = item.to_fields()
        self._conn.execute("""
            INSERT INTO item_history (item_id, version, snapshot, recorded_at)
            VALUES (?, ?, ?, ?)
        """, (item.id, item.version, json.dumps(snapshot, ensure_ascii=False), recorded_at))
        return HistoryEntry(
            item_id=item.id,
            version=item.version,
            snapshot=snapshot,
            recorded_at=recorded_at,
        )

    def list(self, item_id: int) -> list[HistoryEntry]:
        """All entries for an item, newest first."""
        cursor = self._conn.execute("""
            SELECT item_id, version, snapshot, recorded_at
            FROM item_history
            WHERE item_id = ?
            ORDER BY version DESC
        """, (item_id,))
        return [self._to_entry(row) for row in cursor]

    def get(self, item_id: int, version: int) -> HistoryEntry:
        cursor = self._conn.execute("""
            SELECT item_id, version, snapshot, recorded_at
            FROM item_history
            WHERE item_id = ? AND version = ?
        """, (item_id, version))
        row = cursor.fetchone()
        if row is None:
            raise NotFound(item_id, version)
        return self._to_entry(row)

    def purge(self, item_id: int) -> int:
        """Remove every entry for an item. Returns the number removed."""
        cursor = self._conn.execute(
            "DELETE FROM item_history WHERE item_id = ?", (item_id,)
        )
        return cursor.rowcount

    @staticmethod
    def _to_entry(row) -> HistoryEntry:
        return HistoryEntry(
            item_id=row[0],
            version=row[1],
            snapshot=json.loads(row[2]),
            recorded_at=row[3],
        )
