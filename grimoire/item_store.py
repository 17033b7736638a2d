"""
Row mapping for the ``items`` table.

The items table is the source of truth for:
- Item identity (integer id, never reused)
- Name and its uniqueness key
- Category and the category-specific attributes
- Version counter and timestamps

ItemStore only reads and writes rows; validation, history and indexing
are the repository's job.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from .types import Category, Item, item_from_fields, normalize_name, normalize_tags

_COLUMNS = (
    "id", "name", "category", "description", "content",
    "model", "tool_list", "allowed_tools", "argument_hint",
    "permission_mode", "skill_refs", "tags",
    "version", "created_at", "updated_at",
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM items"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards in ``value`` for use with ``ESCAPE '\\'``."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def row_to_item(row: sqlite3.Row) -> Item:
    """Convert an items row to its category's item type."""
    data = {name: row[name] for name in _COLUMNS}
    category = Category.parse(data.pop("category"))
    data["tags"] = normalize_tags(data["tags"])
    return item_from_fields(category, data)


class ItemStore:
    """Reads and writes item rows on a shared connection (no commits)."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    @staticmethod
    def create_schema(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                name_key TEXT NOT NULL UNIQUE,
                category TEXT NOT NULL
                    CHECK (category IN ('prompt', 'agent', 'skill', 'command')),
                description TEXT,
                content TEXT NOT NULL,
                model TEXT,
                tool_list TEXT,
                allowed_tools TEXT,
                argument_hint TEXT,
                permission_mode TEXT,
                skill_refs TEXT,
                tags TEXT NOT NULL DEFAULT '',
                version INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_items_category
            ON items(category)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_items_updated
            ON items(updated_at DESC)
        """)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def insert(self, item: Item) -> int:
        """Insert a new row and return its assigned id."""
        cursor = self._conn.execute("""
            INSERT INTO items (name, name_key, category, description, content,
                               model, tool_list, allowed_tools, argument_hint,
                               permission_mode, skill_refs, tags,
                               version, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, self._values(item) + (item.version, item.created_at, item.updated_at))
        return cursor.lastrowid

    def replace(self, item: Item) -> None:
        """Overwrite every mutable column of an existing row."""
        self._conn.execute("""
            UPDATE items
            SET name = ?, name_key = ?, category = ?, description = ?, content = ?,
                model = ?, tool_list = ?, allowed_tools = ?, argument_hint = ?,
                permission_mode = ?, skill_refs = ?, tags = ?,
                version = ?, updated_at = ?
            WHERE id = ?
        """, self._values(item) + (item.version, item.updated_at, item.id))

    def delete(self, id: int) -> bool:
        cursor = self._conn.execute("DELETE FROM items WHERE id = ?", (id,))
        return cursor.rowcount > 0

    @staticmethod
    def _values(item: Item) -> tuple:
        return (
            item.name,
            normalize_name(item.name),
            item.category.value,
            item.description,
            item.content,
            getattr(item, "model", None),
            getattr(item, "tool_list", None),
            getattr(item, "allowed_tools", None),
            getattr(item, "argument_hint", None),
            getattr(item, "permission_mode", None),
            getattr(item, "skill_refs", None),
            item.tags_text,
        )

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: int) -> Optional[Item]:
        row = self._conn.execute(f"{_SELECT} WHERE id = ?", (id,)).fetchone()
        return row_to_item(row) if row is not None else None

    def find_by_name(self, name: str) -> Optional[Item]:
        """Live item whose normalized name equals ``name``'s."""
        row = self._conn.execute(
            f"{_SELECT} WHERE name_key = ?", (normalize_name(name),)
        ).fetchone()
        return row_to_item(row) if row is not None else None

    def list(
        self,
        category: Optional[Category] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Item]:
        """Items newest-updated first, optionally filtered."""
        clauses = []
        params: list = []
        if category is not None:
            clauses.append("category = ?")
            params.append(Category.parse(category).value)
        if tag is not None:
            clauses.append(r"(',' || tags || ',') LIKE ? ESCAPE '\'")
            params.append(f"%,{escape_like(tag.strip().casefold())},%")
        sql = _SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY updated_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [row_to_item(row) for row in self._conn.execute(sql, params)]

    def count_by_category(self) -> dict[Category, int]:
        counts = {c: 0 for c in Category}
        cursor = self._conn.execute(
            "SELECT category, COUNT(*) FROM items GROUP BY category"
        )
        for category, count in cursor:
            counts[Category.parse(category)] = count
        return counts

    def tag_counts(self) -> list[tuple[str, int]]:
        """(tag, number of items) sorted by count descending, then tag."""
        counts: dict[str, int] = {}
        for (tags,) in self._conn.execute("SELECT tags FROM items WHERE tags != ''"):
            for tag in normalize_tags(tags):
                counts[tag] = counts.get(tag, 0) + 1
        return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
