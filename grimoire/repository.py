"""
Item repository: the only entry point for reading and changing items.

Every mutating operation runs as one unit of work: a single SQLite
``BEGIN IMMEDIATE`` transaction, under a process-wide re-entrant lock, that
covers the item row, its history entry and its search index entries. Either
all of them change or none do.

Example:
    with Repository(Path("~/grimoire.db").expanduser()) as repo:
        item = repo.create({"category": "prompt", "name": "review", "content": "..."})
        item = repo.update(item.id, item.version, {"content": "better"})
        hits = repo.query("review")
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

from .errors import (
    DuplicateName,
    GrimoireError,
    ImmutableField,
    IndexDesync,
    NotFound,
    StorageFailure,
    ValidationFailed,
    VersionConflict,
)
from .history import HistoryLedger
from .item_store import ItemStore
from .logging_config import configure_ops_log, remove_ops_log
from .search_index import SearchIndex, derive_terms
from .types import (
    Category,
    HistoryEntry,
    Item,
    SYSTEM_FIELDS,
    SearchHit,
    clean_fields,
    item_from_fields,
    normalize_name,
    utc_now,
)
from .validation import required_fields, validate

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


class Repository:
    """
    Transactional store of items with history and search.

    Open it explicitly (the constructor creates the schema) and close it
    when done; it is also a context manager. One instance may be shared
    between threads: operations are linearized.
    """

    def __init__(
        self,
        db_path: "str | Path",
        *,
        verify_index: bool = True,
        ops_log: bool = True,
    ) -> None:
        """
        Args:
            db_path: Path to the SQLite database file (created if missing)
            verify_index: Compare the search index with the item table on
                open and repair any drift
            ops_log: Attach the rotating operations log next to the database
        """
        self._db_path = Path(db_path)
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._ops_log_handler = None
        self._last_timestamp = ""

        self._open()
        if ops_log:
            self._ops_log_handler = configure_ops_log(self._db_path.parent)
        if verify_index:
            self.verify_index()

    def _open(self) -> None:
        """Open the connection and create the schema."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None gives us manual transaction control
            # so every unit of work is an explicit BEGIN IMMEDIATE ... COMMIT
            self._conn = sqlite3.connect(
                str(self._db_path), check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            # Wait up to 5 seconds for locks instead of failing immediately
            self._conn.execute("PRAGMA busy_timeout=5000")
        except (sqlite3.Error, OSError) as e:
            raise StorageFailure(e) from e

        with self._unit_of_work() as conn:
            ItemStore.create_schema(conn)
            HistoryLedger.create_schema(conn)
            SearchIndex.create_schema(conn)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            row = conn.execute("SELECT MAX(updated_at) FROM items").fetchone()
            self._last_timestamp = row[0] or ""

        self._items = ItemStore(self._conn)
        self._history = HistoryLedger(self._conn)
        self._index = SearchIndex(self._conn)

    @property
    def path(self) -> Path:
        return self._db_path

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageFailure(RuntimeError("repository is closed"))
        return self._conn

    @contextmanager
    def _unit_of_work(self) -> Iterator[sqlite3.Connection]:
        """
        Run the body as one atomic transaction.

        Domain errors roll back and propagate unchanged. Anything else
        (SQLite errors, failures while indexing) rolls back and surfaces
        as StorageFailure, so no partial write is ever visible.
        """
        with self._lock:
            conn = self._connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageFailure(e) from e
            try:
                yield conn
                conn.commit()
            except GrimoireError:
                self._rollback(conn)
                raise
            except Exception as e:
                self._rollback(conn)
                raise StorageFailure(e) from e
            except BaseException:
                self._rollback(conn)
                raise

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._connection()
            try:
                yield conn
            except sqlite3.Error as e:
                raise StorageFailure(e) from e

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        try:
            if conn.in_transaction:
                conn.rollback()
        except sqlite3.Error as e:
            logger.error("Rollback failed: %s", e)

    def _now(self) -> str:
        """Timestamp strictly later than any this repository has handed out."""
        ts = utc_now()
        if ts <= self._last_timestamp:
            last = datetime.strptime(self._last_timestamp, _TS_FORMAT)
            ts = (last + timedelta(microseconds=1)).strftime(_TS_FORMAT)
        self._last_timestamp = ts
        return ts

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def create(self, candidate: "Mapping[str, Any] | Item") -> Item:
        """
        Validate and store a new item.

        Args:
            candidate: Flat field mapping including ``category``, or an
                unsaved item value (its id, version and timestamps are ignored)

        Returns:
            The stored item: new id, version 1, created_at == updated_at

        Raises:
            ValidationFailed: The fields break the category's rules
            DuplicateName: A live item already has this normalized name
        """
        if isinstance(candidate, Item):
            candidate = candidate.to_fields()
        data = clean_fields(candidate, required_fields(candidate.get("category")))
        for name in SYSTEM_FIELDS:
            data.pop(name, None)

        violations = validate(data.get("category"), data)
        if violations:
            raise ValidationFailed(violations)
        category = Category.parse(data["category"])

        with self._unit_of_work():
            if self._items.find_by_name(data["name"]) is not None:
                raise DuplicateName(data["name"])
            now = self._now()
            item = item_from_fields(category, {
                **data, "version": 1, "created_at": now, "updated_at": now,
            })
            try:
                item_id = self._items.insert(item)
            except sqlite3.IntegrityError as e:
                if "name_key" in str(e):
                    raise DuplicateName(data["name"]) from e
                raise
            item = replace(item, id=item_id)
            self._index.index(item)

        logger.info("create id=%d category=%s name=%r", item.id, category, item.name)
        return item

    def update(self, id: int, base_version: int, patch: Mapping[str, Any]) -> Item:
        """
        Apply a partial change to an item the caller loaded at ``base_version``.

        Fields absent from ``patch`` keep their value; ``None`` clears an
        optional field. The pre-update state is appended to history.

        Raises:
            NotFound: No live item has this id
            VersionConflict: The item changed since ``base_version``
            ImmutableField: The patch changes category or a system field
            ValidationFailed: The merged item breaks the category's rules
            DuplicateName: The new name belongs to another live item
        """
        with self._unit_of_work():
            current = self._require(id)
            if current.version != base_version:
                raise VersionConflict(expected=base_version, actual=current.version)
            self._check_immutable(current, patch)

            merged = current.editable_fields()
            merged.update({k: v for k, v in patch.items() if k not in SYSTEM_FIELDS})
            merged["category"] = current.category.value
            merged = clean_fields(merged, required_fields(current.category))
            violations = validate(current.category, merged)
            if violations:
                raise ValidationFailed(violations)
            item = self._supersede(current, merged)

        logger.info("update id=%d version=%d", item.id, item.version)
        return item

    def restore(
        self,
        id: int,
        target_version: int,
        *,
        base_version: Optional[int] = None,
    ) -> Item:
        """
        Make the snapshot at ``target_version`` the current state.

        Behaves like an update whose patch replaces every field: the
        current state goes to history and the version moves forward, so
        restoring never reuses an old version number or rewrites history.

        Args:
            id: Item identifier
            target_version: A version present in the item's history
            base_version: Optional optimistic guard, as in update()

        Raises:
            NotFound: No such item, or no such version in its history
            VersionConflict: ``base_version`` given and stale
            DuplicateName: The snapshot's name now belongs to another item
        """
        with self._unit_of_work():
            current = self._require(id)
            if base_version is not None and current.version != base_version:
                raise VersionConflict(expected=base_version, actual=current.version)
            entry = self._history.get(id, target_version)

            merged = clean_fields(
                entry.to_item().editable_fields(), required_fields(current.category)
            )
            violations = validate(current.category, merged)
            if violations:
                raise ValidationFailed(violations)
            item = self._supersede(current, merged)

        logger.info(
            "restore id=%d from_version=%d version=%d", item.id, target_version, item.version
        )
        return item

    def delete(self, id: int) -> None:
        """
        Remove an item together with its history and index entries.

        Raises:
            NotFound: No live item has this id (deleting twice is an error)
        """
        with self._unit_of_work():
            if not self._items.delete(id):
                raise NotFound(id)
            purged = self._history.purge(id)
            self._index.remove(id)
        logger.info("delete id=%d history_entries=%d", id, purged)

    def _require(self, id: int) -> Item:
        item = self._items.get(id)
        if item is None:
            raise NotFound(id)
        return item

    @staticmethod
    def _check_immutable(current: Item, patch: Mapping[str, Any]) -> None:
        if "category" in patch and patch["category"] is not None:
            try:
                same = Category.parse(patch["category"]) == current.category
            except ValueError:
                same = False
            if not same:
                raise ImmutableField("category")
        for name in SYSTEM_FIELDS:
            if name in patch and patch[name] != getattr(current, name):
                raise ImmutableField(name)

    def _supersede(self, current: Item, merged: dict[str, Any]) -> Item:
        """Record ``current`` in history and write ``merged`` as the next version."""
        if normalize_name(merged["name"]) != normalize_name(current.name):
            other = self._items.find_by_name(merged["name"])
            if other is not None and other.id != current.id:
                raise DuplicateName(merged["name"])

        now = self._now()
        self._history.record(current, now)
        item = item_from_fields(current.category, {
            **merged,
            "id": current.id,
            "version": current.version + 1,
            "created_at": current.created_at,
            "updated_at": now,
        })
        self._items.replace(item)
        self._index.index(item)
        return item

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: int) -> Item:
        """
        Retrieve an item by id.

        Raises:
            NotFound: No live item has this id
        """
        with self._reading():
            return self._require(id)

    def list(
        self,
        category: "Category | str | None" = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> "list[Item]":
        """Items ordered by updated_at, most recent first."""
        with self._reading():
            return self._items.list(category=category, tag=tag, limit=limit)

    def query(
        self,
        term: str,
        category: "Category | str | None" = None,
        tag: Optional[str] = None,
    ) -> "list[SearchHit]":
        """
        Search name, description, content and tags.

        Returns hits ranked exact name > name > tag > description/content,
        then most recently updated. An empty term returns no hits.

        Hits that point at a missing item or at stale terms are repaired
        before results are returned.

        Raises:
            IndexDesync: A stale entry was found and could not be repaired
        """
        with self._reading():
            hits = self._index.query(term, category=category, tag=tag)
            stale = [hit.item_id for hit in hits if self._is_stale(hit.item_id)]
            if not stale:
                return hits
        for item_id in stale:
            self.repair_index(item_id)
        with self._reading():
            return self._index.query(term, category=category, tag=tag)

    def _is_stale(self, item_id: int) -> bool:
        item = self._items.get(item_id)
        if item is None:
            return True
        return self._index.entries(item_id) != derive_terms(item)

    def list_history(self, id: int) -> "list[HistoryEntry]":
        """
        History entries of a live item, newest first.

        Raises:
            NotFound: No live item has this id
        """
        with self._reading():
            self._require(id)
            return self._history.list(id)

    def get_history(self, id: int, version: int) -> HistoryEntry:
        """
        One history entry.

        Raises:
            NotFound: No such item, or no entry for that version
        """
        with self._reading():
            self._require(id)
            return self._history.get(id, version)

    def count_by_category(self) -> "dict[Category, int]":
        """Number of items per category (every category present)."""
        with self._reading():
            return self._items.count_by_category()

    def tag_counts(self) -> "list[tuple[str, int]]":
        """Tags in use with their item counts, most used first."""
        with self._reading():
            return self._items.tag_counts()

    # -------------------------------------------------------------------------
    # Index maintenance
    # -------------------------------------------------------------------------

    def repair_index(self, item_id: int) -> None:
        """
        Re-derive one item's index entries from its row (or drop them if
        the row is gone).

        Raises:
            IndexDesync: The repair itself failed
        """
        logger.warning("Search index out of sync for item %d, re-indexing", item_id)
        try:
            with self._unit_of_work():
                item = self._items.get(item_id)
                if item is None:
                    self._index.remove(item_id)
                else:
                    self._index.index(item)
        except StorageFailure as e:
            raise IndexDesync(item_id) from e

    def verify_index(self) -> "list[int]":
        """
        Compare every index entry with the item table and repair drift.

        Returns:
            Ids that were re-indexed or whose orphaned entries were removed
        """
        with self._unit_of_work():
            items = self._items.list()
            stale = self._index.stale_ids(items)
            by_id = {item.id: item for item in items}
            for item_id in stale:
                item = by_id.get(item_id)
                if item is None:
                    self._index.remove(item_id)
                else:
                    self._index.index(item)
        for item_id in stale:
            logger.warning("Repaired search index entry for item %d", item_id)
        return stale

    def rebuild_index(self) -> int:
        """Drop and re-derive the whole search index. Returns items indexed."""
        with self._unit_of_work():
            self._index.clear()
            items = self._items.list()
            for item in items:
                self._index.index(item)
        logger.info("rebuild_index items=%d", len(items))
        return len(items)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection and detach the operations log."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            if self._ops_log_handler is not None:
                remove_ops_log(self._ops_log_handler)
                self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        # Attributes may be missing if __init__ failed early
        if getattr(self, "_lock", None) is not None:
            self.close()
