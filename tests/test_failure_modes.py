"""Tests for failure modes.

Covers the scenarios that break the row/index/history agreement:
- Index write failing halfway through a unit of work
- History write failing during an update
- Stale or orphaned index entries discovered by a query
- Drift found by verify_index on open
- A repair that itself fails
"""

import logging

import pytest

from grimoire.errors import IndexDesync, StorageFailure
from grimoire.repository import Repository

from tests.conftest import prompt_fields


def _boom(*args, **kwargs):
    raise RuntimeError("simulated index failure")


class TestAtomicWrites:

    def test_index_failure_on_create_rolls_back(self, repo, monkeypatch):
        monkeypatch.setattr(repo._index, "index", _boom)
        with pytest.raises(StorageFailure) as exc_info:
            repo.create(prompt_fields())
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert repo.list() == []

    def test_index_failure_on_update_rolls_back(self, repo, monkeypatch):
        item = repo.create(prompt_fields(content="original"))
        monkeypatch.setattr(repo._index, "index", _boom)

        with pytest.raises(StorageFailure):
            repo.update(item.id, 1, {"content": "changed"})

        monkeypatch.undo()
        assert repo.get(item.id) == item
        assert repo.list_history(item.id) == []
        assert repo.query("original")[0].item_id == item.id

    def test_history_failure_on_update_rolls_back(self, repo, monkeypatch):
        item = repo.create(prompt_fields(content="original"))
        monkeypatch.setattr(repo._history, "record", _boom)

        with pytest.raises(StorageFailure):
            repo.update(item.id, 1, {"content": "changed"})

        assert repo.get(item.id).version == 1
        assert repo.query("changed") == []

    def test_index_failure_on_delete_keeps_item(self, repo, monkeypatch):
        item = repo.create(prompt_fields())
        repo.update(item.id, 1, {"content": "v2"})
        monkeypatch.setattr(repo._index, "remove", _boom)

        with pytest.raises(StorageFailure):
            repo.delete(item.id)

        assert repo.get(item.id).version == 2
        assert len(repo.list_history(item.id)) == 1

    def test_repository_usable_after_failure(self, repo, monkeypatch):
        monkeypatch.setattr(repo._index, "index", _boom)
        with pytest.raises(StorageFailure):
            repo.create(prompt_fields())
        monkeypatch.undo()
        item = repo.create(prompt_fields())
        assert repo.get(item.id).name == "foo"


class TestStaleIndex:

    def test_stale_entry_repaired_on_query(self, repo, caplog):
        item = repo.create(prompt_fields(name="p", content="real words"))
        repo._conn.execute(
            "UPDATE search_index SET terms = 'phantom' WHERE item_id = ? AND field = 'content'",
            (item.id,),
        )

        with caplog.at_level(logging.WARNING, logger="grimoire"):
            assert repo.query("phantom") == []
        assert "out of sync" in caplog.text
        assert repo.query("real")[0].item_id == item.id

    def test_orphaned_entry_removed_on_query(self, repo):
        repo._conn.execute(
            "INSERT INTO search_index (item_id, field, terms) VALUES (77, 'name', 'ghost')"
        )
        assert repo.query("ghost") == []
        assert 77 not in repo._index.indexed_ids()

    def test_failed_repair_raises_index_desync(self, repo, monkeypatch):
        item = repo.create(prompt_fields(name="p", content="real words"))
        repo._conn.execute(
            "UPDATE search_index SET terms = 'phantom' WHERE item_id = ? AND field = 'content'",
            (item.id,),
        )
        monkeypatch.setattr(repo._index, "index", _boom)

        with pytest.raises(IndexDesync) as exc_info:
            repo.query("phantom")
        assert exc_info.value.item_id == item.id


class TestVerifyIndex:

    def test_clean_index(self, repo):
        repo.create(prompt_fields())
        assert repo.verify_index() == []

    def test_repairs_missing_and_orphaned_entries(self, repo):
        item = repo.create(prompt_fields(name="indexed", content="body text"))
        repo._conn.execute("DELETE FROM search_index WHERE item_id = ?", (item.id,))
        repo._conn.execute(
            "INSERT INTO search_index (item_id, field, terms) VALUES (99, 'name', 'ghost')"
        )
        assert repo.query("body") == []

        assert repo.verify_index() == [item.id, 99]
        assert repo.query("body")[0].item_id == item.id
        assert repo.verify_index() == []

    def test_runs_on_open(self, db_path):
        with Repository(db_path) as repo:
            item = repo.create(prompt_fields(content="survives"))
            repo._conn.execute("DELETE FROM search_index")

        with Repository(db_path) as repo:
            assert repo.query("survives")[0].item_id == item.id

    def test_can_be_skipped_on_open(self, db_path):
        with Repository(db_path) as repo:
            repo.create(prompt_fields(content="survives"))
            repo._conn.execute("DELETE FROM search_index")

        with Repository(db_path, verify_index=False) as repo:
            assert repo.query("survives") == []


class TestStorageErrors:

    def test_unopenable_database(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        with pytest.raises(StorageFailure):
            Repository(blocker / "grimoire.db")

    def test_corrupt_database_file(self, tmp_path):
        db_path = tmp_path / "corrupt.db"
        db_path.write_bytes(b"this is not a sqlite database" * 100)
        with pytest.raises(StorageFailure):
            Repository(db_path, ops_log=False)
