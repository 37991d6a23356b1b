"""Tests for the SQLite store: lifecycle, schema, transactions."""

import sqlite3
import threading

import pytest

from scope.errors import IOFailure, StoreNotInitialized
from scope.store import Store


class TestLifecycle:

    def test_handle_before_init_raises(self, tmp_path):
        store = Store(tmp_path / "scope.db")
        assert not store.initialized
        with pytest.raises(StoreNotInitialized):
            store.handle()

    def test_init_creates_directory_and_file(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "scope.db"
        store = Store(db_path)
        store.init()
        try:
            assert db_path.exists()
            assert store.initialized
        finally:
            store.close()

    def test_init_is_idempotent(self, tmp_path):
        store = Store(tmp_path / "scope.db")
        first = store.init()
        second = store.init()
        assert first is second
        store.close()

    def test_concurrent_init_yields_one_connection(self, tmp_path):
        store = Store(tmp_path / "scope.db")
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(store.init())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 8
        assert all(conn is results[0] for conn in results)
        store.close()

    def test_close_without_init_is_noop(self, tmp_path):
        store = Store(tmp_path / "scope.db")
        store.close()
        store.close()
        assert not store.initialized

    def test_reinit_after_close(self, tmp_path):
        store = Store(tmp_path / "scope.db")
        store.init()
        store.close()
        with pytest.raises(StoreNotInitialized):
            store.handle()
        store.init()
        assert store.initialized
        store.close()

    def test_default_path_uses_config_dir(self, isolated_config):
        store = Store()
        assert store.path == isolated_config / "scope.db"
        store.init()
        try:
            assert (isolated_config / "scope.db").exists()
        finally:
            store.close()

    def test_unopenable_database_raises_io_failure(self, tmp_path):
        # A directory where the database file should be
        db_path = tmp_path / "scope.db"
        db_path.mkdir()
        store = Store(db_path)
        with pytest.raises(IOFailure):
            store.init()
        assert not store.initialized

    def test_uncreatable_directory_raises_io_failure(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store = Store(blocker / "scope.db")
        with pytest.raises(IOFailure):
            store.init()


class TestSchema:

    def test_tables_and_indexes_exist(self, store):
        conn = store.handle()
        names = {row[0] for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type IN ('table', 'index')"
        )}
        assert {"folders", "tags", "folder_tags"} <= names
        assert {"idx_folder_tags_tag", "idx_folder_tags_folder"} <= names

    def test_schema_survives_reopen(self, tmp_path):
        db_path = tmp_path / "scope.db"
        with Store(db_path) as store:
            store.handle().execute(
                "INSERT INTO tags (name, created_at) VALUES ('work', 1)"
            )
        with Store(db_path) as store:
            row = store.handle().execute("SELECT name FROM tags").fetchone()
            assert row["name"] == "work"

    def test_foreign_keys_enabled(self, store):
        assert store.handle().execute("PRAGMA foreign_keys").fetchone()[0] == 1


class TestTransactions:

    def test_commit_on_success(self, store):
        with store.transaction("insert tag") as conn:
            conn.execute("INSERT INTO tags (name, created_at) VALUES ('a', 1)")
        count = store.handle().execute("SELECT COUNT(*) FROM tags").fetchone()[0]
        assert count == 1

    def test_rollback_on_exception(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction("insert tag") as conn:
                conn.execute("INSERT INTO tags (name, created_at) VALUES ('a', 1)")
                raise RuntimeError("boom")
        count = store.handle().execute("SELECT COUNT(*) FROM tags").fetchone()[0]
        assert count == 0

    def test_sqlite_error_becomes_io_failure(self, store):
        with pytest.raises(IOFailure) as exc_info:
            with store.transaction("insert tag") as conn:
                conn.execute("INSERT INTO tags (name, created_at) VALUES ('a', 1)")
                conn.execute("INSERT INTO tags (name, created_at) VALUES ('a', 2)")
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
        assert "insert tag" in str(exc_info.value)
        count = store.handle().execute("SELECT COUNT(*) FROM tags").fetchone()[0]
        assert count == 0

    def test_reading_translates_errors(self, store):
        with pytest.raises(IOFailure):
            with store.reading("query") as conn:
                conn.execute("SELECT * FROM no_such_table")

    def test_transaction_before_init_raises(self, tmp_path):
        store = Store(tmp_path / "scope.db")
        with pytest.raises(StoreNotInitialized):
            with store.transaction("anything"):
                pass
