"""Tests for snapshot store module."""

import threading

import pytest

from src.filewatcher.exceptions import SnapshotStoreError
from src.filewatcher.models import SnapshotEntry
from src.filewatcher.snapshot_store import SnapshotStore


def _entries(*paths):
    return [SnapshotEntry(p, p.endswith("/dir"), 100 + i) for i, p in enumerate(paths)]


class TestSnapshotStore:
    """Tests for SnapshotStore class."""

    def test_create_store(self, tmp_path):
        db_path = tmp_path / "snap.db"
        store = SnapshotStore(db_path)
        assert db_path.exists()
        store.close()

    def test_unknown_project(self, tmp_path):
        with SnapshotStore(tmp_path / "snap.db") as store:
            assert store.previous("missing") is None

    def test_replace_and_load(self, tmp_path):
        with SnapshotStore(tmp_path / "snap.db") as store:
            store.replace("p1", _entries("/a", "/dir"), watermark_ms=500)

            snapshot = store.previous("p1")
            assert snapshot.watermark_ms == 500
            assert snapshot.root_exists is True
            assert set(snapshot.entries) == {"/a", "/dir"}
            assert snapshot.entries["/dir"].is_directory is True
            assert snapshot.entries["/a"].mod_time_ms == 100

    def test_replace_is_wholesale(self, tmp_path):
        with SnapshotStore(tmp_path / "snap.db") as store:
            store.replace("p1", _entries("/a", "/b"), watermark_ms=1)
            store.replace("p1", _entries("/c"), watermark_ms=2, root_exists=False)

            snapshot = store.previous("p1")
            assert set(snapshot.entries) == {"/c"}
            assert snapshot.watermark_ms == 2
            assert snapshot.root_exists is False

    def test_empty_snapshot_is_not_missing(self, tmp_path):
        with SnapshotStore(tmp_path / "snap.db") as store:
            store.replace("p1", [], watermark_ms=7)
            snapshot = store.previous("p1")
            assert snapshot is not None
            assert snapshot.entries == {}

    def test_projects_are_isolated(self, tmp_path):
        with SnapshotStore(tmp_path / "snap.db") as store:
            store.replace("p1", _entries("/a"), watermark_ms=1)
            store.replace("p2", _entries("/b"), watermark_ms=2)
            store.replace("p1", _entries("/c"), watermark_ms=3)

            assert set(store.previous("p2").entries) == {"/b"}
            assert store.project_ids() == ["p1", "p2"]

    def test_delete(self, tmp_path):
        with SnapshotStore(tmp_path / "snap.db") as store:
            store.replace("p1", _entries("/a"), watermark_ms=1)
            assert store.delete("p1") is True
            assert store.delete("p1") is False
            assert store.previous("p1") is None
            assert store.project_ids() == []

    def test_persistence(self, tmp_path):
        db_path = tmp_path / "snap.db"
        with SnapshotStore(db_path) as store:
            store.replace("p1", _entries("/a", "/b"), watermark_ms=42)

        with SnapshotStore(db_path) as store:
            snapshot = store.previous("p1")
            assert set(snapshot.entries) == {"/a", "/b"}
            assert snapshot.watermark_ms == 42

    def test_closed_store_raises(self, tmp_path):
        store = SnapshotStore(tmp_path / "snap.db")
        store.close()
        with pytest.raises(SnapshotStoreError):
            store.previous("p1")
        with pytest.raises(SnapshotStoreError):
            store.replace("p1", [], watermark_ms=1)

    def test_concurrent_projects(self, tmp_path):
        store = SnapshotStore(tmp_path / "snap.db")
        errors = []

        def worker(project_id):
            try:
                for i in range(20):
                    store.replace(project_id, _entries(f"/{project_id}-{i}"), watermark_ms=i)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(f"p{n}",)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        for n in range(4):
            snapshot = store.previous(f"p{n}")
            assert set(snapshot.entries) == {f"/p{n}-19"}
            assert snapshot.watermark_ms == 19
        store.close()
