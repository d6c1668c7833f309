"""
Snapshot store tests.
"""

import pytest

from campus_pulse.ingestion.snapshot_store import SnapshotStore, StoreError


class TestSnapshotStore:
    def test_load_before_save(self, tmp_path):
        assert SnapshotStore(tmp_path / "snapshot.json").load() is None

    def test_round_trip_document(self, tmp_path):
        store = SnapshotStore(tmp_path / "state" / "snapshot.json")
        store.save({"campuses": []}, record_count=3)
        document = store.load()
        assert document["data"] == {"campuses": []}
        assert document["recordCount"] == 3
        assert document["lastUpdated"]

    def test_latest_save_wins(self, tmp_path):
        store = SnapshotStore(tmp_path / "snapshot.json")
        store.save({"version": 1}, record_count=1)
        store.save({"version": 2}, record_count=2)
        assert store.load()["data"] == {"version": 2}

    def test_corrupt_snapshot_raises(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text("{broken")
        with pytest.raises(StoreError):
            SnapshotStore(path).load()

    def test_unserializable_payload_raises(self, tmp_path):
        with pytest.raises(StoreError):
            SnapshotStore(tmp_path / "snapshot.json").save({"bad": object()}, record_count=1)
