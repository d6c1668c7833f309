"""
Alert Deduplicator Test Suite
"""

import json
import threading

import pytest

from campus_pulse.ingestion.alert_log import AlertLog, AlertLogError, alert_fingerprint
from campus_pulse.ingestion.settings import ALERT_LOG_KEY


class TestFingerprint:
    def test_lowercased_and_whitespace_removed(self):
        fp = alert_fingerprint("Pune", "Urgent Campus Issue", "Water Leak in\n dorm")
        assert fp == "Pune-Urgent Campus Issue-waterleakindorm"

    def test_content_truncated_to_fifty_characters(self):
        content = "a" * 80
        fp = alert_fingerprint("Pune", "Escalation Required", content)
        assert fp.endswith("-" + "a" * 50)

    def test_shared_prefix_collides(self):
        prefix = "x" * 50
        assert alert_fingerprint("Pune", "T", prefix + "one") == alert_fingerprint("Pune", "T", prefix + "two")

    def test_campus_and_type_distinguish(self):
        assert alert_fingerprint("Pune", "A", "leak") != alert_fingerprint("Raipur", "A", "leak")
        assert alert_fingerprint("Pune", "A", "leak") != alert_fingerprint("Pune", "B", "leak")


class TestInMemoryLog:
    def test_new_fingerprint_notifies(self):
        assert AlertLog().should_notify("fp-1")

    def test_recorded_fingerprint_suppressed(self):
        log = AlertLog()
        log.record_notified("fp-1")
        assert not log.should_notify("fp-1")

    def test_fifo_eviction(self):
        log = AlertLog(limit=3)
        for i in range(4):
            log.record_notified(f"fp-{i}")
        assert log.entries() == ["fp-1", "fp-2", "fp-3"]
        assert log.should_notify("fp-0")

    def test_eviction_after_hundred_newer(self):
        log = AlertLog()
        log.record_notified("old")
        for i in range(100):
            log.record_notified(f"new-{i}")
        assert log.should_notify("old")
        assert len(log.entries()) == 100

    def test_clear(self):
        log = AlertLog()
        log.record_notified("fp-1")
        log.clear()
        assert log.entries() == []

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            AlertLog(limit=0)


class TestPersistedLog:
    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "alerts.json"
        AlertLog(path).record_notified("fp-1")
        assert not AlertLog(path).should_notify("fp-1")

    def test_document_shape(self, tmp_path):
        path = tmp_path / "alerts.json"
        AlertLog(path).record_notified("fp-1")
        assert json.loads(path.read_text()) == {ALERT_LOG_KEY: ["fp-1"]}

    def test_other_keys_preserved(self, tmp_path):
        path = tmp_path / "alerts.json"
        path.write_text(json.dumps({"OTHER": 1}))
        AlertLog(path).record_notified("fp-1")
        document = json.loads(path.read_text())
        assert document["OTHER"] == 1
        assert document[ALERT_LOG_KEY] == ["fp-1"]

    def test_missing_file_is_empty(self, tmp_path):
        assert AlertLog(tmp_path / "none.json").entries() == []

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "alerts.json"
        path.write_text("{not json")
        with pytest.raises(AlertLogError):
            AlertLog(path).should_notify("fp-1")

    def test_wrong_shape_raises(self, tmp_path):
        path = tmp_path / "alerts.json"
        path.write_text(json.dumps({ALERT_LOG_KEY: "fp-1"}))
        with pytest.raises(AlertLogError):
            AlertLog(path).entries()


class TestTryClaim:
    def test_claim_once(self):
        log = AlertLog()
        assert log.try_claim("fp-1")
        assert not log.try_claim("fp-1")

    def test_concurrent_claims_single_winner(self, tmp_path):
        log = AlertLog(tmp_path / "alerts.json")
        results = []
        threads = [threading.Thread(target=lambda: results.append(log.try_claim("fp-1"))) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1
        assert log.entries() == ["fp-1"]

    def test_separate_instances_share_lock(self, tmp_path):
        path = tmp_path / "alerts.json"
        assert AlertLog(path)._lock is AlertLog(tmp_path / "." / "alerts.json")._lock
        assert AlertLog(path)._lock is not AlertLog(tmp_path / "other.json")._lock

    def test_concurrent_claims_across_instances(self, tmp_path):
        path = tmp_path / "alerts.json"
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(AlertLog(path).try_claim("fp-1")))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1
        assert AlertLog(path).entries() == ["fp-1"]


class TestBoundedLog:
    def test_hundred_fifty_records_keep_latest_hundred(self, tmp_path):
        log = AlertLog(tmp_path / "alerts.json")
        for i in range(150):
            log.record_notified(f"fp-{i}")
        entries = AlertLog(tmp_path / "alerts.json").entries()
        assert entries == [f"fp-{i}" for i in range(50, 150)]
