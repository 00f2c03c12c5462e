import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from activity import MAX_RECENT, ActivityReporter


def _read(tmp_path, name="test-frame"):
    return json.loads((tmp_path / f"{name}.json").read_text())


def test_creates_activity_file(tmp_path):
    ActivityReporter("test-frame", activity_dir=tmp_path)
    data = _read(tmp_path)
    assert data["name"] == "test-frame"
    assert data["state"] == "idle"
    assert data["recent"] == []


def test_no_file_without_directory(tmp_path):
    reporter = ActivityReporter("test-frame")
    with reporter.report("Indexing [full]"):
        reporter.set_progress(batches=1)
    assert reporter.snapshot()["recent"][0]["status"] == "ok"
    assert list(tmp_path.iterdir()) == []


def test_report_sets_busy_then_idle(tmp_path):
    reporter = ActivityReporter("test-frame", activity_dir=tmp_path)

    with reporter.report("Indexing [defaults]"):
        data = _read(tmp_path)
        assert data["state"] == "busy"
        assert data["operation"] == "Indexing [defaults]"
        assert data["started_at"] is not None

    data = _read(tmp_path)
    assert data["state"] == "idle"
    assert data["operation"] is None


def test_recent_entries_newest_first(tmp_path):
    reporter = ActivityReporter("test-frame", activity_dir=tmp_path)
    with reporter.report("Op 1"):
        pass
    with reporter.report("Op 2"):
        pass

    recent = _read(tmp_path)["recent"]
    assert [r["operation"] for r in recent] == ["Op 2", "Op 1"]
    assert recent[0]["status"] == "ok"
    assert recent[0]["duration_s"] >= 0


def test_recent_capped_at_max(tmp_path):
    reporter = ActivityReporter("test-frame", activity_dir=tmp_path)
    for i in range(MAX_RECENT + 5):
        with reporter.report(f"Op {i}"):
            pass
    recent = _read(tmp_path)["recent"]
    assert len(recent) == MAX_RECENT
    assert recent[0]["operation"] == f"Op {MAX_RECENT + 4}"


def test_failed_operation_is_recorded_and_reraised(tmp_path):
    reporter = ActivityReporter("test-frame", activity_dir=tmp_path)
    with pytest.raises(RuntimeError):
        with reporter.report("Indexing [full]"):
            raise RuntimeError("worker died")

    data = _read(tmp_path)
    assert data["state"] == "idle"
    assert data["recent"][0]["status"] == "failed"


def test_progress_counters(tmp_path):
    reporter = ActivityReporter("test-frame", activity_dir=tmp_path)

    with reporter.report("Indexing [full]"):
        reporter.set_progress(batches=1, received=50, added=48)
        reporter.set_progress(batches=2, received=100, added=97)
        assert _read(tmp_path)["progress"] == {"batches": 2, "received": 100, "added": 97}

    data = _read(tmp_path)
    assert data["progress"] is None
    assert data["recent"][0]["progress"] == {"batches": 2, "received": 100, "added": 97}


def test_cleanup(tmp_path):
    reporter = ActivityReporter("test-frame", activity_dir=tmp_path)
    f = tmp_path / "test-frame.json"
    assert f.exists()
    reporter.cleanup()
    assert not f.exists()
    reporter.cleanup()
