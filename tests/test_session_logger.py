import os
import time
import numpy as np
from app.adapters.events.session_logger import NullEventSink, ProcessingSession
from conftest import FakeHub


def make_session(tmp_path, hub=None):
    return ProcessingSession("sess-1", str(tmp_path / "processing"), hub)


def test_logs_are_recorded_and_counted(tmp_path):
    session = make_session(tmp_path)
    session.info("starting")
    session.success("done")
    session.warning("hmm")
    session.error("boom")

    logs = session.get_logs()
    assert [entry["type"] for entry in logs] == ["info", "success", "warning", "error"]
    assert all(entry["sessionId"] == "sess-1" for entry in logs)
    assert session.get_stats()["logsByType"] == {"info": 1, "success": 1, "warning": 1, "error": 1}


def test_progress(tmp_path):
    hub = FakeHub()
    session = make_session(tmp_path, hub)
    session.progress("OCR", 1, 4, "variants")

    entry = session.get_logs()[-1]
    assert entry["percentage"] == 25
    assert entry["operation"] == "OCR"
    assert ("sess-1", {
        "type": "progress",
        "sessionId": "sess-1",
        "operation": "OCR",
        "current": 1,
        "total": 4,
        "percentage": 25,
        "unit": "variants",
    }) in hub.messages


def test_save_image_writes_artifact(tmp_path):
    hub = FakeHub()
    session = make_session(tmp_path, hub)
    saved = session.save_image(np.zeros((20, 30), dtype=np.uint8), "full_focused", "Focused version")

    assert saved is not None
    assert saved.filename.startswith("sess-1_full_focused_")
    assert saved.url == f"/processing/{saved.filename}"
    assert os.path.isfile(tmp_path / "processing" / saved.filename)
    assert session.get_stats()["imagesByStep"] == {"full_focused": 1}
    assert any(data["type"] == "processed_image" for _, data in hub.messages)


def test_save_image_stays_in_output_dir(tmp_path):
    out = tmp_path / "processing"
    session = ProcessingSession("../escaped", str(out))
    saved = session.save_image(np.zeros((20, 30), dtype=np.uint8), "original", "Original")

    assert saved is not None
    assert os.path.isfile(out / saved.filename)
    assert [p.name for p in tmp_path.iterdir()] == ["processing"]


def test_save_image_failure_is_logged(tmp_path):
    session = make_session(tmp_path)
    assert session.save_image(np.zeros((0, 0), dtype=np.uint8), "original", "Empty") is None
    assert session.get_logs()[-1]["type"] == "error"
    assert session.get_processed_images() == []


def test_finish_broadcasts_summary(tmp_path):
    hub = FakeHub()
    session = make_session(tmp_path, hub)
    session.info("hello")
    session.finish()

    session_id, summary = hub.messages[-1]
    assert session_id == "sess-1"
    assert summary["type"] == "session_complete"
    assert summary["totalLogs"] == 2


def test_cleanup_old_images(tmp_path):
    old = tmp_path / "old.jpg"
    new = tmp_path / "new.jpg"
    old.write_bytes(b"x")
    new.write_bytes(b"x")
    past = time.time() - 7200
    os.utime(old, (past, past))

    assert ProcessingSession.cleanup_old_images(str(tmp_path), max_age_s=3600) == 1
    assert not old.exists()
    assert new.exists()


def test_cleanup_missing_directory(tmp_path):
    assert ProcessingSession.cleanup_old_images(str(tmp_path / "missing")) == 0


def test_null_sink():
    sink = NullEventSink()
    sink.info("ignored")
    sink.progress("OCR", 1, 2)
    assert sink.save_image(np.zeros((5, 5), dtype=np.uint8), "x", "y") is None
