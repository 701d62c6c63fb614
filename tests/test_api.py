import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient
from app.adapters.events.websocket_hub import WebSocketHub
from app.api import routers
from app.core.config import settings
from app.domain.analyzer import PlateAnalyzer
from app.main import app
from conftest import FakeDetector, FakeOcr

SESSION_ID = "3f2b8c1e-6d4a-4f7e-9b0c-2a1d5e8f7c63"


@pytest.fixture
def hub():
    return WebSocketHub()


@pytest.fixture
def client(tmp_path, monkeypatch, vehicle, hub):
    monkeypatch.setattr(settings, "processing_dir", str(tmp_path / "processing"))
    monkeypatch.setattr(settings, "gallery_dir", str(tmp_path / "gallery"))

    analyzer = PlateAnalyzer(FakeDetector([vehicle]), FakeOcr("NCM-27-04", 88.0), settings)
    app.dependency_overrides[routers.get_analyzer] = lambda: analyzer
    app.dependency_overrides[routers.get_hub] = lambda: hub
    yield TestClient(app)
    app.dependency_overrides.clear()


def png_bytes(img):
    ok, buf = cv2.imencode(".png", img)
    assert ok
    return buf.tobytes()


class TestAnalyze:
    def test_reads_plate(self, client, car_image):
        res = client.post(
            "/api/analyze-plate",
            files={"image": ("car.png", png_bytes(car_image), "image/png")},
            data={"session_id": SESSION_ID},
        )
        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        assert body["sessionId"] == SESSION_ID
        assert body["hasVehicle"] is True
        assert body["hasPlate"] is True
        assert body["plateText"] == "NCM-27-04"
        assert body["processingMethod"] == "focused"
        assert body["logs"]
        assert body["processedImages"]
        assert body["stats"]["sessionId"] == SESSION_ID

    def test_artifacts_are_served(self, client, car_image):
        body = client.post(
            "/api/analyze-plate",
            files={"image": ("car.png", png_bytes(car_image), "image/png")},
        ).json()

        url = body["processedImages"][0]["url"]
        res = client.get(url)
        assert res.status_code == 200
        assert res.headers["content-type"] == "image/jpeg"

        viewer = client.get("/debug/viewer")
        assert viewer.status_code == 200
        assert body["sessionId"] in viewer.text

    @pytest.mark.parametrize("session_id", ["../escaped", "abc", "<img src=x onerror=alert(1)>"])
    def test_rejects_non_uuid_session_id(self, client, car_image, tmp_path, session_id):
        res = client.post(
            "/api/analyze-plate",
            files={"image": ("car.png", png_bytes(car_image), "image/png")},
            data={"session_id": session_id},
        )
        assert res.status_code == 400
        assert sorted(p.name for p in tmp_path.iterdir() if p.is_file()) == []
        assert not (tmp_path / "processing").exists()

    def test_session_id_is_canonicalized(self, client, car_image):
        body = client.post(
            "/api/analyze-plate",
            files={"image": ("car.png", png_bytes(car_image), "image/png")},
            data={"session_id": SESSION_ID.upper()},
        ).json()
        assert body["sessionId"] == SESSION_ID

    def test_viewer_escapes_artifact_names(self, client, tmp_path):
        processing = tmp_path / "processing"
        processing.mkdir()
        (processing / "<b>s1_<i>step_1.jpg").write_bytes(b"jpg")

        page = client.get("/debug/viewer").text
        assert "<b>" not in page
        assert "<i>" not in page
        assert "&lt;b&gt;s1" in page
        assert "&lt;i&gt;step" in page

    def test_unsupported_type(self, client):
        res = client.post("/api/analyze-plate", files={"image": ("a.txt", b"hello", "text/plain")})
        assert res.status_code == 415

    def test_empty_file(self, client):
        res = client.post("/api/analyze-plate", files={"image": ("a.jpg", b"", "image/jpeg")})
        assert res.status_code == 400

    def test_undecodable_image(self, client):
        res = client.post("/api/analyze-plate", files={"image": ("a.jpg", b"not an image", "image/jpeg")})
        assert res.status_code == 400

    def test_too_large(self, client, car_image, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 10)
        res = client.post(
            "/api/analyze-plate",
            files={"image": ("car.png", png_bytes(car_image), "image/png")},
        )
        assert res.status_code == 413


class TestExtract:
    def test_extract_plate(self, client):
        res = client.post("/api/extract-plate", json={"observations": [
            {"text": "XXX-111-A", "confidence": 0.99, "source_label": "focused"},
            {"text": "ABC-12-34", "confidence": 0.10, "source_label": "upscaled"},
        ]})
        assert res.status_code == 200
        body = res.json()
        assert body["bestPlate"] == "ABC-12-34"
        assert body["bestScore"] == 110
        assert len(body["allObservations"]) == 2

    def test_min_length_override(self, client):
        payload = {"observations": [{"text": "AB123"}]}
        assert client.post("/api/extract-plate", json=payload).json()["bestPlate"] is None
        payload["minLength"] = 5
        assert client.post("/api/extract-plate", json=payload).json()["bestPlate"] == "AB123"

    def test_no_observations(self, client):
        body = client.post("/api/extract-plate", json={"observations": []}).json()
        assert body == {"bestPlate": None, "bestScore": None, "candidates": [], "allObservations": []}

    def test_malformed_observation(self, client):
        res = client.post("/api/extract-plate", json={"observations": [{"confidence": 0.5}]})
        assert res.status_code == 422


class TestGallery:
    def test_lists_images(self, client, tmp_path):
        gallery = tmp_path / "gallery"
        gallery.mkdir()
        (gallery / "b.jpg").write_bytes(b"jpg")
        (gallery / "a.png").write_bytes(b"png")
        (gallery / "notes.txt").write_text("x")

        body = client.get("/api/images").json()
        assert body["success"] is True
        assert body["total"] == 2
        assert body["images"] == [
            {"name": "a.png", "url": "/api/image/a.png"},
            {"name": "b.jpg", "url": "/api/image/b.jpg"},
        ]

    def test_serves_image(self, client, tmp_path):
        gallery = tmp_path / "gallery"
        gallery.mkdir()
        (gallery / "a.png").write_bytes(b"png")

        res = client.get("/api/image/a.png")
        assert res.status_code == 200
        assert res.headers["content-type"] == "image/png"
        assert res.headers["cache-control"] == "public, max-age=3600"

    def test_missing_image(self, client):
        assert client.get("/api/image/nope.jpg").status_code == 404

    def test_missing_gallery(self, client):
        assert client.get("/api/images").status_code == 500


class TestWebSocket:
    def test_welcome_and_ping(self, client):
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["type"] == "welcome"
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_session_broadcast(self, client, hub):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "sessionId": "s1"})
            ws.send_json({"type": "ping"})
            ws.receive_json()

            hub.broadcast_to_session("other", {"type": "log", "message": "not for us"})
            hub.broadcast_to_session("s1", {"type": "log", "message": "hello"})
            assert ws.receive_json() == {"type": "log", "message": "hello"}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_startup_cleans_stale_artifacts(tmp_path, monkeypatch):
    import os
    import time

    processing = tmp_path / "processing"
    processing.mkdir()
    stale = processing / "old_original_1.jpg"
    stale.write_bytes(b"x")
    past = time.time() - 2 * settings.processing_max_age_s
    os.utime(stale, (past, past))
    monkeypatch.setattr(settings, "processing_dir", str(processing))

    with TestClient(app) as c:
        assert c.get("/health").status_code == 200
    assert not stale.exists()
