import threading
import numpy as np
import pytest
from app.domain.models import BoundingBox, OcrText, VehicleDetection


class FakeDetector:
    def __init__(self, detections=None, error=None):
        self.detections = detections or []
        self.error = error
        self.ready_calls = 0

    def ensure_ready(self):
        self.ready_calls += 1

    def detect_vehicles(self, img_bgr):
        if self.error:
            raise self.error
        return list(self.detections)


class FakeOcr:
    """Returns the same reading for every image; thread safe call counter."""
    def __init__(self, text="NCM-27-04", confidence=90.0, error=None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.calls = 0
        self.ready_calls = 0
        self._lock = threading.Lock()

    def ensure_ready(self):
        self.ready_calls += 1

    def recognize(self, img):
        with self._lock:
            self.calls += 1
        if self.error:
            raise self.error
        return OcrText(text=self.text, confidence=self.confidence)


class FakeHub:
    def __init__(self):
        self.messages = []

    def broadcast_to_session(self, session_id, data):
        self.messages.append((session_id, data))


@pytest.fixture
def car_image():
    img = np.full((200, 300, 3), 90, dtype=np.uint8)
    img[120:150, 100:200] = 230
    return img


@pytest.fixture
def vehicle():
    return VehicleDetection(label="car", confidence=0.8, box=BoundingBox(x=10, y=10, w=250, h=180))
