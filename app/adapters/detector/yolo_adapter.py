import logging
import threading
from typing import List, Optional
import numpy as np
from app.ports.detector_port import VehicleDetectorPort
from app.domain.models import BoundingBox, VehicleDetection
from app.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

VEHICLE_CLASSES = ("car", "truck", "bus", "motorcycle", "bicycle")


class YoloVehicleAdapter(VehicleDetectorPort):
    """
    Vehicle detector on a COCO-trained YOLO model.
    The model is loaded once, on the first ensure_ready() call.
    """
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.model = None
        self._lock = threading.Lock()

    def ensure_ready(self) -> None:
        if self.model is not None:
            return
        with self._lock:
            if self.model is not None:
                return
            from ultralytics import YOLO

            logger.info("Loading vehicle detection model from %s", self.settings.vehicle_model_path)
            self.model = YOLO(self.settings.vehicle_model_path)
            logger.info("Vehicle detection model ready")

    def detect_vehicles(self, img_bgr: np.ndarray) -> List[VehicleDetection]:
        self.ensure_ready()
        results = self.model.predict(
            img_bgr,
            imgsz=self.settings.img_size,
            conf=self.settings.vehicle_conf,
            verbose=False
        )[0]

        if results.boxes is None or len(results.boxes) == 0:
            return []

        names = results.names
        img_h, img_w = img_bgr.shape[:2]
        detections = []
        for box in results.boxes:
            label = names[int(box.cls[0])]
            conf = float(box.conf[0])
            if label not in VEHICLE_CLASSES or conf <= self.settings.vehicle_conf:
                continue

            x1, y1, x2, y2 = map(float, box.xyxy[0])
            x1 = max(0, min(int(x1), img_w - 1))
            y1 = max(0, min(int(y1), img_h - 1))
            x2 = max(x1 + 1, min(int(x2), img_w))
            y2 = max(y1 + 1, min(int(y2), img_h))

            detections.append(VehicleDetection(
                label=label,
                confidence=conf,
                box=BoundingBox(x=x1, y=y1, w=x2 - x1, h=y2 - y1)
            ))

        detections.sort(key=lambda d: d.confidence, reverse=True)
        return detections
