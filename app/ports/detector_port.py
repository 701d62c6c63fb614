from typing import List, Protocol
import numpy as np
from app.domain.models import VehicleDetection


class VehicleDetectorPort(Protocol):
    def ensure_ready(self) -> None:
        ...

    def detect_vehicles(self, img_bgr: np.ndarray) -> List[VehicleDetection]:
        ...
