from typing import Protocol
import numpy as np
from app.domain.models import OcrText


class OcrPort(Protocol):
    def ensure_ready(self) -> None:
        ...

    def recognize(self, img: np.ndarray) -> OcrText:
        ...
