from typing import Optional, Protocol
import numpy as np
from app.domain.models import ProcessedImage


class ProcessingEventSink(Protocol):
    """Receives human-readable progress from the analysis pipeline."""

    def info(self, message: str) -> None:
        ...

    def success(self, message: str) -> None:
        ...

    def warning(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...

    def progress(self, operation: str, current: int, total: int, unit: str = "") -> None:
        ...

    def save_image(self, img: np.ndarray, step_name: str, description: str) -> Optional[ProcessedImage]:
        ...
