import logging
import os
import threading
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import cv2
import numpy as np
from app.adapters.events.websocket_hub import WebSocketHub
from app.domain.models import ProcessedImage
from app.ports.event_sink_port import ProcessingEventSink

logger = logging.getLogger(__name__)

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class NullEventSink(ProcessingEventSink):
    def info(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass

    def progress(self, operation: str, current: int, total: int, unit: str = "") -> None:
        pass

    def save_image(self, img: np.ndarray, step_name: str, description: str) -> Optional[ProcessedImage]:
        return None


class ProcessingSession(ProcessingEventSink):
    """
    Event sink for one analysis request.

    Keeps the session's log entries and processed images, writes the
    images to the processing directory and pushes every event to the
    session's WebSocket subscribers.
    """
    def __init__(
        self,
        session_id: str,
        output_dir: str,
        hub: Optional[WebSocketHub] = None,
        url_prefix: str = "/processing",
    ):
        self.session_id = session_id
        self.output_dir = output_dir
        self.hub = hub
        self.url_prefix = url_prefix.rstrip("/")
        self.start_time = time.time()
        self._logs: List[Dict[str, Any]] = []
        self._images: List[ProcessedImage] = []
        self._lock = threading.Lock()

    # -------- logs --------

    def log(self, message: str, log_type: str = "info", **metadata) -> None:
        entry = {
            "timestamp": _iso_now(),
            "message": message,
            "type": log_type,
            "sessionId": self.session_id,
            **metadata,
        }
        with self._lock:
            self._logs.append(entry)
        logger.log(_LEVELS.get(log_type, logging.INFO), "[%s] %s", self.session_id[:8], message)
        self._broadcast({"type": "log", **entry})

    def info(self, message: str) -> None:
        self.log(message, "info")

    def success(self, message: str) -> None:
        self.log(message, "success")

    def warning(self, message: str) -> None:
        self.log(message, "warning")

    def error(self, message: str) -> None:
        self.log(message, "error")

    def progress(self, operation: str, current: int, total: int, unit: str = "") -> None:
        percentage = round(current / total * 100) if total else 100
        payload = {
            "operation": operation,
            "current": current,
            "total": total,
            "percentage": percentage,
            "unit": unit,
        }
        self.log(f"{operation}: {current}/{total} {unit} ({percentage}%)", "info", **payload)
        self._broadcast({"type": "progress", "sessionId": self.session_id, **payload})

    def timing(self, operation: str = "Processing") -> int:
        elapsed = self.elapsed_ms()
        self.log(
            f"{operation} completed in {elapsed}ms",
            "info",
            operation=operation,
            elapsedMs=elapsed,
            elapsedSeconds=elapsed / 1000,
        )
        return elapsed

    def finish(self) -> None:
        self.timing("Total analysis")
        self._broadcast({
            "type": "session_complete",
            "sessionId": self.session_id,
            "totalLogs": len(self._logs),
            "totalImages": len(self._images),
            "duration": self.elapsed_ms(),
            "logs": self.get_logs(),
            "processedImages": [img.model_dump() for img in self.get_processed_images()],
        })

    # -------- images --------

    def save_image(self, img: np.ndarray, step_name: str, description: str) -> Optional[ProcessedImage]:
        filename = os.path.basename(f"{self.session_id}_{step_name}_{int(time.time() * 1000)}.jpg")
        try:
            ok, buffer = cv2.imencode(".jpg", img)
            if not ok:
                raise ValueError("could not encode image")
            os.makedirs(self.output_dir, exist_ok=True)
            with open(os.path.join(self.output_dir, filename), "wb") as fh:
                fh.write(buffer.tobytes())
        except (OSError, ValueError, cv2.error) as exc:
            self.error(f"Error saving processed image: {exc}")
            return None

        processed = ProcessedImage(
            filename=filename,
            url=f"{self.url_prefix}/{filename}",
            description=description,
            stepName=step_name,
            timestamp=_iso_now(),
            sessionId=self.session_id,
        )
        with self._lock:
            self._images.append(processed)
        self._broadcast({"type": "processed_image", **processed.model_dump()})
        self.info(f"Processed image saved: {description}")
        return processed

    # -------- accessors --------

    def elapsed_ms(self) -> int:
        return int((time.time() - self.start_time) * 1000)

    def get_logs(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._logs)

    def get_processed_images(self) -> List[ProcessedImage]:
        with self._lock:
            return list(self._images)

    def get_stats(self) -> Dict[str, Any]:
        logs = self.get_logs()
        images = self.get_processed_images()
        return {
            "sessionId": self.session_id,
            "startTime": int(self.start_time * 1000),
            "duration": self.elapsed_ms(),
            "totalLogs": len(logs),
            "logsByType": dict(Counter(entry["type"] for entry in logs)),
            "totalImages": len(images),
            "imagesByStep": dict(Counter(img.stepName for img in images)),
        }

    def broadcast(self, data: Dict[str, Any]) -> None:
        self._broadcast(data)

    def _broadcast(self, data: Dict[str, Any]) -> None:
        if self.hub is not None:
            self.hub.broadcast_to_session(self.session_id, data)

    @staticmethod
    def cleanup_old_images(directory: str, max_age_s: float = 3600) -> int:
        """Deletes artifacts older than max_age_s. Returns how many were removed."""
        if not os.path.isdir(directory):
            return 0

        now = time.time()
        removed = 0
        for name in os.listdir(directory):
            path = os.path.join(directory, name)
            try:
                if os.path.isfile(path) and now - os.path.getmtime(path) > max_age_s:
                    os.remove(path)
                    removed += 1
                    logger.info("Cleaned up old processed image: %s", name)
            except OSError as exc:
                logger.warning("Could not clean up %s: %s", name, exc)
        return removed


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()
