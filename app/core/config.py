from pydantic import BaseModel
import os
import tempfile
from pathlib import Path
from typing import Tuple

DEFAULT_DENYLIST = "platesmania,www.,.com"
# Vendor tokens seen on gallery photos (watermarks of the sample sources)
EXTENDED_DENYLIST = DEFAULT_DENYLIST + ",major,katz,guerrero"

PLATE_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-"


class Settings(BaseModel):
    vehicle_model_path: str = os.getenv("VEHICLE_MODEL_PATH", "yolov8n.pt")
    vehicle_conf: float = float(os.getenv("VEHICLE_CONF", "0.15"))
    img_size: int = int(os.getenv("IMG_SIZE", "640"))

    # Plate text extraction
    plate_min_length: int = int(os.getenv("PLATE_MIN_LENGTH", "6"))
    plate_denylist: str = os.getenv("PLATE_DENYLIST", DEFAULT_DENYLIST)

    # Observation-level selection
    reading_min_confidence: float = float(os.getenv("READING_MIN_CONFIDENCE", "0.1"))
    reading_tie_margin: float = float(os.getenv("READING_TIE_MARGIN", "0.1"))

    tesseract_config: str = os.getenv(
        "TESSERACT_CONFIG",
        f"--oem 1 --psm 7 -c tessedit_char_whitelist={PLATE_WHITELIST}"
    )

    gallery_dir: str = os.getenv("GALLERY_DIR", "test-dataset")

    # Cross-platform artifacts directory configuration
    processing_dir: str = os.getenv(
        "PROCESSING_DIR",
        str(Path(tempfile.gettempdir()) / "plate_processing")
    )
    processing_max_age_s: int = int(os.getenv("PROCESSING_MAX_AGE_S", "3600"))

    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(15 * 1024 * 1024)))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    warmup_on_startup: bool = os.getenv("WARMUP_ON_STARTUP", "false").lower() == "true"

    def denylist(self) -> Tuple[str, ...]:
        return tuple(tok.strip() for tok in self.plate_denylist.split(",") if tok.strip())


settings = Settings()
