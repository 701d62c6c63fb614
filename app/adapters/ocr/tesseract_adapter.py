import logging
import os
import threading
from typing import Optional
import numpy as np
import pytesseract
from app.ports.ocr_port import OcrPort
from app.domain.models import OcrText
from app.core.config import settings

logger = logging.getLogger(__name__)

# Configure Tesseract executable path for Windows
if os.name == 'nt':  # Windows
    tesseract_cmd = os.getenv(
        'TESSERACT_CMD',
        r'C:\Program Files\Tesseract-OCR\tesseract.exe'
    )
    if os.path.exists(tesseract_cmd):
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd


class TesseractPlateAdapter(OcrPort):
    """
    OCR for plates: one text line, uppercase letters, digits and dashes.
    """
    def __init__(self, config: Optional[str] = None):
        self.config = config or settings.tesseract_config
        self.version = None
        self._lock = threading.Lock()

    def ensure_ready(self) -> None:
        if self.version is not None:
            return
        with self._lock:
            if self.version is None:
                self.version = str(pytesseract.get_tesseract_version())
                logger.info("Tesseract %s ready", self.version)

    def recognize(self, img: np.ndarray) -> OcrText:
        data = pytesseract.image_to_data(
            img, config=self.config, output_type=pytesseract.Output.DICT
        )
        words = []
        confs = []
        for word, conf in zip(data.get("text", []), data.get("conf", [])):
            conf = float(conf)
            if conf < 0:
                continue
            confs.append(conf)
            if word.strip():
                words.append(word.strip())

        confidence = sum(confs) / len(confs) if confs else 0.0
        return OcrText(text=" ".join(words), confidence=confidence)
