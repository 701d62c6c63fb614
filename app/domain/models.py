from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class BoundingBox(BaseModel):
    x: int
    y: int
    w: int
    h: int


class VehicleDetection(BaseModel):
    label: str
    confidence: float
    box: BoundingBox


class OcrText(BaseModel):
    """Raw OCR engine output. Confidence is on the engine's 0-100 scale."""
    text: str
    confidence: float = 0.0


class OcrObservation(BaseModel):
    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source_label: str = ""


class Candidate(BaseModel):
    plate: str
    score: int


class ExtractionResult(BaseModel):
    best_plate: Optional[str] = None
    candidates: List[Candidate] = []
    all_observations: List[OcrObservation] = []

    @property
    def best_score(self) -> Optional[int]:
        return self.candidates[0].score if self.candidates else None


class PlateReading(BaseModel):
    """Validated plate produced by one enhancement variant of one region."""
    source: str
    region: str = "full"
    plate: Optional[str] = None
    score: Optional[int] = None
    confidence: float = 0.0
    raw_text: str = ""

    @property
    def has_plate(self) -> bool:
        return bool(self.plate)


class RegionReading(BaseModel):
    region: str
    best: Optional[PlateReading] = None
    readings: List[PlateReading] = []
    observations: List[OcrObservation] = []

    @property
    def has_plate(self) -> bool:
        return self.best is not None and self.best.has_plate


class ProcessedImage(BaseModel):
    filename: str
    url: str
    description: str
    stepName: str
    timestamp: str
    sessionId: str


class AnalysisResult(BaseModel):
    success: bool = True
    sessionId: str
    processingTimeMs: int

    hasVehicle: bool
    vehicleType: Optional[str] = None
    vehicleConfidence: float = 0.0

    hasPlate: bool
    plateText: Optional[str] = None
    plateConfidence: float = 0.0
    processingMethod: Optional[str] = None

    overallConfidence: float = 0.0

    debug: Dict[str, Any] = {}
    logs: List[Dict[str, Any]] = []
    processedImages: List[ProcessedImage] = []
    stats: Dict[str, Any] = {}
