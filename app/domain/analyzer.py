import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple
import numpy as np
from app.adapters.events.session_logger import NullEventSink
from app.core.config import Settings, settings as default_settings
from app.domain import image_utils, services
from app.domain.models import (
    AnalysisResult,
    OcrObservation,
    PlateReading,
    RegionReading,
    VehicleDetection,
)
from app.ports.detector_port import VehicleDetectorPort
from app.ports.event_sink_port import ProcessingEventSink
from app.ports.ocr_port import OcrPort

logger = logging.getLogger(__name__)

BOTTOM_HALF_BOX = (0.0, 0.5, 1.0, 0.5)


class PlateAnalyzer:
    """
    Vehicle detection -> regions of interest -> enhancement variants -> OCR
    -> plate extraction, for a single uploaded image.
    """
    def __init__(
        self,
        detector: VehicleDetectorPort,
        ocr: OcrPort,
        settings: Optional[Settings] = None,
    ):
        self.detector = detector
        self.ocr = ocr
        self.settings = settings or default_settings
        self._ready = False
        self._lock = threading.Lock()

    def ensure_ready(self) -> None:
        if self._ready:
            return
        with self._lock:
            if not self._ready:
                self.detector.ensure_ready()
                self.ocr.ensure_ready()
                self._ready = True

    # -------- vehicle --------

    def detect_vehicle(self, img_bgr: np.ndarray, sink: ProcessingEventSink) -> List[VehicleDetection]:
        sink.info("Detecting vehicles...")
        try:
            detections = self.detector.detect_vehicles(img_bgr)
        except Exception as exc:
            logger.exception("Vehicle detection failed")
            sink.error(f"Vehicle detection failed: {exc}")
            return []

        if detections:
            best = detections[0]
            sink.success(f"Vehicle detected: {best.label} (confidence: {best.confidence * 100:.1f}%)")
            sink.info(f"Location: [{best.box.x}, {best.box.y}, {best.box.w}, {best.box.h}]")
        else:
            sink.warning("No clear vehicle detected in the image")
        return detections

    # -------- plate --------

    def read_region(
        self,
        img_bgr: np.ndarray,
        region: str,
        box: Optional[Sequence[float]],
        sink: ProcessingEventSink,
    ) -> RegionReading:
        working = img_bgr
        if box is not None:
            crop = image_utils.crop_region(img_bgr, box)
            if crop is None:
                sink.warning(f"Region '{region}' too small to crop, using the full image")
            else:
                working = crop
                h, w = crop.shape[:2]
                sink.save_image(crop, f"{region}_cropped", f"Cropped region {region}: {w}x{h}")

        observations: List[OcrObservation] = []
        readings: List[PlateReading] = []
        total = len(image_utils.VARIANT_BUILDERS)

        for idx, (label, build, description) in enumerate(image_utils.VARIANT_BUILDERS, start=1):
            sink.progress("OCR", idx, total, f"variants ({region})")
            try:
                variant = build(working)
                sink.save_image(variant, f"{region}_{label}", description)
                ocr_text = self.ocr.recognize(variant)
            except Exception as exc:
                logger.exception("OCR failed on %s/%s", region, label)
                sink.error(f"OCR failed on variant {label} ({region}): {exc}")
                continue

            obs = OcrObservation(
                text=ocr_text.text,
                confidence=min(1.0, max(0.0, ocr_text.confidence / 100.0)),
                source_label=f"{region}/{label}",
            )
            observations.append(obs)
            sink.info(f"Text detected in {label} ({region}): {obs.text!r} (confidence: {ocr_text.confidence:.1f}%)")

            result = services.extract(
                [obs],
                min_length=self.settings.plate_min_length,
                denylist=self.settings.denylist(),
            )
            if result.best_plate:
                sink.success(f"Valid plate found: {result.best_plate}")
                readings.append(PlateReading(
                    source=label,
                    region=region,
                    plate=result.best_plate,
                    score=result.best_score,
                    confidence=obs.confidence,
                    raw_text=obs.text,
                ))
            else:
                sink.warning(f"Text in {label} ({region}) does not match a plate format")

        ranked = services.rank_variant_readings(readings, tie_margin=self.settings.reading_tie_margin)
        if ranked:
            best = ranked[0]
            sink.success(
                f"Best result in {region}: {best.plate} "
                f"(method: {best.source}, confidence: {best.confidence * 100:.1f}%)"
            )
        else:
            sink.warning(f"No valid plate in region {region}")

        return RegionReading(
            region=region,
            best=ranked[0] if ranked else None,
            readings=ranked,
            observations=observations,
        )

    def _safe_read_region(self, img_bgr, region, box, sink) -> RegionReading:
        try:
            return self.read_region(img_bgr, region, box, sink)
        except Exception as exc:
            logger.exception("Plate reading failed for region %s", region)
            sink.error(f"Plate reading failed for region {region}: {exc}")
            return RegionReading(region=region)

    def _regions(self, vehicle: Optional[VehicleDetection]) -> List[Tuple[str, Optional[Sequence[float]]]]:
        regions: List[Tuple[str, Optional[Sequence[float]]]] = []
        if vehicle is not None:
            b = vehicle.box
            regions.append(("vehicle", (b.x, b.y, b.w, b.h)))
        regions.append(("full", None))
        regions.append(("bottom_half", BOTTOM_HALF_BOX))
        return regions

    # -------- request --------

    def analyze(
        self,
        img_bgr: np.ndarray,
        sink: Optional[ProcessingEventSink] = None,
        session_id: Optional[str] = None,
    ) -> AnalysisResult:
        if img_bgr is None or img_bgr.size == 0:
            raise ValueError("Empty image for analysis")

        if sink is None:
            sink = NullEventSink()
        session_id = session_id or str(uuid.uuid4())
        start = time.time()
        self.ensure_ready()

        sink.info("Starting image analysis...")
        sink.save_image(img_bgr, "original", "Original image")

        sink.info("Step 1: detecting vehicles")
        detections = self.detect_vehicle(img_bgr, sink)
        vehicle = detections[0] if detections else None

        sink.info("Step 2: looking for license plates")
        regions = self._regions(vehicle)
        with ThreadPoolExecutor(max_workers=len(regions)) as pool:
            futures = [
                pool.submit(self._safe_read_region, img_bgr, name, box, sink)
                for name, box in regions
            ]
            region_readings = [f.result() for f in futures]

        chosen = services.select_reading(
            region_readings, min_confidence=self.settings.reading_min_confidence
        )
        plate = chosen.best if chosen is not None and chosen.has_plate else None

        # Every observation of the request, in region priority order
        pooled = services.extract(
            [obs for r in services.order_regions(region_readings) for obs in r.observations],
            min_length=self.settings.plate_min_length,
            denylist=self.settings.denylist(),
        )

        vehicle_conf = vehicle.confidence if vehicle else 0.0
        plate_conf = plate.confidence if plate else 0.0
        overall = plate_conf * 0.7 + vehicle_conf * 0.3 if plate else vehicle_conf

        if plate:
            sink.success(f"Analysis finished: plate {plate.plate} detected")
        else:
            sink.warning("Analysis finished: no plate detected")

        return AnalysisResult(
            success=True,
            sessionId=session_id,
            processingTimeMs=int((time.time() - start) * 1000),
            hasVehicle=vehicle is not None,
            vehicleType=vehicle.label if vehicle else None,
            vehicleConfidence=vehicle_conf,
            hasPlate=plate is not None,
            plateText=plate.plate if plate else None,
            plateConfidence=plate_conf,
            processingMethod=plate.source if plate else None,
            overallConfidence=overall,
            debug={
                "vehicleDetections": len(detections),
                "plateRegion": chosen.region if chosen else None,
                "plateCandidates": len(chosen.readings) if chosen else 0,
                "alternativePlates": [
                    {"text": r.plate, "confidence": r.confidence, "source": r.source}
                    for r in (chosen.readings if chosen else [])
                ],
                "rankedCandidates": [c.model_dump() for c in pooled.candidates],
                "bestCandidate": pooled.best_plate,
            },
        )
