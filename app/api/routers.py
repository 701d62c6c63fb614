from functools import lru_cache
import html as html_lib
import logging
import os
import uuid
from typing import List, Optional
import cv2
import numpy as np
from fastapi import APIRouter, UploadFile, File, Form, HTTPException, Depends, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, HTMLResponse
from pydantic import BaseModel
from app.ports.detector_port import VehicleDetectorPort
from app.ports.ocr_port import OcrPort
from app.adapters.detector.yolo_adapter import YoloVehicleAdapter
from app.adapters.ocr.tesseract_adapter import TesseractPlateAdapter
from app.adapters.events.session_logger import ProcessingSession
from app.adapters.events.websocket_hub import WebSocketHub
from app.domain import services
from app.domain.analyzer import PlateAnalyzer
from app.domain.models import AnalysisResult, OcrObservation
from app.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_TYPES = ("image/jpeg", "image/png", "image/webp")
GALLERY_EXTENSIONS = (".jpg", ".jpeg", ".png")
CONTENT_TYPES = {".png": "image/png", ".gif": "image/gif"}


# Dependency Injection (Cached)
@lru_cache()
def get_detector() -> VehicleDetectorPort:
    return YoloVehicleAdapter()

@lru_cache()
def get_ocr() -> OcrPort:
    return TesseractPlateAdapter()

@lru_cache()
def get_analyzer() -> PlateAnalyzer:
    return PlateAnalyzer(get_detector(), get_ocr(), settings)

@lru_cache()
def get_hub() -> WebSocketHub:
    return WebSocketHub()


class ExtractRequest(BaseModel):
    observations: List[OcrObservation] = []
    minLength: Optional[int] = None
    denylist: Optional[List[str]] = None


def _validate_image_upload(file: UploadFile):
    if file.content_type not in ALLOWED_TYPES:
        raise HTTPException(status_code=415, detail="Only JPG/PNG/WEBP supported")


def _session_id(raw: Optional[str]) -> str:
    if not raw:
        return str(uuid.uuid4())
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        raise HTTPException(status_code=400, detail="session_id must be a UUID")


def _decode_image(data: bytes) -> np.ndarray:
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="File too large")

    img_array = np.frombuffer(data, np.uint8)
    img = cv2.imdecode(img_array, cv2.IMREAD_COLOR)
    if img is None:
        raise HTTPException(status_code=400, detail="Could not decode image")
    return img


@router.post("/api/analyze-plate", response_model=AnalysisResult)
async def analyze_plate(
    image: UploadFile = File(...),
    session_id: Optional[str] = Form(None),
    analyzer: PlateAnalyzer = Depends(get_analyzer),
    hub: WebSocketHub = Depends(get_hub),
):
    _validate_image_upload(image)
    img = _decode_image(await image.read())

    session_id = _session_id(session_id)
    session = ProcessingSession(session_id, settings.processing_dir, hub)
    session.info(f"Image received: {image.filename}")

    try:
        result = await run_in_threadpool(analyzer.analyze, img, session, session_id)
    except Exception as exc:
        logger.exception("Analysis failed for session %s", session_id)
        session.error(f"Critical error: {exc}")
        session.broadcast({"type": "analysis_error", "error": str(exc), "sessionId": session_id})
        raise HTTPException(status_code=500, detail=f"Error processing image: {exc}")

    session.timing("Processing")
    result = result.model_copy(update={
        "logs": session.get_logs(),
        "processedImages": session.get_processed_images(),
        "stats": session.get_stats(),
    })
    session.broadcast({"type": "analysis_complete", **result.model_dump()})
    session.finish()
    return result


@router.post("/api/extract-plate", response_model=dict)
def extract_plate(body: ExtractRequest):
    """Runs plate extraction on OCR text directly (no image)."""
    result = services.extract(
        body.observations,
        min_length=body.minLength if body.minLength is not None else settings.plate_min_length,
        denylist=body.denylist if body.denylist is not None else settings.denylist(),
    )
    return {
        "bestPlate": result.best_plate,
        "bestScore": result.best_score,
        "candidates": [c.model_dump() for c in result.candidates],
        "allObservations": [o.model_dump() for o in result.all_observations],
    }


@router.get("/api/images")
def list_gallery_images():
    gallery_dir = settings.gallery_dir
    if not os.path.isdir(gallery_dir):
        raise HTTPException(status_code=500, detail="Error reading images")

    names = sorted(f for f in os.listdir(gallery_dir) if f.lower().endswith(GALLERY_EXTENSIONS))
    images = [{"name": name, "url": f"/api/image/{name}"} for name in names]
    return {"success": True, "images": images, "total": len(images)}


@router.get("/api/image/{name}")
def get_gallery_image(name: str):
    # Sanitize filename to prevent directory traversal
    name = os.path.basename(name)
    file_path = os.path.join(settings.gallery_dir, name)
    if not name or not os.path.isfile(file_path):
        raise HTTPException(status_code=404, detail="Image not found")

    ext = os.path.splitext(name)[1].lower()
    return FileResponse(
        file_path,
        media_type=CONTENT_TYPES.get(ext, "image/jpeg"),
        headers={"Cache-Control": "public, max-age=3600"},
    )


@router.get("/processing/{filename}")
def get_processed_image(filename: str):
    filename = os.path.basename(filename)
    file_path = os.path.join(settings.processing_dir, filename)

    if not os.path.isfile(file_path):
        raise HTTPException(status_code=404, detail=f"File not found: {filename}")

    return FileResponse(file_path, media_type="image/jpeg", filename=filename)


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket, hub: WebSocketHub = Depends(get_hub)):
    client_id = await hub.connect(ws)
    try:
        while True:
            try:
                data = await ws.receive_json()
            except ValueError:
                logger.warning("Invalid WebSocket message from %s", client_id)
                continue
            await hub.handle_message(client_id, data)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(client_id)


@router.get("/health")
def health():
    return {"status": "ok"}


def _group_artifacts(files: List[str]) -> dict:
    """Groups '<session>_<step>_<millis>.jpg' files by session, newest session first."""
    groups = {}
    for f in files:
        stem, ext = os.path.splitext(f)
        parts = stem.split("_")
        if ext.lower() != ".jpg" or len(parts) < 3:
            continue
        session, step, millis = parts[0], "_".join(parts[1:-1]), parts[-1]
        groups.setdefault(session, []).append((millis, step, f))

    ordered = sorted(groups.items(), key=lambda kv: max(m for m, _, _ in kv[1]), reverse=True)
    return {session: sorted(items) for session, items in ordered}


@router.get("/debug/viewer", response_class=HTMLResponse)
def debug_viewer():
    """HTML page to view the processing artifacts of each run"""
    processing_dir = settings.processing_dir
    files = sorted(os.listdir(processing_dir)) if os.path.isdir(processing_dir) else []
    groups = _group_artifacts(files)

    html = """
    <!DOCTYPE html>
    <html>
    <head>
        <title>Processing Viewer</title>
        <style>
            body { font-family: Arial, sans-serif; margin: 20px; background: #f5f5f5; }
            h1 { color: #333; }
            .image-group {
                background: white;
                padding: 20px;
                margin: 20px 0;
                border-radius: 8px;
                box-shadow: 0 2px 4px rgba(0,0,0,0.1);
            }
            .image-group h3 { margin-top: 0; color: #666; }
            .images { display: flex; gap: 20px; flex-wrap: wrap; }
            .image-container { flex: 1; min-width: 300px; }
            .image-container h4 { margin: 10px 0; color: #444; }
            img {
                max-width: 100%;
                border: 2px solid #ddd;
                border-radius: 4px;
                background: #000;
            }
            .no-images { color: #999; font-style: italic; }
        </style>
    </head>
    <body>
        <h1>Processing Viewer</h1>
        <p>Showing processed images from most recent run to oldest</p>
    """

    if not groups:
        html += '<p class="no-images">No processed images found. Analyze an image first.</p>'
    else:
        for session, items in groups.items():
            html += f'<div class="image-group"><h3>Session: {html_lib.escape(session)}</h3><div class="images">'
            for idx, (_, step, f) in enumerate(items, start=1):
                step = html_lib.escape(step)
                html += f'''
                <div class="image-container">
                    <h4>{idx}. {step}</h4>
                    <img src="/processing/{html_lib.escape(f)}" alt="{step}">
                </div>
                '''
            html += '</div></div>'

    html += """
    </body>
    </html>
    """

    return HTMLResponse(content=html)
