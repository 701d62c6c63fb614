import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from app.api.routers import router, get_analyzer
from app.adapters.events.session_logger import ProcessingSession
from app.core.config import settings

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    os.makedirs(settings.processing_dir, exist_ok=True)
    removed = ProcessingSession.cleanup_old_images(
        settings.processing_dir, settings.processing_max_age_s
    )
    logger.info("Processing dir %s ready (%d stale artifacts removed)", settings.processing_dir, removed)

    if settings.warmup_on_startup:
        get_analyzer().ensure_ready()
    yield


app = FastAPI(title="Plate Reader Service", version="1.0.0", lifespan=lifespan)
app.include_router(router)
