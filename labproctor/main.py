"""
Lab Proctor Service - FastAPI Application with Request Logging
"""
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.assessment import router as assessment_router
from .api.proctoring import router as proctoring_router
from .config import settings
from .proctor.telemetry import get_proctor_telemetry
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Assessment records, evidence storage and frame classification for proctored labs",
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)


# ============================================================================
# Request Logging Middleware
# ============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with timing."""
    start = time.time()
    method = request.method
    path = request.url.path

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"[HTTP] {method} {path} raised: {e}")
        raise

    if path not in ["/health", "/favicon.ico"]:
        duration_ms = int((time.time() - start) * 1000)
        logger.info(f"[HTTP] {method} {path} -> {response.status_code} in {duration_ms}ms")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(assessment_router)
app.include_router(proctoring_router)


@app.on_event("startup")
async def startup_event():
    """Configure logging and report the active configuration."""
    setup_logging("labproctor", level=settings.LOG_LEVEL, log_dir=settings.SERVICE_LOG_DIR)
    logger.info("Configuration:")
    logger.info(f"  Database: {settings.DATABASE_URL}")
    logger.info(f"  Record dir: {settings.RECORD_DIR}")
    logger.info(f"  Logs dir: {settings.LOGS_DIR}")
    logger.info(f"  Classifier: {settings.CLASSIFIER_MODEL} (key {'set' if settings.OPENAI_API_KEY else 'missing'})")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": __version__
    }


@app.get("/metrics")
async def metrics():
    """Proctoring telemetry counters."""
    return get_proctor_telemetry().get_metrics()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("labproctor.main:app", host="0.0.0.0", port=8001, reload=settings.DEBUG)
