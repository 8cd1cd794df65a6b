# app/main.py - FastAPI application for the fee engine
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import traceback
import time

from app.core.config import settings
from app.core.db import db_manager, get_engine, health_check as db_health_check
from app.models import Base
from app.models.snapshot import PupilTermSnapshot
from app.api.routers import academic, fees, snapshots
from app.services.fee_group_cache import FeeGroupCache


# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format=settings.log_format_string
)
logger = logging.getLogger(__name__)


def _snapshot_store_ready() -> bool:
    try:
        ready = db_manager.has_table(PupilTermSnapshot.__tablename__)
    except Exception as e:
        logger.error(f"Could not inspect snapshot store: {e}")
        return False
    if not ready:
        logger.error(
            f"Table {PupilTermSnapshot.__tablename__} is missing; closed-term lookups will fall back "
            f"to current pupil data. Run `alembic upgrade head` against {settings.ENV}"
        )
    return ready


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting School Fee Engine API...")
    logger.info(f"Environment: {settings.ENV}")

    if settings.is_development:
        logger.info("Creating database tables...")
        try:
            Base.metadata.create_all(bind=get_engine())
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Error creating tables: {e}")

    app.state.snapshot_store_ready = _snapshot_store_ready()

    app.state.fee_cache = FeeGroupCache()
    if settings.FEE_CACHE_BACKGROUND_MAINTENANCE:
        app.state.fee_cache.start_background_maintenance()

    yield

    await app.state.fee_cache.stop_background_maintenance()
    db_manager.close()
    logger.info("Shutting down School Fee Engine API...")


app = FastAPI(
    title=settings.API_TITLE,
    description="Grouped fee calculation, group fee caching and historical pupil snapshots",
    version=settings.API_VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with its status and timing"""
    start_time = time.time()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"Error processing {request.method} {request.url.path}: {str(e)}")
        raise
    process_time = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
    max_age=3600,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    logger.error(traceback.format_exc())

    if settings.is_development:
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "traceback": traceback.format_exc()
            }
        )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


@app.get("/health")
async def health_check(request: Request):
    return {
        "status": "healthy",
        "environment": settings.ENV,
        "version": settings.API_VERSION,
        "database": db_health_check(),
        "snapshot_store": "ready" if request.app.state.snapshot_store_ready else "missing_schema",
        "fee_cache": request.app.state.fee_cache.get_cache_stats().model_dump(),
    }


app.include_router(fees.router, prefix="/api/fees", tags=["Fees"])
app.include_router(academic.router, prefix="/api/academic", tags=["Academic"])
app.include_router(snapshots.router, prefix="/api", tags=["Snapshots"])
