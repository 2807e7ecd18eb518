"""Trustline API - Main FastAPI application."""

import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from trustline_api import __version__
from trustline_api.db.session import SessionLocal
from trustline_api.errors import TrustlineError
from trustline_api.middleware.correlation import CorrelationIDMiddleware
from trustline_api.routes import detection, identity_events, investigations, ledger, sessions
from trustline_api.settings import get_settings

settings = get_settings()

# Configure logging
if settings.log_format == "json":
    log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}'
else:
    log_format = "%(asctime)s %(levelname)s %(name)s: %(message)s"
logging.basicConfig(
    level=settings.log_level,
    format=log_format,
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

ALEMBIC_INI = os.path.join(os.path.dirname(__file__), "..", "alembic.ini")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Trustline API...")
    try:
        settings.validate_production_settings()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise
    yield
    logger.info("Shutting down Trustline API...")


app = FastAPI(
    title="Trustline API",
    description="Platform trust ledger, anomaly detection and investigation cases",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)
app.add_middleware(CorrelationIDMiddleware)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

app.include_router(ledger.router)
app.include_router(sessions.router)
app.include_router(detection.router)
app.include_router(investigations.router)
app.include_router(identity_events.router)


@app.exception_handler(TrustlineError)
async def trustline_error_handler(request: Request, exc: TrustlineError):
    """Map domain errors onto HTTP responses."""
    if exc.status_code >= 500:
        logger.error(f"Unhandled domain error: {exc.message}", extra={"path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(OperationalError)
async def storage_error_handler(request: Request, exc: OperationalError):
    """Transient storage failures: tell the caller to back off and retry."""
    logger.warning("Storage unavailable", extra={"path": request.url.path}, exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable, retry later", "error": "StorageUnavailable"},
        headers={"Retry-After": "5"},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint (basic liveness)."""
    return {
        "status": "healthy",
        "service": "trustline-api",
        "version": __version__,
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint (database reachable and migrations at head)."""
    from alembic.config import Config
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    checks = {"database": False, "migrations": False}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True

        current_rev = MigrationContext.configure(db.connection()).get_current_revision()
        head_rev = ScriptDirectory.from_config(Config(ALEMBIC_INI)).get_current_head()
        checks["migrations"] = current_rev == head_rev
        if not checks["migrations"]:
            logger.warning(f"Migrations not at head: current={current_rev}, head={head_rev}")
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
    finally:
        db.close()

    ready = all(checks.values())
    return JSONResponse(
        content={"status": "ready" if ready else "not_ready", "checks": checks},
        status_code=200 if ready else 503,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Trustline API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
