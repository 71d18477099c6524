"""Bitredict FastAPI application.

Health, readiness and cron administration for the prediction-market backend.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bitredict import __version__
from bitredict.api.routes import admin, health
from bitredict.config import get_settings
from bitredict.config.logging import configure_logging
from bitredict.errors import BitredictError, ErrorKind

settings = get_settings()
configure_logging(settings.log_level)

logger = structlog.get_logger(__name__)

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.LOCK_CONTENTION: 409,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.TRANSIENT_RPC: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("starting_bitredict", version=__version__)
    yield
    logger.info("shutting_down_bitredict")


# Create FastAPI application
app = FastAPI(
    title="Bitredict",
    description="Prediction-market backend: Oddyssey cycles, pool settlement and job coordination",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers
app.include_router(health.router)
app.include_router(admin.router)


@app.exception_handler(BitredictError)
async def bitredict_error_handler(request: Request, exc: BitredictError):
    status_code = ERROR_STATUS.get(exc.kind, 500)
    if status_code >= 500:
        logger.error("server_error", path=request.url.path, kind=exc.kind.value, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "kind": exc.kind.value},
    )
