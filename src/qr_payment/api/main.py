"""FastAPI application entry point for QR Payment Service."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from qr_payment import __version__
from qr_payment.api.dependencies import (
    confirm_rate_limiter,
    get_order_gateway,
    scan_rate_limiter,
)
from qr_payment.api.internal_routes import router as internal_router
from qr_payment.api.routes import router as public_router
from qr_payment.config import settings
from qr_payment.infrastructure import database
from qr_payment.logging_config import configure_logging

# Configure logging at module level
configure_logging()

logger = structlog.get_logger()

# Background task for the maintenance sweep
_sweeper_task: asyncio.Task | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager.

    Handles startup and shutdown:
    - Verify database connectivity (create the schema for local SQLite)
    - Start the maintenance sweeper
    - Clean up on shutdown
    """
    logger.info("starting_qr_payment_service", environment=settings.environment)

    try:
        if database.engine.dialect.name == "sqlite":
            database.init_db()
        with database.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("database_connection_verified")
    except Exception as e:
        logger.error("failed_to_initialize_database", error=str(e))
        raise

    global _sweeper_task
    if settings.sweeper_enabled:
        from qr_payment.infrastructure.sweeper import run_sweeper

        _sweeper_task = asyncio.create_task(
            run_sweeper(database.SessionLocal, [scan_rate_limiter, confirm_rate_limiter])
        )
        logger.info("sweeper_started")

    logger.info("qr_payment_service_started")

    yield

    # Shutdown
    logger.info("shutting_down_qr_payment_service")

    if _sweeper_task is not None:
        logger.info("stopping_sweeper")
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass
        _sweeper_task = None
        logger.info("sweeper_stopped")

    if get_order_gateway.cache_info().currsize:
        get_order_gateway().close()

    logger.info("qr_payment_service_shutdown_complete")


# Create FastAPI app
app = FastAPI(
    title="QR Payment Service",
    description="Single-use QR payment tokens for point-of-sale orders",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(public_router)  # Point-of-sale API (/api/qr-payment/...)
app.include_router(internal_router)  # Service-to-service API (/internal/v1/...)


@app.get("/health")
def health_check() -> Response:
    """Health check endpoint.

    Returns:
        200 OK if service is healthy
        503 Service Unavailable if unhealthy
    """
    try:
        with database.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return JSONResponse(
            status_code=200,
            content={
                "status": "healthy",
                "service": settings.service_name,
                "environment": settings.environment,
            },
        )
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "service": settings.service_name,
                "error": str(e),
            },
        )


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "QR Payment Service",
        "version": __version__,
        "environment": settings.environment,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "qr_payment.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
