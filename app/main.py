"""
Scheduling Assistant API

FastAPI application entry point: chat endpoint for the booking
assistant plus health probes.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from app.config import settings
from app.api.routes import chat, health
from app.core.scheduling.calendar_client import get_calendar_client
from app.infra.redis import RedisClient


def setup_logging() -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # === STARTUP ===
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

    health.set_start_time()

    redis = await RedisClient.get_client()
    if redis:
        logger.info("Redis connection established")
    else:
        logger.warning("Redis unavailable - conversation state kept in memory")

    if not get_calendar_client().is_configured():
        logger.warning("Google Calendar not configured - bookings are disabled")

    logger.info(f"Application ready at http://{settings.host}:{settings.port}")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down application...")

    await get_calendar_client().close()
    await RedisClient.close()

    logger.info("Shutdown complete")


app = FastAPI(
    title="Scheduling Assistant API",
    description="""
    Conversational appointment scheduling for chat channels.

    ## Features
    - Spanish natural-language dates and times ("mañana a las 11", "15 de mayo")
    - Availability search against Google Calendar
    - Multi-step booking with conflict re-check before creating the event
    """,
    version=health.VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": exc.errors(),
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    detail = str(exc) if settings.is_development else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": detail,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration in debug mode."""
    start_time = time.time()

    try:
        return await call_next(request)
    finally:
        if settings.debug:
            duration = time.time() - start_time
            logger.debug(
                f"{request.method} {request.url.path} "
                f"completed in {duration:.3f}s"
            )


app.include_router(health.router)
app.include_router(chat.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """
    Root endpoint.

    Returns basic API information.
    """
    return {
        "name": settings.app_name,
        "version": health.VERSION,
        "status": "running",
        "environment": settings.app_env,
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
