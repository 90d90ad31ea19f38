"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.api import (
    CorrelationIdMiddleware,
    calls_router,
    engine_router,
    health_router,
    notifications_router,
)
from src.config import get_settings
from src.database import close_database, init_database, run_migrations
from src.engine import build_engine
from src.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    logger = get_logger("main")

    app.state.pool = None
    app.state.engine = None

    try:
        pool = await init_database(settings)
        await run_migrations(pool)
        app.state.pool = pool
        logger.info("database_initialized")
    except Exception as e:
        logger.warning(
            "database_initialization_failed",
            error=str(e),
            note="Continuing without database - engine endpoints will return 503",
        )

    if app.state.pool is not None:
        engine = build_engine(app.state.pool, settings)
        app.state.engine = engine
        if settings.scheduler_enabled:
            engine.jobs.start()
        else:
            logger.info("job_scheduler_disabled")

    logger.info(
        "application_started",
        engine_timezone=settings.engine_timezone,
        log_level=settings.log_level,
    )

    yield

    # Shutdown
    if app.state.engine is not None:
        await app.state.engine.close()

    if app.state.pool is not None:
        await close_database(app.state.pool)

    logger.info("application_shutdown")


app = FastAPI(
    title="Engagement Scheduling Engine",
    description="Proactive learner touchpoints by push notification and voice call",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with a readable first-error detail."""
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    logger = structlog.get_logger()

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    logger.warning(
        "validation_error",
        correlation_id=correlation_id,
        detail=detail,
    )

    return JSONResponse(
        status_code=422,
        content={
            "error": "Validation error",
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


# Correlation ID middleware for request tracking and observability
app.add_middleware(CorrelationIdMiddleware)

app.include_router(health_router)
app.include_router(calls_router)
app.include_router(notifications_router)
app.include_router(engine_router)
