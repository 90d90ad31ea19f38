"""Health endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.database import health_check as db_health_check

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Health check endpoint.

    Returns:
        Status, timestamp in ISO8601 format, database and scheduler state
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    pool = getattr(request.app.state, "pool", None)
    if pool is None:
        health_status["database"] = "unavailable"
    else:
        db_healthy = await db_health_check(pool)
        health_status["database"] = "healthy" if db_healthy else "unhealthy"

    engine = getattr(request.app.state, "engine", None)
    health_status["scheduler"] = "running" if engine and engine.jobs.running else "stopped"

    return health_status
