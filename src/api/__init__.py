"""HTTP API package."""

from src.api.calls import router as calls_router
from src.api.engine import router as engine_router
from src.api.health import router as health_router
from src.api.middleware import CorrelationIdMiddleware
from src.api.notifications import router as notifications_router

__all__ = [
    "calls_router",
    "engine_router",
    "health_router",
    "notifications_router",
    "CorrelationIdMiddleware",
]
