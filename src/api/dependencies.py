"""FastAPI dependencies for engine access and operator authorization."""

import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.config import Settings, get_settings
from src.engine import Engine

bearer_scheme = HTTPBearer(auto_error=False)


def get_engine(request: Request) -> Engine:
    """Return the engine built during application startup.

    Raises:
        HTTPException 503: If the engine is not available (database down at startup)
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engagement engine unavailable",
        )
    return engine


async def require_operator(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> None:
    """Require the operator API key as a Bearer token.

    With no key configured every operator request is rejected.

    Raises:
        HTTPException 401: If the token is missing or does not match
    """
    expected = settings.operator_api_key
    if (
        not expected
        or credentials is None
        or not secrets.compare_digest(credentials.credentials, expected)
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Operator credentials required",
            headers={"WWW-Authenticate": "Bearer"},
        )
