"""Client endpoints for push notifications."""

from fastapi import APIRouter, Depends, HTTPException, status

from src.api.dependencies import get_engine
from src.engine import Engine
from src.models.notification import TrackClickRequest

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post("/track-click")
async def track_click(
    request: TrackClickRequest,
    engine: Engine = Depends(get_engine),
) -> dict:
    """Record that the user opened a notification.

    Called by the service worker with the ``notificationId`` from the payload.

    Raises:
        HTTPException 404: If no notification log has that id
    """
    if not await engine.notifications.track_click(request.notification_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return {"success": True}
