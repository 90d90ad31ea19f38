"""Operator endpoints for driving the engagement engine."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.api.dependencies import get_engine, require_operator
from src.engine import Engine
from src.models.campaign import CampaignRunSummary, NewContentRequest
from src.models.events import ScheduledEvent, ScheduleEventRequest
from src.models.preferences import PreferencesUpdate, UserPreferences

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/engine",
    tags=["Engine"],
    dependencies=[Depends(require_operator)],
)


@router.get("/jobs")
async def list_jobs(engine: Engine = Depends(get_engine)) -> dict:
    """Registered recurring jobs with their next fire time."""
    return {
        "running": engine.jobs.running,
        "jobs": [
            {"name": name, "next_fire_at": engine.jobs.next_fire_time(name).isoformat()}
            for name in engine.jobs.job_names
        ],
    }


@router.post("/jobs/{name}/run")
async def run_job(name: str, engine: Engine = Depends(get_engine)) -> dict:
    """Run a recurring job immediately.

    Returns 409 when the job is already running.
    """
    if name not in engine.jobs.job_names:
        raise HTTPException(status_code=404, detail=f"Unknown job: {name}")

    ran, result = await engine.jobs.run_now(name)
    if not ran:
        raise HTTPException(status_code=409, detail=f"Job {name} is already running")

    logger.info("job_triggered_manually", job=name)
    return {
        "job": name,
        "result": result.model_dump(mode="json") if isinstance(result, BaseModel) else None,
    }


@router.post("/content")
async def announce_new_content(
    request: NewContentRequest,
    engine: Engine = Depends(get_engine),
) -> CampaignRunSummary:
    """Notify users interested in the content's category."""
    return await engine.campaigns.broadcast_new_content(
        request.content_id, request.title, request.category
    )


@router.post("/events", status_code=status.HTTP_201_CREATED)
async def schedule_event(
    request: ScheduleEventRequest,
    engine: Engine = Depends(get_engine),
) -> ScheduledEvent:
    """Schedule a touchpoint for the next dispatcher tick."""
    try:
        return await engine.scheduler.schedule_now(
            request.user_id, request.event_type, request.category, request.payload
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/events/{event_id}")
async def get_event(event_id: UUID, engine: Engine = Depends(get_engine)) -> ScheduledEvent:
    event = await engine.repository.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@router.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(event_id: UUID, engine: Engine = Depends(get_engine)) -> None:
    """Delete a pending event. Claimed or finished events are kept."""
    if await engine.repository.delete_event(event_id):
        logger.info("event_deleted", event_id=str(event_id))
        return

    if await engine.repository.get_event(event_id) is None:
        raise HTTPException(status_code=404, detail="Event not found")
    raise HTTPException(status_code=409, detail="Only pending events can be deleted")


@router.get("/preferences/{user_id}")
async def get_preferences(user_id: UUID, engine: Engine = Depends(get_engine)) -> UserPreferences:
    preferences = await engine.preferences.get_preferences(user_id)
    if preferences is None:
        raise HTTPException(status_code=404, detail="Preferences not found")
    return preferences


@router.patch("/preferences/{user_id}")
async def update_preferences(
    user_id: UUID,
    update: PreferencesUpdate,
    engine: Engine = Depends(get_engine),
) -> UserPreferences:
    """Create or partially update a user's preferences."""
    try:
        return await engine.preferences.update_preferences(user_id, update)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
