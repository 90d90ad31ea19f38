"""Scheduled event models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.models.preferences import TouchpointCategory, TouchpointKind


class EventStatus(str, Enum):
    """Scheduled event lifecycle: pending -> processing -> completed | failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ScheduledEvent(BaseModel):
    """A durable unit of work consumed by the dispatcher."""

    id: UUID
    user_id: UUID
    event_type: TouchpointKind
    category: TouchpointCategory
    scheduled_for: datetime
    status: EventStatus = EventStatus.PENDING
    payload: dict = Field(default_factory=dict)
    error: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None


class ScheduleEventRequest(BaseModel):
    """Operator request to schedule a touchpoint for immediate dispatch."""

    user_id: UUID
    event_type: TouchpointKind
    category: TouchpointCategory
    payload: dict = Field(default_factory=dict)


class TickSummary(BaseModel):
    """Outcome counters of one dispatcher tick."""

    fetched: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
