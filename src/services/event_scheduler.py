"""Event scheduler: turns touchpoint requests into durable pending events."""

from datetime import date, datetime, time
from typing import Optional
from uuid import UUID

import structlog

from src.models.events import ScheduledEvent
from src.models.preferences import TouchpointCategory, TouchpointKind

logger = structlog.get_logger(__name__)


class EventScheduler:
    """Writes pending ``ScheduledEvent`` rows.

    Eligibility is not checked here. Producers decide whether to schedule and
    the dispatcher re-checks when the event fires.
    """

    def __init__(self, repository, clock):
        self._repository = repository
        self._clock = clock

    async def schedule(
        self,
        user_id: UUID,
        event_type: TouchpointKind,
        category: TouchpointCategory,
        when: datetime,
        payload: Optional[dict] = None,
    ) -> ScheduledEvent:
        """Create a pending event firing at ``when``.

        Raises:
            ValueError: If the category does not belong to ``event_type``
        """
        if category.kind != event_type:
            raise ValueError(
                f"category {category.value} cannot be delivered as {event_type.value}"
            )

        if when.tzinfo is None:
            when = when.replace(tzinfo=self._clock().tzinfo)

        event = await self._repository.insert_event(
            user_id=user_id,
            event_type=event_type,
            category=category,
            scheduled_for=when,
            payload=payload or {},
        )

        logger.info(
            "event_scheduled",
            event_id=str(event.id),
            user_id=str(user_id),
            event_type=event_type.value,
            category=category.value,
            scheduled_for=when.isoformat(),
        )
        return event

    async def schedule_now(
        self,
        user_id: UUID,
        event_type: TouchpointKind,
        category: TouchpointCategory,
        payload: Optional[dict] = None,
    ) -> ScheduledEvent:
        """Create an event due immediately; the next dispatcher tick picks it up."""
        return await self.schedule(user_id, event_type, category, self._clock(), payload)

    def at_time_on(self, day: date, time_of_day: time) -> datetime:
        """Combine a date and a window start on the engine clock."""
        return datetime.combine(day, time_of_day.replace(tzinfo=None), tzinfo=self._clock().tzinfo)
