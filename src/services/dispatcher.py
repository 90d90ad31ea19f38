"""Event dispatcher: fires due scheduled events through the delivery channels."""

from uuid import UUID

import structlog

from src.models.call import CallResult, CallType
from src.models.events import EventStatus, ScheduledEvent, TickSummary
from src.models.notification import SendResult
from src.models.preferences import TouchpointCategory, TouchpointKind
from src.services.call_channel import NO_PHONE_NUMBER

logger = structlog.get_logger(__name__)

NOT_ELIGIBLE_AT_FIRE_TIME = "not eligible at fire time"

_DEFAULT_CALL_TYPES = {
    TouchpointCategory.MICRO_LESSON: CallType.MICRO_LESSON,
    TouchpointCategory.LESSON_AUDIO: CallType.AUDIO,
}


class EventDispatcher:
    """Consumes due pending events one tick at a time.

    Events of a batch are handled sequentially. Each one is claimed with a
    conditional update before anything is sent, so two overlapping ticks can
    never deliver the same event twice. Failed events stay failed; there is no
    requeue.
    """

    def __init__(
        self,
        repository,
        eligibility,
        notification_channel,
        call_channel,
        clock,
        batch_size: int = 50,
    ):
        self._repository = repository
        self._eligibility = eligibility
        self._notifications = notification_channel
        self._calls = call_channel
        self._clock = clock
        self._batch_size = batch_size

    async def tick(self) -> TickSummary:
        """Process up to ``batch_size`` due events, oldest first."""
        now = self._clock()
        events = await self._repository.fetch_due_events(now, self._batch_size)
        summary = TickSummary(fetched=len(events))

        for event in events:
            try:
                status = await self._process(event)
            except Exception as e:
                logger.error(
                    "event_processing_error",
                    event_id=str(event.id),
                    user_id=str(event.user_id),
                    category=event.category.value,
                    error=str(e),
                )
                status = await self._fail_after_error(event, e)

            if status == EventStatus.COMPLETED:
                summary.completed += 1
            elif status == EventStatus.FAILED:
                summary.failed += 1
            else:
                summary.skipped += 1

        if events:
            logger.info("dispatcher_tick_complete", **summary.model_dump())
        return summary

    async def _process(self, event: ScheduledEvent) -> EventStatus | None:
        if not await self._repository.claim_event(event.id):
            logger.info("event_already_claimed", event_id=str(event.id))
            return None

        now = self._clock()
        if not await self._eligibility.check(event.user_id, event.category, now):
            logger.info(
                "event_not_eligible_at_fire_time",
                event_id=str(event.id),
                user_id=str(event.user_id),
                category=event.category.value,
            )
            return await self._finish(event, EventStatus.FAILED, NOT_ELIGIBLE_AT_FIRE_TIME)

        try:
            if event.event_type == TouchpointKind.CALL:
                result = await self._dispatch_call(event)
            else:
                result = await self._dispatch_notification(event)
        except Exception as e:
            logger.error(
                "event_dispatch_error",
                event_id=str(event.id),
                user_id=str(event.user_id),
                category=event.category.value,
                error=str(e),
            )
            return await self._finish(event, EventStatus.FAILED, str(e) or type(e).__name__)

        if result.success:
            return await self._finish(event, EventStatus.COMPLETED)
        return await self._finish(event, EventStatus.FAILED, result.error)

    async def _fail_after_error(self, event: ScheduledEvent, error: Exception) -> EventStatus | None:
        """Best-effort failure write after a storage or eligibility error.

        Only an event still in ``processing`` is updated, so an event whose
        claim never went through stays pending.
        """
        try:
            return await self._finish(event, EventStatus.FAILED, str(error) or type(error).__name__)
        except Exception as e:
            logger.error("event_fail_write_error", event_id=str(event.id), error=str(e))
            return None

    async def _finish(
        self, event: ScheduledEvent, status: EventStatus, error: str | None = None
    ) -> EventStatus | None:
        updated = await self._repository.finish_event(event.id, status, self._clock(), error)
        if not updated:
            logger.warning(
                "event_finish_lost",
                event_id=str(event.id),
                status=status.value,
            )
            return None

        logger.info(
            "event_processed",
            event_id=str(event.id),
            category=event.category.value,
            status=status.value,
            error=error,
        )
        return status

    async def _dispatch_notification(self, event: ScheduledEvent) -> SendResult:
        payload = event.payload
        user_id: UUID = event.user_id
        category = event.category

        if category == TouchpointCategory.LESSON_REMINDERS:
            title = payload.get("lessonTitle") or payload.get("message") or "You have pending lessons"
            return await self._notifications.send_lesson_reminder(user_id, title)
        if category == TouchpointCategory.INSIGHTS:
            message = payload.get("message") or "New insight available"
            return await self._notifications.send_insight(user_id, message)
        if category == TouchpointCategory.NEW_CONTENT:
            return await self._notifications.send_new_content(
                user_id, payload.get("contentTitle", ""), payload.get("contentId", "")
            )
        if category == TouchpointCategory.ACHIEVEMENTS:
            title = payload.get("achievementTitle") or payload.get("message") or ""
            return await self._notifications.send_achievement(user_id, title)

        raise ValueError(f"no notification route for category {category.value}")

    async def _dispatch_call(self, event: ScheduledEvent) -> CallResult:
        payload = event.payload
        profile = await self._repository.get_profile(event.user_id)
        phone_number = profile.phone_number if profile else None
        if not phone_number:
            return CallResult(success=False, error=NO_PHONE_NUMBER)

        default_type = _DEFAULT_CALL_TYPES.get(event.category, CallType.REMINDER)
        call_type = CallType(payload.get("callType", default_type.value))
        content_id = payload.get("contentId")

        return await self._calls.place(
            user_id=event.user_id,
            phone_number=phone_number,
            call_type=call_type,
            message=payload.get("message") or payload.get("lessonContent"),
            content_id=UUID(str(content_id)) if content_id else None,
            audio_url=payload.get("audioUrl"),
        )
