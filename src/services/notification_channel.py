"""Notification channel: push delivery to every active subscription of a user."""

import asyncio
from uuid import UUID, uuid4

import structlog

from src.config import Settings
from src.models.notification import NotificationPayload, PushOutcome, SendResult
from src.models.preferences import TouchpointCategory
from src.services import notification_payloads

logger = structlog.get_logger(__name__)

NOT_CONFIGURED = "Push notifications not configured - VAPID keys missing"
NO_SUBSCRIPTIONS = "No active subscriptions found for user"
ALL_ENDPOINTS_FAILED = "Failed to send to all subscriptions"


class NotificationChannel:
    """Formats and hands notifications to the push transport.

    Expected failures (not configured, no subscriptions, rejected endpoints)
    come back as ``SendResult`` values and are never raised.
    """

    def __init__(self, repository, transport, settings: Settings):
        self._repository = repository
        self._transport = transport
        self._configured = settings.push_configured
        self._ttl_seconds = settings.push_ttl_seconds

    async def send(
        self,
        user_id: UUID,
        payload: NotificationPayload,
        category: TouchpointCategory,
    ) -> SendResult:
        """Send ``payload`` to all of the user's active subscriptions.

        Succeeds when at least one endpoint accepted the payload. Endpoints
        reported permanently gone are deactivated whatever the overall result.
        The delivered payload carries the attempt's log id as ``notificationId``
        so the client can report clicks.
        """
        if not self._configured:
            return SendResult(success=False, error=NOT_CONFIGURED)

        log_id = uuid4()

        subscriptions = await self._repository.get_active_subscriptions(user_id)
        if not subscriptions:
            logger.info("notification_no_subscriptions", user_id=str(user_id))
            await self._log_attempt(log_id, user_id, payload, category, delivered=False, error=NO_SUBSCRIPTIONS)
            return SendResult(success=False, error=NO_SUBSCRIPTIONS)

        wire_payload = payload.model_copy(
            update={"data": {**payload.data, "notificationId": str(log_id)}}
        )
        outcomes = await asyncio.gather(
            *(
                self._transport.send_to_endpoint(sub, wire_payload, self._ttl_seconds)
                for sub in subscriptions
            ),
            return_exceptions=True,
        )

        delivered = 0
        for subscription, outcome in zip(subscriptions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "push_endpoint_error",
                    user_id=str(user_id),
                    subscription_id=str(subscription.id),
                    error=str(outcome),
                )
            elif outcome == PushOutcome.SUCCESS:
                delivered += 1
            elif outcome == PushOutcome.PERMANENT_FAILURE:
                await self._repository.deactivate_subscription(subscription.id)

        success = delivered > 0
        error = None if success else ALL_ENDPOINTS_FAILED
        await self._log_attempt(log_id, user_id, payload, category, delivered=success, error=error)

        logger.info(
            "notification_sent" if success else "notification_failed",
            user_id=str(user_id),
            category=category.value,
            tag=payload.tag,
            endpoints=len(subscriptions),
            delivered=delivered,
        )
        return SendResult(success=success, error=error, delivered_count=delivered)

    async def _log_attempt(
        self,
        log_id: UUID,
        user_id: UUID,
        payload: NotificationPayload,
        category: TouchpointCategory,
        delivered: bool,
        error: str | None,
    ) -> None:
        """Append one notification log row per attempt. Failures are logged only."""
        metadata = dict(payload.data)
        if error:
            metadata["error"] = error
        try:
            await self._repository.insert_notification_log(
                user_id=user_id,
                category=category.value,
                title=payload.title,
                message=payload.body,
                delivered=delivered,
                metadata=metadata,
                log_id=log_id,
            )
        except Exception as e:
            logger.warning(
                "notification_log_failed",
                user_id=str(user_id),
                error=str(e),
            )

    async def track_click(self, log_id: UUID) -> bool:
        """Mark a notification as clicked. Returns False for an unknown log id."""
        found = await self._repository.mark_notification_clicked(log_id)
        if found:
            logger.info("notification_click_tracked", notification_id=str(log_id))
        else:
            logger.warning("notification_click_unknown", notification_id=str(log_id))
        return found

    async def send_bulk(
        self,
        user_ids: list[UUID],
        payload: NotificationPayload,
        category: TouchpointCategory,
    ) -> tuple[int, int]:
        """Send the same payload to many users. Returns (succeeded, failed)."""
        results = await asyncio.gather(
            *(self.send(user_id, payload, category) for user_id in user_ids),
            return_exceptions=True,
        )
        succeeded = sum(1 for r in results if isinstance(r, SendResult) and r.success)
        return succeeded, len(results) - succeeded

    async def send_lesson_reminder(self, user_id: UUID, lesson_title: str) -> SendResult:
        return await self.send(
            user_id,
            notification_payloads.lesson_reminder(lesson_title),
            TouchpointCategory.LESSON_REMINDERS,
        )

    async def send_new_content(
        self, user_id: UUID, content_title: str, content_id: UUID | str
    ) -> SendResult:
        return await self.send(
            user_id,
            notification_payloads.new_content(content_title, content_id),
            TouchpointCategory.NEW_CONTENT,
        )

    async def send_achievement(self, user_id: UUID, achievement_title: str) -> SendResult:
        return await self.send(
            user_id,
            notification_payloads.achievement(achievement_title),
            TouchpointCategory.ACHIEVEMENTS,
        )

    async def send_insight(self, user_id: UUID, message: str) -> SendResult:
        return await self.send(
            user_id,
            notification_payloads.insight(message),
            TouchpointCategory.INSIGHTS,
        )
