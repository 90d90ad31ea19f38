"""Storage access for the engagement engine.

All reads and writes of the engine go through ``EngagementRepository``. Rows
are converted to models here, which is also where category strings are
validated against ``TouchpointCategory``.
"""

import json
from datetime import datetime, time
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from src.models.call import CallLog, CallStatus, CallType
from src.models.campaign import ContentRef, UserProfile
from src.models.events import EventStatus, ScheduledEvent
from src.models.notification import NotificationLog, PushSubscription
from src.models.preferences import (
    CallFrequency,
    PreferencesUpdate,
    TouchpointCategory,
    TouchpointKind,
    UserPreferences,
    Weekday,
)

logger = structlog.get_logger(__name__)

_PREFERENCE_COLUMNS = """
    user_id, notifications_enabled, push_enabled, notification_time_start,
    notification_time_end, notification_types, calls_enabled, call_time_start,
    call_time_end, call_frequency, preferred_call_duration, timezone, quiet_days
"""

_EVENT_COLUMNS = """
    id, user_id, event_type, category, scheduled_for, status, payload,
    error, created_at, processed_at
"""

# Terminal call statuses as stored, including the provider's hyphenated spelling
_TERMINAL_CALL_STATUSES = sorted(
    {status.value for status in CallStatus if status.is_terminal} | {"no-answer"}
)

_CALL_LOG_COLUMNS = """
    id, user_id, call_type, call_sid, phone_number, content_id, audio_url,
    status, duration, created_at, completed_at, user_responded, response_data
"""


def _load_json(value) -> dict:
    if value is None:
        return {}
    return json.loads(value) if isinstance(value, str) else dict(value)


def _parse_notification_types(user_id: UUID, raw) -> dict[TouchpointCategory, bool]:
    types: dict[TouchpointCategory, bool] = {}
    for key, enabled in _load_json(raw).items():
        try:
            category = TouchpointCategory(key)
        except ValueError:
            logger.warning("unknown_notification_type_ignored", user_id=str(user_id), key=key)
            continue
        types[category] = bool(enabled)
    return types


def _row_to_preferences(row) -> UserPreferences:
    return UserPreferences(
        user_id=row["user_id"],
        notifications_enabled=row["notifications_enabled"],
        push_enabled=row["push_enabled"],
        calls_enabled=row["calls_enabled"],
        notification_window_start=row["notification_time_start"],
        notification_window_end=row["notification_time_end"],
        call_window_start=row["call_time_start"],
        call_window_end=row["call_time_end"],
        quiet_days={Weekday(day.lower()) for day in (row["quiet_days"] or [])},
        notification_types=_parse_notification_types(row["user_id"], row["notification_types"]),
        call_frequency=CallFrequency(row["call_frequency"]),
        preferred_call_duration=row["preferred_call_duration"],
        timezone=row["timezone"],
    )


def _row_to_event(row) -> ScheduledEvent:
    return ScheduledEvent(
        id=row["id"],
        user_id=row["user_id"],
        event_type=TouchpointKind(row["event_type"]),
        category=TouchpointCategory(row["category"]),
        scheduled_for=row["scheduled_for"],
        status=EventStatus(row["status"]),
        payload=_load_json(row["payload"]),
        error=row["error"],
        created_at=row["created_at"],
        processed_at=row["processed_at"],
    )


def _row_to_call_log(row) -> CallLog:
    response_data = row["response_data"]
    return CallLog(
        id=row["id"],
        user_id=row["user_id"],
        call_type=CallType(row["call_type"]),
        call_sid=row["call_sid"],
        phone_number=row["phone_number"],
        content_id=row["content_id"],
        audio_url=row["audio_url"],
        status=CallStatus.parse(row["status"]),
        duration_seconds=row["duration"],
        created_at=row["created_at"],
        completed_at=row["completed_at"],
        user_responded=row["user_responded"],
        response_data=_load_json(response_data) if response_data is not None else None,
    )


class EngagementRepository:
    """Async repository over the engine's PostgreSQL tables."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preferences(self, user_id: UUID) -> Optional[UserPreferences]:
        """Get preferences for a user, or None if the user has none stored."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_PREFERENCE_COLUMNS} FROM user_preferences WHERE user_id = $1",
                user_id,
            )

        if row is None:
            return None
        return _row_to_preferences(row)

    async def upsert_preferences(
        self, user_id: UUID, update: PreferencesUpdate
    ) -> UserPreferences:
        """Create or partially update preferences for a user.

        Raises:
            ValueError: If the merged preferences would have an inverted window
        """
        current = await self.get_preferences(user_id) or UserPreferences(user_id=user_id)
        merged = current.model_copy(update=update.model_dump(exclude_none=True))

        # Partial updates are re-checked against the stored counterpart bound.
        PreferencesUpdate(
            notification_window_start=merged.notification_window_start,
            notification_window_end=merged.notification_window_end,
            call_window_start=merged.call_window_start,
            call_window_end=merged.call_window_end,
        )

        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO user_preferences
                    (user_id, notifications_enabled, push_enabled, notification_time_start,
                     notification_time_end, notification_types, calls_enabled, call_time_start,
                     call_time_end, call_frequency, preferred_call_duration, timezone,
                     quiet_days, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, NOW(), NOW())
                ON CONFLICT (user_id) DO UPDATE SET
                    notifications_enabled = EXCLUDED.notifications_enabled,
                    push_enabled = EXCLUDED.push_enabled,
                    notification_time_start = EXCLUDED.notification_time_start,
                    notification_time_end = EXCLUDED.notification_time_end,
                    notification_types = EXCLUDED.notification_types,
                    calls_enabled = EXCLUDED.calls_enabled,
                    call_time_start = EXCLUDED.call_time_start,
                    call_time_end = EXCLUDED.call_time_end,
                    call_frequency = EXCLUDED.call_frequency,
                    preferred_call_duration = EXCLUDED.preferred_call_duration,
                    timezone = EXCLUDED.timezone,
                    quiet_days = EXCLUDED.quiet_days,
                    updated_at = NOW()
                RETURNING {_PREFERENCE_COLUMNS}
                """,
                user_id,
                merged.notifications_enabled,
                merged.push_enabled,
                merged.notification_window_start,
                merged.notification_window_end,
                json.dumps({k.value: v for k, v in merged.notification_types.items()}),
                merged.calls_enabled,
                merged.call_window_start,
                merged.call_window_end,
                merged.call_frequency.value,
                merged.preferred_call_duration,
                merged.timezone,
                sorted(day.value for day in merged.quiet_days),
            )

        logger.info("user_preferences_updated", user_id=str(user_id))
        return _row_to_preferences(row)

    # ------------------------------------------------------------------
    # Profiles and content (owned by the learning platform, read-only here)
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: UUID) -> Optional[UserProfile]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, full_name, phone_number, interests FROM profiles WHERE id = $1",
                user_id,
            )

        if row is None:
            return None
        return UserProfile(
            id=row["id"],
            full_name=row["full_name"],
            phone_number=row["phone_number"],
            interests=list(row["interests"] or []),
        )

    async def get_content(self, content_id: UUID) -> Optional[ContentRef]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, title, description, category FROM learning_content WHERE id = $1",
                content_id,
            )

        if row is None:
            return None
        return ContentRef(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            category=row["category"],
        )

    async def get_daily_playlist_content_ids(self, user_id: UUID) -> list[UUID]:
        """Content ids of the user's active daily playlist, ranked."""
        async with self._pool.acquire() as conn:
            content_ids = await conn.fetchval(
                """
                SELECT content_ids FROM playlists
                WHERE user_id = $1 AND playlist_type = 'daily' AND is_active = TRUE
                ORDER BY created_at DESC
                LIMIT 1
                """,
                user_id,
            )

        return list(content_ids or [])

    # ------------------------------------------------------------------
    # Activity queries
    # ------------------------------------------------------------------

    async def find_users_without_sessions_since(self, since: datetime) -> list[UUID]:
        """Users with no completed learning session started at or after ``since``."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT p.id FROM profiles p
                WHERE NOT EXISTS (
                    SELECT 1 FROM learning_sessions s
                    WHERE s.user_id = p.id
                      AND s.started_at >= $1
                      AND s.completed_at IS NOT NULL
                )
                ORDER BY p.id
                """,
                since,
            )

        return [row["id"] for row in rows]

    async def find_users_with_interest(self, category: str) -> list[UUID]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT id FROM profiles WHERE $1 = ANY(interests) ORDER BY id",
                category,
            )

        return [row["id"] for row in rows]

    async def find_daily_call_candidates(self) -> list[tuple[UUID, time]]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT user_id, call_time_start FROM user_preferences
                WHERE calls_enabled = TRUE AND call_frequency = 'daily'
                ORDER BY user_id
                """
            )

        return [(row["user_id"], row["call_time_start"]) for row in rows]

    async def last_call_scheduled_at(self, user_id: UUID) -> Optional[datetime]:
        """Latest fire time of a non-failed call event for the user."""
        async with self._pool.acquire() as conn:
            return await conn.fetchval(
                """
                SELECT MAX(scheduled_for) FROM scheduled_events
                WHERE user_id = $1 AND event_type = 'call' AND status <> 'failed'
                """,
                user_id,
            )

    # ------------------------------------------------------------------
    # Scheduled events
    # ------------------------------------------------------------------

    async def insert_event(
        self,
        user_id: UUID,
        event_type: TouchpointKind,
        category: TouchpointCategory,
        scheduled_for: datetime,
        payload: dict,
    ) -> ScheduledEvent:
        """Insert a new pending event."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO scheduled_events
                    (id, user_id, event_type, category, scheduled_for, status, payload, created_at)
                VALUES ($1, $2, $3, $4, $5, 'pending', $6, NOW())
                RETURNING {_EVENT_COLUMNS}
                """,
                uuid4(),
                user_id,
                event_type.value,
                category.value,
                scheduled_for,
                json.dumps(payload),
            )

        return _row_to_event(row)

    async def fetch_due_events(self, now: datetime, limit: int) -> list[ScheduledEvent]:
        """Pending events due at ``now``, oldest first."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_EVENT_COLUMNS} FROM scheduled_events
                WHERE status = 'pending' AND scheduled_for <= $1
                ORDER BY scheduled_for ASC, created_at ASC
                LIMIT $2
                """,
                now,
                limit,
            )

        return [_row_to_event(row) for row in rows]

    async def claim_event(self, event_id: UUID) -> bool:
        """Move an event from pending to processing.

        A single conditional update, so only one dispatcher can win the row.

        Returns:
            True if this caller claimed the event
        """
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE scheduled_events SET status = 'processing'
                WHERE id = $1 AND status = 'pending'
                """,
                event_id,
            )

        return result == "UPDATE 1"

    async def finish_event(
        self,
        event_id: UUID,
        status: EventStatus,
        processed_at: datetime,
        error: Optional[str] = None,
    ) -> bool:
        """Move a processing event to a terminal status.

        Returns:
            True if the event was in processing and has been updated
        """
        if status not in (EventStatus.COMPLETED, EventStatus.FAILED):
            raise ValueError(f"{status.value} is not a terminal status")

        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE scheduled_events
                SET status = $2, processed_at = $3, error = $4
                WHERE id = $1 AND status = 'processing'
                """,
                event_id,
                status.value,
                processed_at,
                error,
            )

        return result == "UPDATE 1"

    async def get_event(self, event_id: UUID) -> Optional[ScheduledEvent]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_EVENT_COLUMNS} FROM scheduled_events WHERE id = $1",
                event_id,
            )

        return _row_to_event(row) if row else None

    async def delete_event(self, event_id: UUID) -> bool:
        """Delete an event that has not been claimed yet."""
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM scheduled_events WHERE id = $1 AND status = 'pending'",
                event_id,
            )

        return result == "DELETE 1"

    # ------------------------------------------------------------------
    # Push subscriptions and notification logs
    # ------------------------------------------------------------------

    async def get_active_subscriptions(self, user_id: UUID) -> list[PushSubscription]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, user_id, endpoint, keys, is_active FROM push_subscriptions
                WHERE user_id = $1 AND is_active = TRUE
                """,
                user_id,
            )

        return [
            PushSubscription(
                id=row["id"],
                user_id=row["user_id"],
                endpoint=row["endpoint"],
                keys=_load_json(row["keys"]),
                is_active=row["is_active"],
            )
            for row in rows
        ]

    async def deactivate_subscription(self, subscription_id: UUID) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE push_subscriptions SET is_active = FALSE, updated_at = NOW()
                WHERE id = $1
                """,
                subscription_id,
            )

        logger.info("push_subscription_deactivated", subscription_id=str(subscription_id))

    async def insert_notification_log(
        self,
        user_id: UUID,
        category: str,
        title: str,
        message: str,
        delivered: bool,
        metadata: dict,
        log_id: Optional[UUID] = None,
    ) -> NotificationLog:
        log_id = log_id or uuid4()
        async with self._pool.acquire() as conn:
            sent_at = await conn.fetchval(
                """
                INSERT INTO notification_logs
                    (id, user_id, notification_type, category, title, message, sent_at, delivered, metadata)
                VALUES ($1, $2, 'push', $3, $4, $5, NOW(), $6, $7)
                RETURNING sent_at
                """,
                log_id,
                user_id,
                category,
                title,
                message,
                delivered,
                json.dumps(metadata),
            )

        return NotificationLog(
            id=log_id,
            user_id=user_id,
            category=category,
            title=title,
            message=message,
            sent_at=sent_at,
            delivered=delivered,
            metadata=metadata,
        )

    async def mark_notification_clicked(self, log_id: UUID) -> bool:
        """Record a click on a delivered notification. Repeat clicks keep the first time.

        Returns:
            True if the notification log exists
        """
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE notification_logs
                SET clicked = TRUE, clicked_at = COALESCE(clicked_at, NOW())
                WHERE id = $1
                """,
                log_id,
            )

        return result == "UPDATE 1"

    # ------------------------------------------------------------------
    # Call logs
    # ------------------------------------------------------------------

    async def insert_call_log(
        self,
        user_id: UUID,
        call_type: CallType,
        phone_number: str,
        content_id: Optional[UUID] = None,
        audio_url: Optional[str] = None,
    ) -> CallLog:
        """Insert a call log in the queued state."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO call_logs
                    (id, user_id, call_type, phone_number, content_id, audio_url, status, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, 'queued', NOW())
                RETURNING {_CALL_LOG_COLUMNS}
                """,
                uuid4(),
                user_id,
                call_type.value,
                phone_number,
                content_id,
                audio_url,
            )

        return _row_to_call_log(row)

    async def attach_call_sid(self, call_log_id: UUID, call_sid: str) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                "UPDATE call_logs SET call_sid = $2, status = 'initiated' WHERE id = $1",
                call_log_id,
                call_sid,
            )

    async def update_call_status(
        self,
        call_log_id: UUID,
        status: CallStatus,
        duration_seconds: Optional[int] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """Set a call's status; duration and completion time are kept when not given.

        A call that already reached a terminal status is left untouched, so a
        late or out-of-order provider callback cannot reopen it.

        Returns:
            True if the log existed and was not yet terminal
        """
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE call_logs
                SET status = $2,
                    duration = COALESCE($3, duration),
                    completed_at = COALESCE($4, completed_at)
                WHERE id = $1 AND status <> ALL($5::text[])
                """,
                call_log_id,
                status.value,
                duration_seconds,
                completed_at,
                _TERMINAL_CALL_STATUSES,
            )

        return result == "UPDATE 1"

    async def get_call_log(self, call_log_id: UUID) -> Optional[CallLog]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_CALL_LOG_COLUMNS} FROM call_logs WHERE id = $1",
                call_log_id,
            )

        return _row_to_call_log(row) if row else None

    async def get_call_log_by_sid(self, call_sid: str) -> Optional[CallLog]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_CALL_LOG_COLUMNS} FROM call_logs WHERE call_sid = $1",
                call_sid,
            )

        return _row_to_call_log(row) if row else None

    async def record_call_response(self, call_log_id: UUID, response_data: dict) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE call_logs SET user_responded = TRUE, response_data = $2
                WHERE id = $1
                """,
                call_log_id,
                json.dumps(response_data),
            )
