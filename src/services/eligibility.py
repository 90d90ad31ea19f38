"""Eligibility checks for proactive touchpoints.

``can_deliver`` is the single source of truth for whether a touchpoint may
fire. Campaign jobs call it before scheduling and the dispatcher calls it again
at fire time, since preferences can change in between.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from src.models.preferences import (
    TouchpointCategory,
    TouchpointKind,
    UserPreferences,
    Weekday,
)

logger = structlog.get_logger(__name__)


def can_deliver(
    category: TouchpointCategory,
    preferences: Optional[UserPreferences],
    now: datetime,
) -> bool:
    """Check whether a touchpoint of ``category`` may fire at ``now``.

    Fails closed: a missing preference record denies every category.

    Weekday and time of day are read from ``now`` as given. The user's
    ``timezone`` preference is not applied; callers pass the engine clock.

    Args:
        category: Touchpoint category being delivered
        preferences: The user's preferences, or None if none are stored
        now: Current time on the engine clock

    Returns:
        True if delivery is allowed
    """
    if preferences is None:
        return False

    kind = category.kind
    if kind == TouchpointKind.CALL:
        if not preferences.calls_enabled:
            return False
    elif not preferences.notifications_enabled or not preferences.push_enabled:
        return False

    # Missing key means enabled
    if preferences.notification_types.get(category) is False:
        return False

    if Weekday.of(now) in preferences.quiet_days:
        return False

    # Second precision, both bounds inclusive
    current = now.time().replace(microsecond=0, tzinfo=None)
    start, end = preferences.window_for(kind)
    if current < start or current > end:
        return False

    return True


def within_call_frequency(
    preferences: UserPreferences,
    last_call_at: Optional[datetime],
    now: datetime,
) -> bool:
    """Check the call frequency cap.

    Returns:
        False for ``never``; otherwise True when no call was scheduled yet or
        the last one is at least one frequency interval old
    """
    interval = preferences.call_frequency.min_interval
    if interval is None:
        return False
    if last_call_at is None:
        return True
    return now - last_call_at >= interval


class EligibilityService:
    """Looks up preferences and applies ``can_deliver``."""

    def __init__(self, preference_service, clock):
        self._preferences = preference_service
        self._clock = clock

    async def check(
        self,
        user_id: UUID,
        category: TouchpointCategory,
        now: Optional[datetime] = None,
    ) -> bool:
        """Check eligibility for one user and category at ``now`` (default: clock)."""
        moment = now or self._clock()
        preferences = await self._preferences.get_preferences(user_id)
        allowed = can_deliver(category, preferences, moment)

        if not allowed:
            logger.debug(
                "touchpoint_not_eligible",
                user_id=str(user_id),
                category=category.value,
                has_preferences=preferences is not None,
            )
        return allowed
