"""Activity scanner producing candidate users for campaign jobs."""

from datetime import time, timedelta
from uuid import UUID

import structlog

logger = structlog.get_logger(__name__)


class ActivityScanner:
    """Read-only queries over learner activity.

    Every query returns an empty list when nothing matches. Storage errors are
    not swallowed: they propagate so the calling job reports the failure.
    """

    def __init__(self, repository, clock):
        self._repository = repository
        self._clock = clock

    async def find_inactive_users(self, threshold_days: int) -> list[UUID]:
        """Users with no completed session started within ``threshold_days``."""
        if threshold_days < 0:
            raise ValueError("threshold_days must not be negative")

        since = self._clock() - timedelta(days=threshold_days)
        user_ids = await self._repository.find_users_without_sessions_since(since)

        logger.info(
            "inactive_users_found",
            count=len(user_ids),
            threshold_days=threshold_days,
            since=since.isoformat(),
        )
        return user_ids

    async def find_interested_users(self, category: str) -> list[UUID]:
        """Users whose stated interests include ``category``."""
        user_ids = await self._repository.find_users_with_interest(category)
        logger.info("interested_users_found", count=len(user_ids), category=category)
        return user_ids

    async def find_daily_call_candidates(self) -> list[tuple[UUID, time]]:
        """Users with calls enabled at daily frequency, with their call window start."""
        candidates = await self._repository.find_daily_call_candidates()
        logger.info("daily_call_candidates_found", count=len(candidates))
        return candidates
