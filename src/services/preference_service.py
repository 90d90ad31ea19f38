"""Read-through access to per-user delivery preferences."""

from typing import Optional
from uuid import UUID

import structlog

from src.models.preferences import PreferencesUpdate, UserPreferences

logger = structlog.get_logger(__name__)


class PreferenceService:
    """Preference store accessor backed by the engagement repository."""

    def __init__(self, repository):
        self._repository = repository

    async def get_preferences(self, user_id: UUID) -> Optional[UserPreferences]:
        """Get stored preferences, or None when the user has no record."""
        return await self._repository.get_preferences(user_id)

    async def update_preferences(
        self, user_id: UUID, update: PreferencesUpdate
    ) -> UserPreferences:
        """Create or update preferences (upsert)."""
        prefs = await self._repository.upsert_preferences(user_id, update)
        logger.info(
            "preferences_saved",
            user_id=str(user_id),
            fields=sorted(update.model_dump(exclude_none=True).keys()),
        )
        return prefs
