"""Campaign jobs: periodic producers of touchpoints.

Each job scans for candidate users, checks eligibility and either sends a
notification directly or schedules an event for the dispatcher. A failure for
one user is logged and counted; it never aborts the rest of the run.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol
from uuid import UUID

import structlog

from src.config import Settings
from src.models.call import CallResult, CallType
from src.models.campaign import CampaignRunSummary, GoalAchievement
from src.models.preferences import TouchpointCategory, TouchpointKind
from src.services.call_scripts import fit_to_duration
from src.services.eligibility import within_call_frequency

logger = structlog.get_logger(__name__)

INACTIVITY_REMINDER = "It's been a while! Continue your learning journey"


class GoalRule(Protocol):
    """Source of goal achievements evaluated by the goal sweep."""

    name: str

    async def evaluate(self, now: datetime) -> list[GoalAchievement]:
        ...


def inactivity_call_message(full_name: Optional[str]) -> str:
    name = (full_name or "").split(" ")[0] or "there"
    return (
        f"Hi {name}! We noticed you haven't been active on your learning platform. "
        "Your personalized lessons are waiting for you."
    )


def micro_lesson_text(title: str, description: Optional[str]) -> str:
    return f"Today's lesson: {title}. {description or ''}".strip()


class CampaignJobs:
    """The engine's campaign jobs."""

    def __init__(
        self,
        scanner,
        eligibility,
        scheduler,
        notification_channel,
        call_channel,
        repository,
        settings: Settings,
        clock,
        goal_rules: Iterable[GoalRule] = (),
    ):
        self._scanner = scanner
        self._eligibility = eligibility
        self._scheduler = scheduler
        self._notifications = notification_channel
        self._calls = call_channel
        self._repository = repository
        self._clock = clock
        self._threshold_days = settings.inactivity_threshold_days
        self._platform_name = settings.platform_name
        self._goal_rules = list(goal_rules)

    async def inactivity_sweep(self) -> CampaignRunSummary:
        """Nudge users without recent sessions by push and, where allowed, by call."""
        summary = CampaignRunSummary(job="inactivity_sweep")
        user_ids = await self._scanner.find_inactive_users(self._threshold_days)
        summary.candidates = len(user_ids)

        for user_id in user_ids:
            try:
                touched = await self._nudge_inactive_user(user_id, summary)
                if not touched:
                    summary.skipped += 1
            except Exception as e:
                summary.errors += 1
                logger.error("inactivity_sweep_user_error", user_id=str(user_id), error=str(e))

        logger.info("campaign_run_complete", **summary.model_dump())
        return summary

    async def _nudge_inactive_user(self, user_id: UUID, summary: CampaignRunSummary) -> bool:
        now = self._clock()

        # Calls only go to users who can also receive the reminder
        if not await self._eligibility.check(user_id, TouchpointCategory.LESSON_REMINDERS, now):
            return False

        result = await self._notifications.send_lesson_reminder(user_id, INACTIVITY_REMINDER)
        if result.success:
            summary.notified += 1

        if not await self._eligibility.check(user_id, TouchpointCategory.INACTIVITY, now):
            return True

        preferences = await self._repository.get_preferences(user_id)
        last_call_at = await self._repository.last_call_scheduled_at(user_id)
        if not within_call_frequency(preferences, last_call_at, now):
            logger.debug("inactivity_call_frequency_capped", user_id=str(user_id))
            return True

        profile = await self._repository.get_profile(user_id)
        tomorrow = (now + timedelta(days=1)).date()
        await self._scheduler.schedule(
            user_id,
            TouchpointKind.CALL,
            TouchpointCategory.INACTIVITY,
            self._scheduler.at_time_on(tomorrow, preferences.call_window_start),
            {
                "callType": CallType.REMINDER.value,
                "message": inactivity_call_message(profile.full_name if profile else None),
            },
        )
        summary.scheduled += 1
        return True

    async def schedule_daily_micro_lessons(self) -> CampaignRunSummary:
        """Schedule today's micro-lesson call for every daily-call user.

        Not idempotent: running twice on the same day schedules two calls.
        """
        summary = CampaignRunSummary(job="daily_micro_lessons")
        candidates = await self._scanner.find_daily_call_candidates()
        summary.candidates = len(candidates)
        today = self._clock().date()

        for user_id, call_window_start in candidates:
            try:
                if await self._schedule_micro_lesson(user_id, call_window_start, today):
                    summary.scheduled += 1
                else:
                    summary.skipped += 1
            except Exception as e:
                summary.errors += 1
                logger.error("micro_lesson_schedule_error", user_id=str(user_id), error=str(e))

        logger.info("campaign_run_complete", **summary.model_dump())
        return summary

    async def _schedule_micro_lesson(self, user_id: UUID, call_window_start, today) -> bool:
        content_ids = await self._repository.get_daily_playlist_content_ids(user_id)
        if not content_ids:
            logger.debug("micro_lesson_no_playlist", user_id=str(user_id))
            return False

        content = await self._repository.get_content(content_ids[0])
        if content is None:
            logger.debug("micro_lesson_content_missing", user_id=str(user_id))
            return False

        preferences = await self._repository.get_preferences(user_id)
        duration = preferences.preferred_call_duration if preferences else None

        await self._scheduler.schedule(
            user_id,
            TouchpointKind.CALL,
            TouchpointCategory.MICRO_LESSON,
            self._scheduler.at_time_on(today, call_window_start),
            {
                "callType": CallType.MICRO_LESSON.value,
                "contentId": str(content.id),
                "lessonContent": fit_to_duration(
                    micro_lesson_text(content.title, content.description), duration
                ),
            },
        )
        return True

    async def goal_achievement_sweep(self) -> CampaignRunSummary:
        """Send achievement notifications produced by the registered goal rules."""
        summary = CampaignRunSummary(job="goal_achievement_sweep")
        now = self._clock()

        for rule in self._goal_rules:
            try:
                achievements = await rule.evaluate(now)
            except Exception as e:
                summary.errors += 1
                logger.error("goal_rule_error", rule=getattr(rule, "name", repr(rule)), error=str(e))
                continue

            summary.candidates += len(achievements)
            for achievement in achievements:
                try:
                    eligible = await self._eligibility.check(
                        achievement.user_id, TouchpointCategory.ACHIEVEMENTS, now
                    )
                    if not eligible:
                        summary.skipped += 1
                        continue
                    result = await self._notifications.send_achievement(
                        achievement.user_id, achievement.title
                    )
                    if result.success:
                        summary.notified += 1
                except Exception as e:
                    summary.errors += 1
                    logger.error(
                        "goal_achievement_send_error",
                        user_id=str(achievement.user_id),
                        error=str(e),
                    )

        logger.info("campaign_run_complete", **summary.model_dump())
        return summary

    async def broadcast_new_content(
        self, content_id: UUID, title: str, category: str
    ) -> CampaignRunSummary:
        """Tell users interested in ``category`` about a new content item."""
        summary = CampaignRunSummary(job="new_content")
        user_ids = await self._scanner.find_interested_users(category)
        summary.candidates = len(user_ids)
        now = self._clock()

        for user_id in user_ids:
            try:
                if not await self._eligibility.check(user_id, TouchpointCategory.NEW_CONTENT, now):
                    summary.skipped += 1
                    continue
                result = await self._notifications.send_new_content(user_id, title, content_id)
                if result.success:
                    summary.notified += 1
            except Exception as e:
                summary.errors += 1
                logger.error("new_content_send_error", user_id=str(user_id), error=str(e))

        logger.info("campaign_run_complete", **summary.model_dump())
        return summary

    async def place_test_call(self, user_id: UUID, phone_number: str) -> CallResult:
        """Place a reminder call right away, without eligibility checks."""
        logger.info("test_call_requested", user_id=str(user_id))
        return await self._calls.place(
            user_id=user_id,
            phone_number=phone_number,
            call_type=CallType.REMINDER,
            message=f"This is a test call from your {self._platform_name}.",
        )
