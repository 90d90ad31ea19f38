"""Construction of the engagement engine from a pool and settings."""

from dataclasses import dataclass
from typing import Iterable

import asyncpg
import structlog

from src.config import Settings
from src.repository import EngagementRepository
from src.services.activity_scanner import ActivityScanner
from src.services.call_channel import CallChannel
from src.services.call_scripts import CallScripts
from src.services.campaign_jobs import CampaignJobs, GoalRule
from src.services.clock import Clock
from src.services.dispatcher import EventDispatcher
from src.services.eligibility import EligibilityService
from src.services.event_scheduler import EventScheduler
from src.services.job_scheduler import JobScheduler
from src.services.notification_channel import NotificationChannel
from src.services.preference_service import PreferenceService
from src.services.push_transport import WebPushTransport
from src.services.telephony_transport import TwilioCallTransport

logger = structlog.get_logger(__name__)


@dataclass
class Engine:
    """Every engine component, wired together."""

    settings: Settings
    clock: Clock
    repository: EngagementRepository
    preferences: PreferenceService
    eligibility: EligibilityService
    scanner: ActivityScanner
    scheduler: EventScheduler
    notifications: NotificationChannel
    calls: CallChannel
    dispatcher: EventDispatcher
    campaigns: CampaignJobs
    jobs: JobScheduler
    push_transport: WebPushTransport
    telephony_transport: TwilioCallTransport

    async def close(self) -> None:
        await self.jobs.stop()
        await self.telephony_transport.close()


def register_default_jobs(
    jobs: JobScheduler,
    settings: Settings,
    campaigns: CampaignJobs,
    dispatcher: EventDispatcher,
) -> None:
    """Register the four recurring jobs, in cadence order."""
    jobs.add_job("daily_micro_lessons", settings.micro_lesson_cron, campaigns.schedule_daily_micro_lessons)
    jobs.add_job("inactivity_sweep", settings.inactivity_cron, campaigns.inactivity_sweep)
    jobs.add_job("dispatcher_tick", settings.dispatcher_cron, dispatcher.tick)
    jobs.add_job("goal_achievement_sweep", settings.goal_sweep_cron, campaigns.goal_achievement_sweep)


def build_engine(
    pool: asyncpg.Pool,
    settings: Settings,
    goal_rules: Iterable[GoalRule] = (),
) -> Engine:
    """Build the engine. Jobs are registered but not started."""
    clock = Clock(settings.engine_timezone)
    repository = EngagementRepository(pool)
    preferences = PreferenceService(repository)
    eligibility = EligibilityService(preferences, clock)
    scanner = ActivityScanner(repository, clock)
    scheduler = EventScheduler(repository, clock)

    push_transport = WebPushTransport(settings)
    telephony_transport = TwilioCallTransport(settings)
    notifications = NotificationChannel(repository, push_transport, settings)
    calls = CallChannel(repository, telephony_transport, CallScripts(settings), settings)

    dispatcher = EventDispatcher(
        repository,
        eligibility,
        notifications,
        calls,
        clock,
        batch_size=settings.dispatcher_batch_size,
    )
    campaigns = CampaignJobs(
        scanner,
        eligibility,
        scheduler,
        notifications,
        calls,
        repository,
        settings,
        clock,
        goal_rules=goal_rules,
    )

    jobs = JobScheduler(clock)
    register_default_jobs(jobs, settings, campaigns, dispatcher)

    if not settings.push_configured:
        logger.warning("push_not_configured")
    if not settings.telephony_configured:
        logger.warning("telephony_not_configured")

    return Engine(
        settings=settings,
        clock=clock,
        repository=repository,
        preferences=preferences,
        eligibility=eligibility,
        scanner=scanner,
        scheduler=scheduler,
        notifications=notifications,
        calls=calls,
        dispatcher=dispatcher,
        campaigns=campaigns,
        jobs=jobs,
        push_transport=push_transport,
        telephony_transport=telephony_transport,
    )
