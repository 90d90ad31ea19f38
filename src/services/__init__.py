"""Services package exports."""

from src.services.activity_scanner import ActivityScanner
from src.services.call_channel import CallChannel
from src.services.campaign_jobs import CampaignJobs, GoalRule
from src.services.clock import Clock
from src.services.dispatcher import EventDispatcher
from src.services.eligibility import EligibilityService, can_deliver, within_call_frequency
from src.services.event_scheduler import EventScheduler
from src.services.job_scheduler import JobScheduler
from src.services.logging_service import configure_logging, get_logger
from src.services.notification_channel import NotificationChannel
from src.services.preference_service import PreferenceService

__all__ = [
    "ActivityScanner",
    "CallChannel",
    "CampaignJobs",
    "Clock",
    "EligibilityService",
    "EventDispatcher",
    "EventScheduler",
    "GoalRule",
    "JobScheduler",
    "NotificationChannel",
    "PreferenceService",
    "can_deliver",
    "configure_logging",
    "get_logger",
    "within_call_frequency",
]
