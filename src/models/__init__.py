"""Models package exports."""

from src.models.call import CallLog, CallResult, CallStatus, CallType
from src.models.campaign import CampaignRunSummary, ContentRef, GoalAchievement, UserProfile
from src.models.events import EventStatus, ScheduledEvent, TickSummary
from src.models.notification import (
    NotificationLog,
    NotificationPayload,
    PushOutcome,
    PushSubscription,
    SendResult,
)
from src.models.preferences import (
    CallFrequency,
    PreferencesUpdate,
    TouchpointCategory,
    TouchpointKind,
    UserPreferences,
    Weekday,
)

__all__ = [
    "CallFrequency",
    "CallLog",
    "CallResult",
    "CallStatus",
    "CallType",
    "CampaignRunSummary",
    "ContentRef",
    "EventStatus",
    "GoalAchievement",
    "NotificationLog",
    "NotificationPayload",
    "PreferencesUpdate",
    "PushOutcome",
    "PushSubscription",
    "ScheduledEvent",
    "SendResult",
    "TickSummary",
    "TouchpointCategory",
    "TouchpointKind",
    "UserPreferences",
    "Weekday",
]
