"""Touchpoint categories and per-user delivery preferences."""

from datetime import datetime, time, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class TouchpointKind(str, Enum):
    """Delivery kind of a touchpoint."""

    NOTIFICATION = "notification"
    CALL = "call"


class TouchpointCategory(str, Enum):
    """Closed set of touchpoint categories.

    Notification categories double as keys of ``notification_types``.
    """

    LESSON_REMINDERS = "lesson_reminders"
    NEW_CONTENT = "new_content"
    ACHIEVEMENTS = "achievements"
    INSIGHTS = "insights"
    INACTIVITY = "inactivity"
    MICRO_LESSON = "micro_lesson"
    LESSON_AUDIO = "lesson_audio"
    TEST_CALL = "test_call"

    @property
    def kind(self) -> TouchpointKind:
        if self in _CALL_CATEGORIES:
            return TouchpointKind.CALL
        return TouchpointKind.NOTIFICATION


_CALL_CATEGORIES = frozenset(
    {
        TouchpointCategory.INACTIVITY,
        TouchpointCategory.MICRO_LESSON,
        TouchpointCategory.LESSON_AUDIO,
        TouchpointCategory.TEST_CALL,
    }
)

NOTIFICATION_CATEGORIES = tuple(
    c for c in TouchpointCategory if c.kind == TouchpointKind.NOTIFICATION
)


class Weekday(str, Enum):
    """Lowercase weekday names, as stored in ``quiet_days``."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, moment: datetime) -> "Weekday":
        """Weekday of a datetime, read from its own clock."""
        return list(cls)[moment.weekday()]


class CallFrequency(str, Enum):
    """How often campaign jobs may schedule calls for a user."""

    NEVER = "never"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"

    @property
    def min_interval(self) -> Optional[timedelta]:
        """Minimum gap between two scheduled calls; None means calls are off."""
        return {
            CallFrequency.NEVER: None,
            CallFrequency.DAILY: timedelta(days=1),
            CallFrequency.WEEKLY: timedelta(days=7),
            CallFrequency.BIWEEKLY: timedelta(days=14),
        }[self]


def _validate_window(start: Optional[time], end: Optional[time], name: str) -> None:
    # Overnight windows (start > end) are not supported.
    if start is not None and end is not None and start > end:
        raise ValueError(f"{name}_start must not be later than {name}_end")


class UserPreferences(BaseModel):
    """Per-user notification and call preferences."""

    user_id: UUID
    notifications_enabled: bool = True
    push_enabled: bool = False
    calls_enabled: bool = False
    notification_window_start: time = time(9, 0)
    notification_window_end: time = time(21, 0)
    call_window_start: time = time(10, 0)
    call_window_end: time = time(18, 0)
    quiet_days: set[Weekday] = Field(default_factory=set)
    notification_types: dict[TouchpointCategory, bool] = Field(default_factory=dict)
    call_frequency: CallFrequency = CallFrequency.WEEKLY
    preferred_call_duration: int = 300
    timezone: str = "UTC"

    def window_for(self, kind: TouchpointKind) -> tuple[time, time]:
        """Allowed time-of-day window for a touchpoint kind."""
        if kind == TouchpointKind.CALL:
            return self.call_window_start, self.call_window_end
        return self.notification_window_start, self.notification_window_end


class PreferencesUpdate(BaseModel):
    """Partial update of a user's preferences.

    Unknown notification type keys and inverted windows are rejected here so a
    typo can never be stored and silently ignored later.
    """

    notifications_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    calls_enabled: Optional[bool] = None
    notification_window_start: Optional[time] = None
    notification_window_end: Optional[time] = None
    call_window_start: Optional[time] = None
    call_window_end: Optional[time] = None
    quiet_days: Optional[set[Weekday]] = None
    notification_types: Optional[dict[TouchpointCategory, bool]] = None
    call_frequency: Optional[CallFrequency] = None
    preferred_call_duration: Optional[int] = Field(default=None, ge=30, le=3600)
    timezone: Optional[str] = None

    @field_validator("notification_types")
    @classmethod
    def only_notification_categories(cls, value):
        if value is None:
            return value
        for category in value:
            if category.kind != TouchpointKind.NOTIFICATION:
                raise ValueError(f"{category.value} is not a notification type")
        return value

    @model_validator(mode="after")
    def windows_are_ordered(self):
        _validate_window(self.notification_window_start, self.notification_window_end, "notification_window")
        _validate_window(self.call_window_start, self.call_window_end, "call_window")
        return self
