"""Voice call models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CallType(str, Enum):
    """Kind of spoken script played on a call."""

    REMINDER = "reminder"
    MICRO_LESSON = "micro_lesson"
    AUDIO = "audio"


class CallStatus(str, Enum):
    """Call lifecycle as reported by the telephony transport."""

    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in_progress"
    ANSWERED = "answered"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    CANCELED = "canceled"

    @classmethod
    def parse(cls, raw: str) -> "CallStatus":
        """Accept the transport's spellings ('no-answer', 'in-progress')."""
        return cls(raw.strip().lower().replace("-", "_"))

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {
        CallStatus.COMPLETED,
        CallStatus.FAILED,
        CallStatus.NO_ANSWER,
        CallStatus.BUSY,
        CallStatus.CANCELED,
    }
)


class CallLog(BaseModel):
    """Append-only record of a call, mutated by status callbacks."""

    id: UUID
    user_id: UUID
    call_type: CallType
    call_sid: Optional[str] = None
    phone_number: Optional[str] = None
    content_id: Optional[UUID] = None
    audio_url: Optional[str] = None
    status: CallStatus = CallStatus.QUEUED
    duration_seconds: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    user_responded: bool = False
    response_data: Optional[dict] = None


class CallResult(BaseModel):
    """Outcome of placing one call."""

    success: bool
    call_sid: Optional[str] = None
    call_log_id: Optional[UUID] = None
    error: Optional[str] = None


class TestCallRequest(BaseModel):
    """Operator request for a transport verification call."""

    user_id: UUID
    phone_number: str
