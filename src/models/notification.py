"""Push notification models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PushOutcome(str, Enum):
    """Result of handing a payload to one push endpoint."""

    SUCCESS = "success"
    PERMANENT_FAILURE = "permanent_failure"
    TRANSIENT_FAILURE = "transient_failure"


class PushSubscription(BaseModel):
    """A browser push endpoint registered by a user."""

    id: UUID
    user_id: UUID
    endpoint: str
    keys: dict = Field(default_factory=dict)
    is_active: bool = True


class NotificationAction(BaseModel):
    """A button shown on the notification."""

    action: str
    title: str
    icon: Optional[str] = None


class NotificationPayload(BaseModel):
    """Payload delivered to the service worker.

    Serialised with camelCase keys (``requireInteraction``) for the client.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    tag: Optional[str] = None
    data: dict = Field(default_factory=dict)
    actions: list[NotificationAction] = Field(default_factory=list)
    require_interaction: bool = False
    url: Optional[str] = None

    def to_wire(self) -> str:
        """JSON body sent to the push endpoint."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class SendResult(BaseModel):
    """Outcome of one notification attempt for one user."""

    success: bool
    error: Optional[str] = None
    delivered_count: int = 0


class NotificationLog(BaseModel):
    """Append-only record of a notification attempt."""

    id: UUID
    user_id: UUID
    notification_type: str = "push"
    category: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    sent_at: datetime
    delivered: bool = False
    clicked: bool = False
    clicked_at: Optional[datetime] = None
    metadata: dict = Field(default_factory=dict)


class TrackClickRequest(BaseModel):
    """Click report from the service worker, keyed by the payload's ``notificationId``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    notification_id: UUID
