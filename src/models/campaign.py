"""Profile, content and campaign run models."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class UserProfile(BaseModel):
    """The slice of a learner profile the engine reads."""

    id: UUID
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    interests: list[str] = Field(default_factory=list)


class ContentRef(BaseModel):
    """A lesson reference with the fields needed for human-readable text."""

    id: UUID
    title: str
    description: Optional[str] = None
    category: Optional[str] = None


class GoalAchievement(BaseModel):
    """A goal reached by a user, produced by a goal rule."""

    user_id: UUID
    title: str


class NewContentRequest(BaseModel):
    """Notification trigger for a newly published content item."""

    content_id: UUID
    title: str
    category: str


class CampaignRunSummary(BaseModel):
    """Outcome counters of one campaign job run."""

    job: str
    candidates: int = 0
    notified: int = 0
    scheduled: int = 0
    skipped: int = 0
    errors: int = 0
