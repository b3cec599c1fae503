"""Records shared by the bootstrapper, reconciler, progression controller and submission pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import LOCAL_ENROLLMENT_PREFIX


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AppState(str, Enum):
    CHECKING = "checking"
    NO_SESSION = "no_session"
    NEEDS_ENROLLMENT = "needs_enrollment"
    NEEDS_ONBOARDING = "needs_onboarding"
    READY = "ready"
    ERROR = "error"


class SectionState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    COMPLETED = "completed"


class Durability(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ORPHANED_LOCAL = "orphaned_local"


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str = ""


class Enrollment(BaseModel):
    id: str
    user_id: str
    program: str
    track_level: str
    locale: str
    # None when the remote row carries no enrollment timestamp.
    created_at: Optional[datetime] = Field(default_factory=_now)

    @property
    def is_local(self) -> bool:
        return self.id.startswith(LOCAL_ENROLLMENT_PREFIX)


class Section(BaseModel):
    index: int = Field(ge=0)
    requires_activity: bool = False


class LessonInstance(BaseModel):
    week_number: int = Field(ge=1)
    program_id: str
    sections: List[Section] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_ordering(self) -> "LessonInstance":
        expected = list(range(len(self.sections)))
        if [section.index for section in self.sections] != expected:
            raise ValueError("Lesson sections must be indexed 0..n-1 in order.")
        return self


class SectionCompletionRecord(BaseModel):
    week_number: int
    section_index: int
    response_text: str = ""
    submitted_at: datetime = Field(default_factory=_now)
    durability: Durability = Durability.PENDING


class ActivityResponse(BaseModel):
    """Row written to the remote activity-response collection."""

    user_id: str
    enrollment_id: Optional[str] = None
    week_number: int
    section_index: int
    response_text: str
    submitted_at: datetime


class SubmissionOutcome(BaseModel):
    status: Literal["accepted", "rejected"]
    section_index: int
    reason: Optional[str] = None
    detail: Optional[str] = None
    record: Optional[SectionCompletionRecord] = None
    timed_out: bool = False

    @property
    def accepted(self) -> bool:
        return self.status == "accepted"


class WeekProgress(BaseModel):
    week_number: int
    completed_sections: int = 0
    total_sections: int = 0
    quiz_unlocked: bool = False
    status: Literal["not_started", "in_progress", "completed"] = "not_started"


__all__ = [
    "ActivityResponse",
    "AppState",
    "AuthEvent",
    "Durability",
    "Enrollment",
    "Identity",
    "LessonInstance",
    "Section",
    "SectionCompletionRecord",
    "SectionState",
    "SubmissionOutcome",
    "WeekProgress",
]
