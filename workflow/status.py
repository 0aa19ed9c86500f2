from enum import Enum as PyEnum
from typing import Union

from core.exceptions import Forbidden, UnknownState


def _normalize(value: object) -> str:
    if isinstance(value, PyEnum):
        value = value.value
    return str(value).strip().lower().replace(" ", "_").replace("-", "_")


# ============ Actors ============ #
class Role(str, PyEnum):
    """Roles that may act on workflow entities."""

    CANDIDATE = "candidate"
    PROJECT_LEADER = "project_leader"
    HR = "hr"
    CEO = "ceo"
    SYSTEM = "system"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def try_parse(cls, value: str) -> "Role | None":
        if value is None:
            return None
        normalized = _normalize(value)
        normalized = ROLE_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return None


class EntityType(str, PyEnum):
    """Kinds of persisted workflow entities."""

    JOB = "job"
    APPLICATION = "application"
    INTERVIEW = "interview"
    CALENDAR = "calendar"


# ============ Job Status ============ #
class JobStatus(str, PyEnum):
    """Canonical statuses for a job posting."""

    DRAFT = "draft"
    PENDING_HR = "pending_hr"
    HR_COMPLETED = "hr_completed"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PUBLISHED = "published"
    PAUSED = "paused"
    CLOSED = "closed"
    REJECTED = "rejected"

    def is_terminal(self) -> bool:
        return self in JOB_STATUS_TERMINALS

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def try_parse(cls, value: str) -> "JobStatus | None":
        if value is None:
            return None
        normalized = _normalize(value)
        normalized = JOB_STATUS_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return None


# ============ Application Status ============ #
class ApplicationStatus(str, PyEnum):
    """Canonical statuses for a job application."""

    SUBMITTED = "submitted"
    TECHNICAL_REVIEW = "technical_review"
    HR_REVIEW = "hr_review"
    UNDER_REVIEW = "under_review"
    PENDING_DECISION = "pending_decision"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    FINAL_REVIEW = "final_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"

    def is_terminal(self) -> bool:
        return self in APPLICATION_STATUS_TERMINALS

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def try_parse(cls, value: str) -> "ApplicationStatus | None":
        if value is None:
            return None
        normalized = _normalize(value)
        normalized = APPLICATION_STATUS_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return None


# ============ Interview Enums ============ #
class InterviewStatus(str, PyEnum):
    """Lifecycle of a single interview booking."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"

    def is_terminal(self) -> bool:
        return self in INTERVIEW_STATUS_TERMINALS

    def is_active(self) -> bool:
        """Cancelled and rescheduled interviews no longer hold their slot."""
        return self not in (InterviewStatus.CANCELLED, InterviewStatus.RESCHEDULED)

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def try_parse(cls, value: str) -> "InterviewStatus | None":
        if value is None:
            return None
        try:
            return cls(_normalize(value))
        except ValueError:
            return None


class InterviewType(str, PyEnum):
    VIDEO = "video"
    PHONE = "phone"
    IN_PERSON = "in_person"


class Trend(str, PyEnum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


# Helpers
ROLE_ALIASES = {
    "rh": "hr",
    "pl": "project_leader",
    "projectleader": "project_leader",
}

JOB_STATUS_ALIASES = {
    "ceo_approval": "pending_approval",
    "pending_ceo_approval": "pending_approval",
    "active": "published",
    "pending_hr_enhancement": "pending_hr",
    "hr_enhancement_complete": "hr_completed",
}

APPLICATION_STATUS_ALIASES = {
    "interview_completed": "final_review",
}

JOB_STATUS_TERMINALS = {
    JobStatus.CLOSED,
    JobStatus.REJECTED,
}

APPLICATION_STATUS_TERMINALS = {
    ApplicationStatus.ACCEPTED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.WITHDRAWN,
}

INTERVIEW_STATUS_TERMINALS = {
    InterviewStatus.COMPLETED,
    InterviewStatus.CANCELLED,
    InterviewStatus.RESCHEDULED,
}

Status = Union[JobStatus, ApplicationStatus, InterviewStatus]

STATUS_ENUMS: dict[EntityType, type] = {
    EntityType.JOB: JobStatus,
    EntityType.APPLICATION: ApplicationStatus,
    EntityType.INTERVIEW: InterviewStatus,
}


def parse_status(entity_type: EntityType, value: object) -> Status:
    """
    Map a raw status value onto the canonical enum for an entity type.

    Raises:
        UnknownState: if the value cannot be mapped
    """
    entity_type = EntityType(entity_type)
    enum_cls = STATUS_ENUMS.get(entity_type)
    if enum_cls is None:
        raise UnknownState(
            f"{entity_type.value} has no status vocabulary",
            entity_type=entity_type.value,
        )
    if isinstance(value, enum_cls):
        return value
    parsed = enum_cls.try_parse(value) if isinstance(value, str) else None
    if parsed is None:
        raise UnknownState(
            f"Unknown {entity_type.value} status: {value!r}",
            entity_type=entity_type.value,
            value=str(value),
        )
    return parsed


def parse_role(value: object) -> Role:
    """Parse an actor role, accepting the legacy ``RH`` label for HR."""
    if isinstance(value, Role):
        return value
    role = Role.try_parse(value) if isinstance(value, str) else None
    if role is None:
        raise Forbidden(f"Unknown actor role: {value!r}", role=str(value))
    return role
