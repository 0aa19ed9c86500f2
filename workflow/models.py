"""
Workflow entities.

Snapshots are plain pydantic models. The engine and scheduler return modified
copies, never mutate what they were given, and the store is the only place a
``version`` is bumped.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, ClassVar, Literal, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from core.utils.datetime import now
from workflow.scoring import compute_overall_score
from workflow.status import (
    ApplicationStatus,
    EntityType,
    InterviewStatus,
    InterviewType,
    JobStatus,
    Role,
    parse_status,
)


def new_id() -> str:
    return uuid4().hex


# ============ Value Objects ============ #
class EmploymentType(str, PyEnum):
    FULL_TIME = "full_time"
    PART_TIME = "part_time"
    CONTRACT = "contract"
    INTERNSHIP = "internship"


class Priority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class QuestionSetKind(str, PyEnum):
    TECHNICAL = "technical"
    HR = "hr"


class SalaryRange(BaseModel):
    min: float = Field(ge=0)
    max: float = Field(ge=0)
    currency: str = "USD"

    @model_validator(mode="after")
    def check_bounds(self) -> "SalaryRange":
        if self.min > self.max:
            raise ValueError("Salary minimum must not exceed maximum")
        return self


class Question(BaseModel):
    text: str = Field(min_length=1)
    expected_answer: Optional[str] = None


class QuestionSet(BaseModel):
    """Screening questions attached to a job by PL (technical) or HR."""

    questions: list[Question] = Field(default_factory=list)
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def question_count(self) -> int:
        return len(self.questions)


class Assessment(BaseModel):
    score: float = Field(ge=0)
    max_score: float = Field(gt=0)
    passed: bool

    @model_validator(mode="after")
    def check_score(self) -> "Assessment":
        if self.score > self.max_score:
            raise ValueError("Score must not exceed max_score")
        return self

    @property
    def percentage(self) -> float:
        return self.score / self.max_score * 100


class Decision(BaseModel):
    decision: Literal["accepted", "rejected"]
    feedback: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    decided_at: datetime
    decided_by: Optional[str] = None


class Note(BaseModel):
    text: str = Field(min_length=1)
    author_role: Role
    author_id: Optional[str] = None
    created_at: datetime = Field(default_factory=now)


class StatusChange(BaseModel):
    """One edge taken by an entity, in the order it happened."""

    from_status: str
    to_status: str
    transition: str
    actor_role: Role
    actor_id: Optional[str] = None
    at: datetime
    feedback: Optional[str] = None


# ==================== Entities ===================== #
class WorkflowEntity(BaseModel):
    """Common shape of everything the entity store persists."""

    entity_type: ClassVar[EntityType]

    id: str = Field(default_factory=new_id)
    version: int = 0
    history: list[StatusChange] = Field(default_factory=list)

    @property
    def key(self) -> tuple[EntityType, str]:
        return self.entity_type, self.id


class StatusEntity(WorkflowEntity):
    """Entity whose status is checked against its canonical vocabulary."""

    @field_validator("status", mode="before", check_fields=False)
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        # UnknownState is not a ValueError, so pydantic re-raises it as is.
        return parse_status(cls.entity_type, v)


class Job(StatusEntity):
    entity_type: ClassVar[EntityType] = EntityType.JOB

    title: str = Field(min_length=1)
    department: Optional[str] = None
    location: Optional[str] = None
    employment_type: EmploymentType = EmploymentType.FULL_TIME
    salary_range: Optional[SalaryRange] = None
    status: JobStatus = JobStatus.DRAFT
    priority: Priority = Priority.MEDIUM
    urgent: bool = False
    technical_questions: Optional[QuestionSet] = None
    hr_questions: Optional[QuestionSet] = None
    project_leader_id: Optional[str] = None
    hr_user_id: Optional[str] = None
    ceo_id: Optional[str] = None
    last_feedback: Optional[str] = None
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime = Field(default_factory=now)
    published_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @computed_field
    @property
    def technical_question_count(self) -> int:
        return self.technical_questions.question_count if self.technical_questions else 0

    @computed_field
    @property
    def hr_question_count(self) -> int:
        return self.hr_questions.question_count if self.hr_questions else 0


class Application(StatusEntity):
    entity_type: ClassVar[EntityType] = EntityType.APPLICATION

    job_id: str
    candidate_id: str
    job_title: Optional[str] = None
    status: ApplicationStatus = ApplicationStatus.SUBMITTED
    applied_at: datetime = Field(default_factory=now)
    last_updated_at: datetime = Field(default_factory=now)
    technical_assessment: Optional[Assessment] = None
    hr_assessment: Optional[Assessment] = None
    assessment_waived: bool = False
    waiver_reason: Optional[str] = None
    project_leader_decision: Optional[Decision] = None
    scheduled_interview_id: Optional[str] = None
    conversation_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    notes: list[Note] = Field(default_factory=list)

    @computed_field
    @property
    def overall_score(self) -> Optional[float]:
        return compute_overall_score(
            self.technical_assessment, self.hr_assessment, self.assessment_waived
        )


class Interview(StatusEntity):
    entity_type: ClassVar[EntityType] = EntityType.INTERVIEW

    application_id: str
    candidate_id: str
    job_title: Optional[str] = None
    rh_user_id: str
    scheduled_date: str
    scheduled_time: str
    duration: int
    type: InterviewType
    location: Optional[str] = None
    status: InterviewStatus = InterviewStatus.SCHEDULED
    notes: Optional[str] = None
    feedback: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    cancellation_reason: Optional[str] = None
    replaces_id: Optional[str] = None
    replaced_by_id: Optional[str] = None
    candidate_notified: bool = False
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime = Field(default_factory=now)

    @property
    def is_active(self) -> bool:
        return self.status.is_active()


class InterviewerCalendar(WorkflowEntity):
    """
    Booking counter for one HR user.

    Every booking rewrites this record, so two concurrent bookings for the same
    interviewer collide on its version instead of both succeeding.
    """

    entity_type: ClassVar[EntityType] = EntityType.CALENDAR

    booked_count: int = 0
    last_booked_at: Optional[datetime] = None


ENTITY_MODELS: dict[EntityType, type[WorkflowEntity]] = {
    EntityType.JOB: Job,
    EntityType.APPLICATION: Application,
    EntityType.INTERVIEW: Interview,
    EntityType.CALENDAR: InterviewerCalendar,
}
