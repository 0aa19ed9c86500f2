"""
Transition tables for jobs, applications and interviews.

Every legal edge lives here exactly once, together with the roles allowed to
take it, the payload fields it needs, its guards, the field updates it makes and
the intents it emits. The engine only interprets these tables.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from core.exceptions import PreconditionFailed
from workflow.intents import NotifyActor, NotifyCandidate
from workflow.models import Assessment, Decision, QuestionSetKind, WorkflowEntity
from workflow.status import (
    ApplicationStatus,
    EntityType,
    InterviewStatus,
    JobStatus,
    Role,
)

TRANSITION_TABLE_VERSION = 4


class TransitionPayload(BaseModel):
    """Optional data carried by a transition request."""

    feedback: Optional[str] = None
    reason: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    technical_assessment: Optional[Assessment] = None
    hr_assessment: Optional[Assessment] = None
    interview_id: Optional[str] = None


@dataclass(frozen=True)
class TransitionContext:
    actor_role: Role
    actor_id: Optional[str]
    at: datetime


Guard = Callable[[WorkflowEntity, TransitionPayload], None]
Mutation = Callable[[WorkflowEntity, TransitionPayload, TransitionContext], dict[str, Any]]
EffectTemplate = Callable[[WorkflowEntity, TransitionPayload, TransitionContext], Any]


@dataclass(frozen=True)
class TransitionRule:
    """A single named edge out of one state."""

    name: str
    to_state: Any
    allowed_roles: frozenset[Role]
    required_fields: tuple[str, ...] = ()
    guards: tuple[Guard, ...] = ()
    mutate: Optional[Mutation] = None
    effects: tuple[EffectTemplate, ...] = ()
    chain: Optional[str] = None
    releases_interview: bool = False


def _roles(*roles: Role) -> frozenset[Role]:
    return frozenset(roles)


# ==================== Guards ===================== #
def require_question_sets(job, payload: TransitionPayload) -> None:
    missing = [
        kind
        for kind, question_set in (
            ("technical", job.technical_questions),
            ("hr", job.hr_questions),
        )
        if question_set is None or question_set.question_count < 1
    ]
    if missing:
        raise PreconditionFailed(
            "Job needs technical and HR questions before approval",
            job_id=job.id,
            missing=missing,
        )


# ==================== Mutations ===================== #
def store_feedback(job, payload, ctx) -> dict[str, Any]:
    return {"last_feedback": payload.feedback}


def mark_published(job, payload, ctx) -> dict[str, Any]:
    return {"published_at": ctx.at}


def mark_closed(job, payload, ctx) -> dict[str, Any]:
    return {"closed_at": ctx.at}


def attach_technical_assessment(application, payload, ctx) -> dict[str, Any]:
    return {"technical_assessment": payload.technical_assessment}


def attach_hr_assessment(application, payload, ctx) -> dict[str, Any]:
    return {"hr_assessment": payload.hr_assessment}


def waive_assessments(application, payload, ctx) -> dict[str, Any]:
    return {"assessment_waived": True, "waiver_reason": payload.reason}


def link_interview(application, payload, ctx) -> dict[str, Any]:
    return {"scheduled_interview_id": payload.interview_id}


def unlink_interview(application, payload, ctx) -> dict[str, Any]:
    return {"scheduled_interview_id": None}


def record_decision(decision: str, release_interview: bool = False) -> Mutation:
    def mutate(application, payload, ctx) -> dict[str, Any]:
        updates: dict[str, Any] = {
            "project_leader_decision": Decision(
                decision=decision,
                feedback=payload.feedback,
                rating=payload.rating,
                decided_at=ctx.at,
                decided_by=ctx.actor_id,
            )
        }
        if release_interview:
            updates.update(unlink_interview(application, payload, ctx))
        return updates

    return mutate


def record_interview_outcome(interview, payload, ctx) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    if payload.feedback is not None:
        updates["feedback"] = payload.feedback
    if payload.rating is not None:
        updates["rating"] = payload.rating
    return updates


def record_cancellation(interview, payload, ctx) -> dict[str, Any]:
    return {"cancellation_reason": payload.reason}


# ==================== Intent templates ===================== #
def notify_job_actor(template: str, role: Role, recipient_field: str) -> EffectTemplate:
    def effect(job, payload, ctx) -> NotifyActor:
        return NotifyActor(
            template=template,
            role=role,
            entity_type=EntityType.JOB,
            entity_id=job.id,
            recipient_id=getattr(job, recipient_field),
            details={"title": job.title, "feedback": payload.feedback},
        )

    return effect


def notify_application_staff(template: str, role: Role) -> EffectTemplate:
    def effect(application, payload, ctx) -> NotifyActor:
        return NotifyActor(
            template=template,
            role=role,
            entity_type=EntityType.APPLICATION,
            entity_id=application.id,
            details={
                "job_id": application.job_id,
                "job_title": application.job_title,
                "overall_score": application.overall_score,
            },
        )

    return effect


def notify_candidate(template: str) -> EffectTemplate:
    def effect(application, payload, ctx) -> NotifyCandidate:
        return NotifyCandidate(
            template=template,
            application_id=application.id,
            candidate_id=application.candidate_id,
            details={
                "job_title": application.job_title,
                "feedback": payload.feedback,
            },
        )

    return effect


# ==================== Job ===================== #
JOB_TRANSITIONS: dict[JobStatus, dict[str, TransitionRule]] = {
    JobStatus.DRAFT: {
        "submit_to_hr": TransitionRule(
            name="submit_to_hr",
            to_state=JobStatus.PENDING_HR,
            allowed_roles=_roles(Role.PROJECT_LEADER),
            effects=(notify_job_actor("job_pending_hr", Role.HR, "hr_user_id"),),
        ),
    },
    JobStatus.PENDING_HR: {
        "complete_hr": TransitionRule(
            name="complete_hr",
            to_state=JobStatus.HR_COMPLETED,
            allowed_roles=_roles(Role.HR),
            effects=(
                notify_job_actor(
                    "job_hr_completed", Role.PROJECT_LEADER, "project_leader_id"
                ),
            ),
        ),
    },
    JobStatus.HR_COMPLETED: {
        "submit_for_approval": TransitionRule(
            name="submit_for_approval",
            to_state=JobStatus.PENDING_APPROVAL,
            allowed_roles=_roles(Role.PROJECT_LEADER),
            guards=(require_question_sets,),
            effects=(notify_job_actor("job_pending_approval", Role.CEO, "ceo_id"),),
        ),
    },
    JobStatus.PENDING_APPROVAL: {
        "approve": TransitionRule(
            name="approve",
            to_state=JobStatus.APPROVED,
            allowed_roles=_roles(Role.CEO),
            effects=(
                notify_job_actor(
                    "job_approved", Role.PROJECT_LEADER, "project_leader_id"
                ),
            ),
            chain="publish",
        ),
        "reject": TransitionRule(
            name="reject",
            to_state=JobStatus.REJECTED,
            allowed_roles=_roles(Role.CEO),
            required_fields=("feedback",),
            mutate=store_feedback,
            effects=(
                notify_job_actor(
                    "job_rejected", Role.PROJECT_LEADER, "project_leader_id"
                ),
            ),
        ),
        "request_modifications": TransitionRule(
            name="request_modifications",
            to_state=JobStatus.PENDING_HR,
            allowed_roles=_roles(Role.CEO),
            required_fields=("feedback",),
            mutate=store_feedback,
            effects=(
                notify_job_actor("job_modifications_requested", Role.HR, "hr_user_id"),
                notify_job_actor(
                    "job_modifications_requested",
                    Role.PROJECT_LEADER,
                    "project_leader_id",
                ),
            ),
        ),
    },
    JobStatus.APPROVED: {
        "publish": TransitionRule(
            name="publish",
            to_state=JobStatus.PUBLISHED,
            allowed_roles=_roles(Role.SYSTEM, Role.CEO, Role.PROJECT_LEADER),
            mutate=mark_published,
        ),
    },
    JobStatus.PUBLISHED: {
        "pause": TransitionRule(
            name="pause",
            to_state=JobStatus.PAUSED,
            allowed_roles=_roles(Role.PROJECT_LEADER, Role.CEO),
        ),
        "close": TransitionRule(
            name="close",
            to_state=JobStatus.CLOSED,
            allowed_roles=_roles(Role.PROJECT_LEADER, Role.CEO),
            mutate=mark_closed,
        ),
    },
    JobStatus.PAUSED: {
        "resume": TransitionRule(
            name="resume",
            to_state=JobStatus.PUBLISHED,
            allowed_roles=_roles(Role.PROJECT_LEADER, Role.CEO),
        ),
        "close": TransitionRule(
            name="close",
            to_state=JobStatus.CLOSED,
            allowed_roles=_roles(Role.PROJECT_LEADER, Role.CEO),
            mutate=mark_closed,
        ),
    },
    JobStatus.CLOSED: {},
    JobStatus.REJECTED: {},
}


# ==================== Application ===================== #
_WITHDRAW = TransitionRule(
    name="withdraw",
    to_state=ApplicationStatus.WITHDRAWN,
    allowed_roles=_roles(Role.CANDIDATE),
    effects=(notify_application_staff("application_withdrawn", Role.HR),),
)

_WAIVE = TransitionRule(
    name="waive_assessments",
    to_state=ApplicationStatus.UNDER_REVIEW,
    allowed_roles=_roles(Role.HR),
    required_fields=("reason",),
    mutate=waive_assessments,
    effects=(
        notify_application_staff("application_ready_for_review", Role.PROJECT_LEADER),
    ),
)

_REJECT = TransitionRule(
    name="reject",
    to_state=ApplicationStatus.REJECTED,
    allowed_roles=_roles(Role.PROJECT_LEADER),
    required_fields=("feedback",),
    mutate=record_decision("rejected"),
    effects=(notify_candidate("application_rejected"),),
)

_SCHEDULE = TransitionRule(
    name="schedule_interview",
    to_state=ApplicationStatus.INTERVIEW_SCHEDULED,
    allowed_roles=_roles(Role.HR, Role.SYSTEM),
    required_fields=("interview_id",),
    mutate=link_interview,
)

# Leaving interview_scheduled for a terminal state frees the booked slot
_WITHDRAW_SCHEDULED = TransitionRule(
    name="withdraw",
    to_state=ApplicationStatus.WITHDRAWN,
    allowed_roles=_roles(Role.CANDIDATE),
    mutate=unlink_interview,
    effects=(notify_application_staff("application_withdrawn", Role.HR),),
    releases_interview=True,
)

_REJECT_SCHEDULED = TransitionRule(
    name="reject",
    to_state=ApplicationStatus.REJECTED,
    allowed_roles=_roles(Role.PROJECT_LEADER),
    required_fields=("feedback",),
    mutate=record_decision("rejected", release_interview=True),
    effects=(notify_candidate("application_rejected"),),
    releases_interview=True,
)

APPLICATION_TRANSITIONS: dict[ApplicationStatus, dict[str, TransitionRule]] = {
    ApplicationStatus.SUBMITTED: {
        "start_technical_review": TransitionRule(
            name="start_technical_review",
            to_state=ApplicationStatus.TECHNICAL_REVIEW,
            allowed_roles=_roles(Role.SYSTEM, Role.HR),
        ),
        "withdraw": _WITHDRAW,
    },
    ApplicationStatus.TECHNICAL_REVIEW: {
        "record_technical_assessment": TransitionRule(
            name="record_technical_assessment",
            to_state=ApplicationStatus.HR_REVIEW,
            allowed_roles=_roles(Role.SYSTEM, Role.HR, Role.PROJECT_LEADER),
            required_fields=("technical_assessment",),
            mutate=attach_technical_assessment,
        ),
        "waive_assessments": _WAIVE,
        "withdraw": _WITHDRAW,
    },
    ApplicationStatus.HR_REVIEW: {
        "record_hr_assessment": TransitionRule(
            name="record_hr_assessment",
            to_state=ApplicationStatus.UNDER_REVIEW,
            allowed_roles=_roles(Role.SYSTEM, Role.HR),
            required_fields=("hr_assessment",),
            mutate=attach_hr_assessment,
            effects=(
                notify_application_staff(
                    "application_ready_for_review", Role.PROJECT_LEADER
                ),
            ),
        ),
        "waive_assessments": _WAIVE,
        "withdraw": _WITHDRAW,
    },
    ApplicationStatus.UNDER_REVIEW: {
        "hold": TransitionRule(
            name="hold",
            to_state=ApplicationStatus.PENDING_DECISION,
            allowed_roles=_roles(Role.PROJECT_LEADER),
        ),
        "schedule_interview": _SCHEDULE,
        "reject": _REJECT,
        "withdraw": _WITHDRAW,
    },
    ApplicationStatus.PENDING_DECISION: {
        "resume_review": TransitionRule(
            name="resume_review",
            to_state=ApplicationStatus.UNDER_REVIEW,
            allowed_roles=_roles(Role.PROJECT_LEADER),
        ),
        "schedule_interview": _SCHEDULE,
        "reject": _REJECT,
        "withdraw": _WITHDRAW,
    },
    ApplicationStatus.INTERVIEW_SCHEDULED: {
        "complete_interview": TransitionRule(
            name="complete_interview",
            to_state=ApplicationStatus.FINAL_REVIEW,
            allowed_roles=_roles(Role.HR, Role.SYSTEM),
            effects=(
                notify_application_staff("interview_completed", Role.PROJECT_LEADER),
            ),
        ),
        "cancel_interview": TransitionRule(
            name="cancel_interview",
            to_state=ApplicationStatus.UNDER_REVIEW,
            allowed_roles=_roles(Role.HR, Role.SYSTEM),
            mutate=unlink_interview,
            effects=(notify_candidate("interview_cancelled"),),
        ),
        "reject": _REJECT_SCHEDULED,
        "withdraw": _WITHDRAW_SCHEDULED,
    },
    ApplicationStatus.FINAL_REVIEW: {
        "accept": TransitionRule(
            name="accept",
            to_state=ApplicationStatus.ACCEPTED,
            allowed_roles=_roles(Role.PROJECT_LEADER),
            mutate=record_decision("accepted"),
            effects=(
                notify_candidate("application_accepted"),
                notify_application_staff("application_accepted", Role.HR),
            ),
        ),
        "reject": _REJECT,
        "withdraw": _WITHDRAW,
    },
    ApplicationStatus.ACCEPTED: {},
    ApplicationStatus.REJECTED: {},
    ApplicationStatus.WITHDRAWN: {},
}


# ==================== Interview ===================== #
_CANCEL = TransitionRule(
    name="cancel",
    to_state=InterviewStatus.CANCELLED,
    allowed_roles=_roles(Role.HR, Role.SYSTEM),
    mutate=record_cancellation,
)

_RESCHEDULE = TransitionRule(
    name="reschedule",
    to_state=InterviewStatus.RESCHEDULED,
    allowed_roles=_roles(Role.HR, Role.SYSTEM),
)

INTERVIEW_TRANSITIONS: dict[InterviewStatus, dict[str, TransitionRule]] = {
    InterviewStatus.SCHEDULED: {
        "confirm": TransitionRule(
            name="confirm",
            to_state=InterviewStatus.CONFIRMED,
            allowed_roles=_roles(Role.HR, Role.CANDIDATE, Role.SYSTEM),
        ),
        "cancel": _CANCEL,
        "reschedule": _RESCHEDULE,
    },
    InterviewStatus.CONFIRMED: {
        "complete": TransitionRule(
            name="complete",
            to_state=InterviewStatus.COMPLETED,
            allowed_roles=_roles(Role.HR, Role.SYSTEM),
            mutate=record_interview_outcome,
        ),
        "cancel": _CANCEL,
        "reschedule": _RESCHEDULE,
    },
    InterviewStatus.COMPLETED: {},
    InterviewStatus.CANCELLED: {},
    InterviewStatus.RESCHEDULED: {},
}


TRANSITION_TABLES: dict[EntityType, dict[Any, dict[str, TransitionRule]]] = {
    EntityType.JOB: JOB_TRANSITIONS,
    EntityType.APPLICATION: APPLICATION_TRANSITIONS,
    EntityType.INTERVIEW: INTERVIEW_TRANSITIONS,
}


def available_transitions(entity_type: EntityType, state) -> list[str]:
    """Names of the edges out of ``state``, sorted for stable error output."""
    return sorted(TRANSITION_TABLES[EntityType(entity_type)].get(state, {}))


def releases_interview(application_status: ApplicationStatus, transition: str) -> bool:
    """Whether taking ``transition`` must also cancel the application's booked interview."""
    rule = APPLICATION_TRANSITIONS.get(application_status, {}).get(transition)
    return rule is not None and rule.releases_interview



# ==================== Question sets ===================== #
@dataclass(frozen=True)
class QuestionSetRule:
    role: Role
    editable_in: frozenset[JobStatus]


QUESTION_SET_RULES: dict[QuestionSetKind, QuestionSetRule] = {
    QuestionSetKind.TECHNICAL: QuestionSetRule(
        role=Role.PROJECT_LEADER,
        editable_in=frozenset(
            {JobStatus.DRAFT, JobStatus.PENDING_HR, JobStatus.HR_COMPLETED}
        ),
    ),
    QuestionSetKind.HR: QuestionSetRule(
        role=Role.HR,
        editable_in=frozenset({JobStatus.PENDING_HR, JobStatus.HR_COMPLETED}),
    ),
}


# ==================== Lifecycle roles ===================== #
JOB_CREATE_ROLES = _roles(Role.PROJECT_LEADER)
JOB_DELETE_ROLES = _roles(Role.PROJECT_LEADER, Role.CEO)
APPLICATION_SUBMIT_ROLES = _roles(Role.CANDIDATE, Role.SYSTEM)

# Application edges driven by the interview scheduler, not by direct requests.
SCHEDULER_TRANSITIONS = frozenset(
    {"schedule_interview", "complete_interview", "cancel_interview"}
)
