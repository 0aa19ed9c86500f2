"""
Interview scheduling.

Bookings are validated in three steps: the request itself, overlap with the
interviewer's other active interviews, and the one-active-interview rule for
the application. A successful booking returns the new interview, any interview
it replaced, the updated application and the intents to run afterwards.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel, Field

from core.config import settings
from core.exceptions import (
    ApplicationAlreadyScheduled,
    InvalidPayload,
    InvalidSlot,
    InvalidTransition,
    SlotConflict,
)
from core.utils.datetime import (
    add_minutes,
    combine,
    format_clock_time,
    parse_clock_time,
    parse_date,
)
from core.utils.datetime import now as utc_now
from core.utils.datetime import today as utc_today
from workflow.engine import apply_transition
from workflow.intents import CreateOrReuseConversation, NotifyActor, NotifyCandidate
from workflow.models import Application, Interview
from workflow.status import (
    ApplicationStatus,
    EntityType,
    InterviewStatus,
    InterviewType,
    Role,
    parse_role,
)
from workflow.transitions import releases_interview

logger = logging.getLogger(__name__)

ALLOWED_DURATIONS = (30, 45, 60, 90, 120)


class CandidateContext(BaseModel):
    application: Application
    candidate_name: str
    candidate_email: Optional[str] = None


class ScheduleRequest(BaseModel):
    application_id: str
    rh_user_id: str = Field(min_length=1)
    scheduled_date: str
    scheduled_time: str
    duration: int
    type: InterviewType
    location: Optional[str] = None
    notes: Optional[str] = None
    replace_existing: bool = False


@dataclass
class SchedulingResult:
    interview: Interview
    application: Application
    replaced_interview: Optional[Interview] = None
    side_effects: list[Any] = field(default_factory=list)


# ==================== Slot arithmetic ===================== #
def interview_window(interview: Interview) -> tuple[datetime, datetime]:
    """Return the half-open ``[start, end)`` span an interview occupies."""
    start = combine(
        parse_date(interview.scheduled_date), parse_clock_time(interview.scheduled_time)
    )
    return start, add_minutes(start, interview.duration)


def overlaps(
    start: datetime, end: datetime, other_start: datetime, other_end: datetime
) -> bool:
    return start < other_end and other_start < end


def find_conflicts(
    rh_user_id: str,
    start: datetime,
    duration: int,
    interviews: Iterable[Interview],
    *,
    exclude_ids: Iterable[str] = (),
) -> list[Interview]:
    """
    List active interviews of ``rh_user_id`` that intersect a proposed slot.

    Args:
        rh_user_id: Interviewer whose calendar is checked
        start: Proposed start
        duration: Proposed length in minutes
        interviews: Known interviews, any interviewer
        exclude_ids: Interviews to ignore, such as the one being replaced

    Returns:
        Conflicting interviews ordered by start time
    """
    end = add_minutes(start, duration)
    excluded = set(exclude_ids)
    conflicts = [
        interview
        for interview in interviews
        if interview.rh_user_id == rh_user_id
        and interview.is_active
        and interview.id not in excluded
        and overlaps(start, end, *interview_window(interview))
    ]
    return sorted(conflicts, key=lambda i: interview_window(i)[0])


def _parse_slot(
    scheduled_date: str, scheduled_time: str, duration: int, today: date
) -> datetime:
    day = parse_date(scheduled_date)
    if day is None:
        raise InvalidSlot(
            f"Invalid interview date: {scheduled_date!r}", field="scheduled_date"
        )
    if day < today:
        raise InvalidSlot(
            f"Interview date {day.isoformat()} is in the past", field="scheduled_date"
        )
    clock = parse_clock_time(scheduled_time)
    if clock is None:
        raise InvalidSlot(
            f"Invalid interview time: {scheduled_time!r}", field="scheduled_time"
        )
    if duration not in ALLOWED_DURATIONS:
        raise InvalidSlot(
            f"Duration must be one of {', '.join(map(str, ALLOWED_DURATIONS))} minutes",
            field="duration",
        )
    return combine(day, clock)


def validate_request(
    context: CandidateContext, request: ScheduleRequest, today: date
) -> datetime:
    """Structural checks; returns the requested start."""
    if request.application_id != context.application.id:
        raise InvalidSlot(
            "Request does not match the candidate's application",
            field="application_id",
        )
    start = _parse_slot(
        request.scheduled_date, request.scheduled_time, request.duration, today
    )
    if request.type == InterviewType.IN_PERSON and not (
        request.location and request.location.strip()
    ):
        raise InvalidSlot(
            "Location is required for in-person interviews", field="location"
        )
    return start


def active_interview_for(
    application: Application, interviews: Iterable[Interview]
) -> Optional[Interview]:
    for interview in interviews:
        if interview.application_id == application.id and interview.is_active:
            return interview
    return None


# ==================== Operations ===================== #
def schedule_interview(
    context: CandidateContext,
    request: ScheduleRequest,
    existing_interviews: Iterable[Interview],
    *,
    actor_role: Union[Role, str] = Role.HR,
    actor_id: Optional[str] = None,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> SchedulingResult:
    """
    Book an interview for an application.

    Raises:
        InvalidSlot: the request is malformed or in the past
        SlotConflict: the interviewer is already booked in that span
        ApplicationAlreadyScheduled: the application already has an active
            interview and ``replace_existing`` is false
        InvalidTransition: the application is not in a schedulable state
    """
    role = parse_role(actor_role)
    at = now or utc_now()
    start = validate_request(context, request, today or utc_today())

    application = context.application
    existing = list(existing_interviews)
    current = active_interview_for(application, existing)
    replacing = current is not None and request.replace_existing

    conflicts = find_conflicts(
        request.rh_user_id,
        start,
        request.duration,
        existing,
        exclude_ids=[current.id] if replacing else [],
    )
    if conflicts:
        logger.warning(
            f"Slot {start.isoformat()} for {request.rh_user_id} conflicts with "
            f"interview {conflicts[0].id}"
        )
        raise SlotConflict(
            "Interviewer already has an interview in that slot",
            conflicting_interview_id=conflicts[0].id,
        )

    if current is not None and not replacing:
        raise ApplicationAlreadyScheduled(
            "Application already has an active interview",
            interview_id=current.id,
            application_id=application.id,
        )

    interview = Interview(
        application_id=application.id,
        candidate_id=application.candidate_id,
        job_title=application.job_title,
        rh_user_id=request.rh_user_id,
        scheduled_date=start.date().isoformat(),
        scheduled_time=format_clock_time(start.time()),
        duration=request.duration,
        type=request.type,
        location=request.location,
        notes=request.notes,
        replaces_id=current.id if replacing else None,
        created_at=at,
        updated_at=at,
    )

    replaced = None
    if replacing:
        moved = apply_transition(current, role, "reschedule", actor_id=actor_id, now=at)
        replaced = moved.entity.model_copy(update={"replaced_by_id": interview.id})

    if replacing and application.status == ApplicationStatus.INTERVIEW_SCHEDULED:
        updated_application = application.model_copy(
            update={"scheduled_interview_id": interview.id, "last_updated_at": at}
        )
    else:
        updated_application = apply_transition(
            application,
            role,
            "schedule_interview",
            {"interview_id": interview.id},
            actor_id=actor_id,
            now=at,
        ).entity

    side_effects = [
        NotifyCandidate(
            template="interview_rescheduled" if replacing else "interview_scheduled",
            application_id=application.id,
            candidate_id=application.candidate_id,
            details={
                "interview_id": interview.id,
                "candidate_name": context.candidate_name,
                "candidate_email": context.candidate_email,
                "job_title": application.job_title,
                "scheduled_date": interview.scheduled_date,
                "scheduled_time": interview.scheduled_time,
                "duration": interview.duration,
                "type": interview.type.value,
                "location": interview.location,
            },
        ),
        CreateOrReuseConversation(
            application_id=application.id,
            candidate_id=application.candidate_id,
            staff_user_id=request.rh_user_id,
        ),
    ]

    logger.info(
        f"Scheduled interview {interview.id} for application {application.id} "
        f"on {interview.scheduled_date} {interview.scheduled_time}"
        + (f" replacing {current.id}" if replacing else "")
    )
    return SchedulingResult(
        interview=interview,
        application=updated_application,
        replaced_interview=replaced,
        side_effects=side_effects,
    )


def confirm_interview(
    interview: Interview,
    actor_role: Union[Role, str] = Role.HR,
    *,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Interview:
    """Confirm a scheduled interview. The application is untouched."""
    return apply_transition(
        interview, actor_role, "confirm", actor_id=actor_id, now=now
    ).entity


def _check_pair(interview: Interview, application: Application) -> None:
    if interview.application_id != application.id:
        raise InvalidPayload(
            "Interview does not belong to this application",
            interview_id=interview.id,
            application_id=application.id,
        )


def cancel_interview(
    interview: Interview,
    application: Application,
    actor_role: Union[Role, str] = Role.HR,
    reason: Optional[str] = None,
    *,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SchedulingResult:
    """
    Cancel an interview and send its application back to review.

    A stale interview that the application no longer points at is cancelled
    on its own.
    """
    _check_pair(interview, application)
    at = now or utc_now()
    cancelled = apply_transition(
        interview, actor_role, "cancel", {"reason": reason}, actor_id=actor_id, now=at
    ).entity

    side_effects: list[Any] = []
    if (
        application.scheduled_interview_id == interview.id
        and application.status == ApplicationStatus.INTERVIEW_SCHEDULED
    ):
        moved = apply_transition(
            application,
            actor_role,
            "cancel_interview",
            {"reason": reason},
            actor_id=actor_id,
            now=at,
        )
        application = moved.entity
        side_effects = moved.side_effects

    return SchedulingResult(
        interview=cancelled, application=application, side_effects=side_effects
    )


def close_with_interview(
    application: Application,
    interview: Interview,
    actor_role: Union[Role, str],
    transition: str,
    payload: Optional[dict[str, Any]] = None,
    *,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SchedulingResult:
    """
    Withdraw or reject an application that still holds a booked interview.

    The interview is cancelled in the same result, which frees the
    interviewer's slot, and the interviewer is told about it.

    Raises:
        InvalidTransition: the edge does not exist or does not end the booking
        InvalidPayload: the interview belongs to another application
    """
    _check_pair(interview, application)
    at = now or utc_now()
    moved = apply_transition(
        application, actor_role, transition, payload, actor_id=actor_id, now=at
    )
    if not releases_interview(application.status, transition):
        raise InvalidTransition(
            f"{transition} does not release the booked interview",
            application_id=application.id,
            transition=transition,
        )

    side_effects = list(moved.side_effects)
    if interview.status in (InterviewStatus.SCHEDULED, InterviewStatus.CONFIRMED):
        interview = apply_transition(
            interview,
            Role.SYSTEM,
            "cancel",
            {"reason": f"Application {moved.new_state.value}"},
            actor_id=actor_id,
            now=at,
        ).entity
        side_effects.append(
            NotifyActor(
                template="interview_cancelled",
                role=Role.HR,
                entity_type=EntityType.INTERVIEW,
                entity_id=interview.id,
                recipient_id=interview.rh_user_id,
                details={
                    "application_id": application.id,
                    "job_title": application.job_title,
                    "scheduled_date": interview.scheduled_date,
                    "scheduled_time": interview.scheduled_time,
                    "reason": interview.cancellation_reason,
                },
            )
        )
        logger.info(
            f"Cancelled interview {interview.id} after application "
            f"{application.id} was {moved.new_state.value}"
        )

    return SchedulingResult(
        interview=interview, application=moved.entity, side_effects=side_effects
    )


def complete_interview(
    interview: Interview,
    application: Application,
    actor_role: Union[Role, str] = Role.HR,
    feedback: Optional[str] = None,
    rating: Optional[int] = None,
    *,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SchedulingResult:
    """Record the outcome of an interview and move the application to final review."""
    _check_pair(interview, application)
    if application.scheduled_interview_id != interview.id:
        raise InvalidTransition(
            "Interview is not the application's active interview",
            interview_id=interview.id,
            application_id=application.id,
        )
    at = now or utc_now()
    payload = {"feedback": feedback, "rating": rating}
    completed = apply_transition(
        interview, actor_role, "complete", payload, actor_id=actor_id, now=at
    ).entity
    moved = apply_transition(
        application, actor_role, "complete_interview", payload, actor_id=actor_id, now=at
    )
    return SchedulingResult(
        interview=completed, application=moved.entity, side_effects=moved.side_effects
    )


def suggest_slots(
    rh_user_id: str,
    scheduled_date: str,
    duration: int,
    interviews: Iterable[Interview],
    *,
    workday_start: Optional[str] = None,
    workday_end: Optional[str] = None,
    step_minutes: Optional[int] = None,
    today: Optional[date] = None,
) -> list[str]:
    """
    Propose free start times for an interviewer on one day.

    Args:
        rh_user_id: Interviewer to check
        scheduled_date: Day to search, YYYY-MM-DD
        duration: Interview length in minutes
        interviews: Known interviews
        workday_start: First possible start, defaults to settings
        workday_end: Latest possible end, defaults to settings
        step_minutes: Spacing between candidate starts, defaults to settings

    Returns:
        HH:MM start times, earliest first
    """
    start = _parse_slot(scheduled_date, "00:00", duration, today or utc_today())
    day = start.date()
    opens: time = parse_clock_time(workday_start or settings.workday_start)
    closes: time = parse_clock_time(workday_end or settings.workday_end)
    step = step_minutes or settings.slot_step_minutes

    known = [i for i in interviews if i.rh_user_id == rh_user_id and i.is_active]
    slots: list[str] = []
    cursor = combine(day, opens)
    last_end = combine(day, closes)
    while add_minutes(cursor, duration) <= last_end:
        if not find_conflicts(rh_user_id, cursor, duration, known):
            slots.append(format_clock_time(cursor.time()))
        cursor = add_minutes(cursor, step)
    return slots
