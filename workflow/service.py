"""
Workflow service.

Async orchestration around the pure engine and scheduler: read the current
snapshots, compute the change, write it back with a version check and only
then run the resulting intents. A ``VersionConflict`` on write re-reads and
recomputes, up to ``max_version_retries`` times.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from core.config import settings
from core.exceptions import (
    EntityNotFound,
    Forbidden,
    InvalidTransition,
    VersionConflict,
    WorkflowError,
)
from core.utils.datetime import now as utc_now
from workflow import engine, scheduler
from workflow.effects import EffectReport, EffectRunner
from workflow.interfaces import EntityStore
from workflow.models import (
    Application,
    Interview,
    InterviewerCalendar,
    Job,
    QuestionSet,
    WorkflowEntity,
)
from workflow.pipeline import PipelineMetrics, TrendInput, compute_pipeline_metrics
from workflow.status import (
    ApplicationStatus,
    EntityType,
    JobStatus,
    Role,
    parse_role,
)
from workflow.transitions import (
    APPLICATION_SUBMIT_ROLES,
    JOB_CREATE_ROLES,
    JOB_DELETE_ROLES,
    SCHEDULER_TRANSITIONS,
    releases_interview,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
RoleInput = Union[Role, str]


@dataclass
class WorkflowOutcome:
    """What an operation changed and what happened to its intents."""

    entity: WorkflowEntity
    transitions: list[str] = field(default_factory=list)
    side_effects: list[Any] = field(default_factory=list)
    effects: EffectReport = field(default_factory=EffectReport)
    related: dict[str, Optional[WorkflowEntity]] = field(default_factory=dict)


def _require_role(role: Role, allowed: frozenset[Role], action: str) -> None:
    if role not in allowed:
        raise Forbidden(
            f"Role {role.value} may not {action}",
            role=role.value,
            allowed_roles=sorted(r.value for r in allowed),
        )


class WorkflowService:
    def __init__(
        self,
        store: EntityStore,
        effects: EffectRunner,
        max_version_retries: Optional[int] = None,
    ):
        self.store = store
        self.effects = effects
        self.max_version_retries = (
            settings.max_version_retries
            if max_version_retries is None
            else max_version_retries
        )

    # ==================== Plumbing ===================== #
    async def _with_retries(self, action: str, attempt: Callable[[], Awaitable[T]]) -> T:
        conflicts = 0
        while True:
            try:
                return await attempt()
            except VersionConflict:
                conflicts += 1
                if conflicts > self.max_version_retries:
                    logger.warning(f"{action}: giving up after {conflicts} version conflicts")
                    raise
                logger.info(f"{action}: version conflict, retrying ({conflicts})")
            except WorkflowError as e:
                logger.warning(f"{action} rejected: {e.code} {e.message}")
                raise

    async def _finish(self, outcome: WorkflowOutcome) -> WorkflowOutcome:
        outcome.effects = await self.effects.run(outcome.side_effects)
        for application_id, conversation_id in outcome.effects.conversation_ids.items():
            await self._link_conversation(application_id, conversation_id)
        return outcome

    async def _link_conversation(self, application_id: str, conversation_id: str) -> None:
        async def attempt() -> None:
            application = await self.get_application(application_id)
            if application.conversation_id == conversation_id:
                return
            await self.store.write_if_version(
                application.model_copy(update={"conversation_id": conversation_id}),
                application.version,
            )

        await self._with_retries("link_conversation", attempt)

    async def _read(self, entity_type: EntityType, entity_id: str):
        return await self.store.read(entity_type, entity_id)

    # ==================== Jobs ===================== #
    async def get_job(self, job_id: str) -> Job:
        return await self._read(EntityType.JOB, job_id)

    async def create_job(
        self, data: dict[str, Any], actor_role: RoleInput, actor_id: Optional[str] = None
    ) -> Job:
        role = parse_role(actor_role)
        _require_role(role, JOB_CREATE_ROLES, "create jobs")
        fields = {**data, "status": JobStatus.DRAFT}
        fields.setdefault("project_leader_id", actor_id)
        job = Job.model_validate(fields)
        saved = await self.store.write_if_version(job, None)
        logger.info(f"Created job {saved.id} ({saved.title})")
        return saved

    async def attach_question_set(
        self,
        job_id: str,
        actor_role: RoleInput,
        kind: str,
        question_set: Union[QuestionSet, dict[str, Any]],
        actor_id: Optional[str] = None,
    ) -> Job:
        async def attempt() -> Job:
            job = await self.get_job(job_id)
            updated = engine.attach_question_set(
                job, actor_role, kind, question_set, actor_id=actor_id
            )
            return await self.store.write_if_version(updated, job.version)

        return await self._with_retries("attach_question_set", attempt)

    async def transition_job(
        self,
        job_id: str,
        actor_role: RoleInput,
        transition: str,
        payload: Optional[dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> WorkflowOutcome:
        async def attempt() -> WorkflowOutcome:
            job = await self.get_job(job_id)
            result = engine.apply_transition(
                job, actor_role, transition, payload, actor_id=actor_id
            )
            saved = await self.store.write_if_version(result.entity, job.version)
            return WorkflowOutcome(
                entity=saved,
                transitions=result.transitions,
                side_effects=result.side_effects,
            )

        outcome = await self._with_retries(f"job {transition}", attempt)
        return await self._finish(outcome)

    async def delete_job(
        self, job_id: str, actor_role: RoleInput, actor_id: Optional[str] = None
    ) -> None:
        role = parse_role(actor_role)
        _require_role(role, JOB_DELETE_ROLES, "delete jobs")

        async def attempt() -> None:
            job = await self.get_job(job_id)
            applications = await self.store.query(EntityType.APPLICATION, job_id=job_id)
            engine.assert_deletable(job, applications)
            await self.store.delete_if_version(EntityType.JOB, job_id, job.version)

        await self._with_retries("delete_job", attempt)
        logger.info(f"Deleted job {job_id} by {role.value}")

    # ==================== Applications ===================== #
    async def get_application(self, application_id: str) -> Application:
        return await self._read(EntityType.APPLICATION, application_id)

    async def list_applications(
        self, job_id: Optional[str] = None, status: Optional[ApplicationStatus] = None
    ) -> list[Application]:
        applications = await self.store.query(
            EntityType.APPLICATION, job_id=job_id, status=status
        )
        return sorted(applications, key=lambda a: a.applied_at)

    async def submit_application(
        self, data: dict[str, Any], actor_role: RoleInput, actor_id: Optional[str] = None
    ) -> Application:
        role = parse_role(actor_role)
        _require_role(role, APPLICATION_SUBMIT_ROLES, "submit applications")
        job = await self.get_job(data["job_id"])
        if job.status != JobStatus.PUBLISHED:
            raise InvalidTransition(
                "Job is not accepting applications",
                job_id=job.id,
                state=job.status.value,
            )
        fields = {**data, "status": ApplicationStatus.SUBMITTED, "job_title": job.title}
        if role == Role.CANDIDATE and actor_id:
            fields["candidate_id"] = actor_id
        application = Application.model_validate(fields)
        saved = await self.store.write_if_version(application, None)
        logger.info(f"Application {saved.id} submitted for job {job.id}")
        return saved

    async def transition_application(
        self,
        application_id: str,
        actor_role: RoleInput,
        transition: str,
        payload: Optional[dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> WorkflowOutcome:
        if transition in SCHEDULER_TRANSITIONS:
            raise InvalidTransition(
                f"{transition} is driven by the interview endpoints",
                transition=transition,
            )

        async def attempt() -> WorkflowOutcome:
            application = await self.get_application(application_id)
            interview = await self._booked_interview(application, transition)
            if interview is not None:
                return await self._close_with_interview(
                    application, interview, actor_role, transition, payload, actor_id
                )
            result = engine.apply_transition(
                application, actor_role, transition, payload, actor_id=actor_id
            )
            saved = await self.store.write_if_version(
                result.entity, application.version
            )
            return WorkflowOutcome(
                entity=saved,
                transitions=result.transitions,
                side_effects=result.side_effects,
            )

        outcome = await self._with_retries(f"application {transition}", attempt)
        return await self._finish(outcome)

    async def _booked_interview(
        self, application: Application, transition: str
    ) -> Optional[Interview]:
        """The interview a withdrawal or rejection has to cancel, if any."""
        if not application.scheduled_interview_id or not releases_interview(
            application.status, transition
        ):
            return None
        try:
            return await self.get_interview(application.scheduled_interview_id)
        except EntityNotFound:
            logger.warning(
                f"Application {application.id} points at missing interview "
                f"{application.scheduled_interview_id}"
            )
            return None

    async def _close_with_interview(
        self,
        application: Application,
        interview: Interview,
        actor_role: RoleInput,
        transition: str,
        payload: Optional[dict[str, Any]],
        actor_id: Optional[str],
    ) -> WorkflowOutcome:
        result = scheduler.close_with_interview(
            application, interview, actor_role, transition, payload, actor_id=actor_id
        )
        writes: list[tuple[WorkflowEntity, Optional[int]]] = [
            (result.application, application.version)
        ]
        if result.interview.status != interview.status:
            writes.append((result.interview, interview.version))
        saved = await self.store.write_batch_if_version(writes)
        return WorkflowOutcome(
            entity=saved[0],
            transitions=[transition],
            side_effects=result.side_effects,
            related={"cancelled_interview": saved[1] if len(saved) > 1 else None},
        )

    async def add_note(
        self,
        application_id: str,
        note: str,
        actor_role: RoleInput,
        actor_id: Optional[str] = None,
    ) -> Application:
        async def attempt() -> Application:
            application = await self.get_application(application_id)
            updated = engine.append_note(application, note, actor_role, actor_id)
            return await self.store.write_if_version(updated, application.version)

        return await self._with_retries("add_note", attempt)

    # ==================== Interviews ===================== #
    async def get_interview(self, interview_id: str) -> Interview:
        return await self._read(EntityType.INTERVIEW, interview_id)

    async def list_interviews(
        self, rh_user_id: Optional[str] = None, application_id: Optional[str] = None
    ) -> list[Interview]:
        interviews = await self.store.query(
            EntityType.INTERVIEW, rh_user_id=rh_user_id, application_id=application_id
        )
        return sorted(interviews, key=lambda i: scheduler.interview_window(i)[0])

    async def _calendar(self, rh_user_id: str) -> Optional[InterviewerCalendar]:
        try:
            return await self.store.read(EntityType.CALENDAR, rh_user_id)
        except EntityNotFound:
            return None

    async def schedule_interview(
        self,
        request: scheduler.ScheduleRequest,
        candidate_name: str,
        candidate_email: Optional[str] = None,
        actor_role: RoleInput = Role.HR,
        actor_id: Optional[str] = None,
    ) -> WorkflowOutcome:
        async def attempt() -> WorkflowOutcome:
            application = await self.get_application(request.application_id)
            calendar = await self._calendar(request.rh_user_id)
            known: dict[str, Interview] = {}
            for interview in [
                *await self.store.query(EntityType.INTERVIEW, rh_user_id=request.rh_user_id),
                *await self.store.query(
                    EntityType.INTERVIEW, application_id=application.id
                ),
            ]:
                known[interview.id] = interview

            at = utc_now()
            result = scheduler.schedule_interview(
                scheduler.CandidateContext(
                    application=application,
                    candidate_name=candidate_name,
                    candidate_email=candidate_email,
                ),
                request,
                known.values(),
                actor_role=actor_role,
                actor_id=actor_id,
                now=at,
            )

            booked = InterviewerCalendar(
                id=request.rh_user_id,
                version=calendar.version if calendar else 0,
                booked_count=(calendar.booked_count if calendar else 0) + 1,
                last_booked_at=at,
            )
            writes: list[tuple[WorkflowEntity, Optional[int]]] = [
                (result.interview, None),
                (result.application, application.version),
                (booked, calendar.version if calendar else None),
            ]
            if result.replaced_interview is not None:
                writes.append(
                    (result.replaced_interview, known[result.replaced_interview.id].version)
                )
            saved = await self.store.write_batch_if_version(writes)
            return WorkflowOutcome(
                entity=saved[0],
                transitions=["schedule_interview"],
                side_effects=result.side_effects,
                related={
                    "application": saved[1],
                    "replaced_interview": saved[3] if len(saved) > 3 else None,
                },
            )

        outcome = await self._with_retries("schedule_interview", attempt)
        outcome = await self._finish(outcome)
        if outcome.effects.candidate_notified(outcome.entity.application_id):
            outcome.entity = await self._mark_candidate_notified(outcome.entity.id)
        return outcome

    async def _mark_candidate_notified(self, interview_id: str) -> Interview:
        async def attempt() -> Interview:
            interview = await self.get_interview(interview_id)
            if interview.candidate_notified:
                return interview
            return await self.store.write_if_version(
                interview.model_copy(update={"candidate_notified": True}),
                interview.version,
            )

        return await self._with_retries("mark_candidate_notified", attempt)


    async def confirm_interview(
        self, interview_id: str, actor_role: RoleInput, actor_id: Optional[str] = None
    ) -> WorkflowOutcome:
        async def attempt() -> WorkflowOutcome:
            interview = await self.get_interview(interview_id)
            confirmed = scheduler.confirm_interview(
                interview, actor_role, actor_id=actor_id
            )
            saved = await self.store.write_if_version(confirmed, interview.version)
            return WorkflowOutcome(entity=saved, transitions=["confirm"])

        return await self._with_retries("confirm_interview", attempt)

    async def _update_interview(
        self,
        action: str,
        interview_id: str,
        compute: Callable[[Interview, Application], scheduler.SchedulingResult],
    ) -> WorkflowOutcome:
        async def attempt() -> WorkflowOutcome:
            interview = await self.get_interview(interview_id)
            application = await self.get_application(interview.application_id)
            result = compute(interview, application)
            saved = await self.store.write_batch_if_version(
                [
                    (result.interview, interview.version),
                    (result.application, application.version),
                ]
            )
            return WorkflowOutcome(
                entity=saved[0],
                transitions=[action],
                side_effects=result.side_effects,
                related={"application": saved[1]},
            )

        outcome = await self._with_retries(action, attempt)
        return await self._finish(outcome)

    async def cancel_interview(
        self,
        interview_id: str,
        actor_role: RoleInput,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> WorkflowOutcome:
        return await self._update_interview(
            "cancel",
            interview_id,
            lambda interview, application: scheduler.cancel_interview(
                interview, application, actor_role, reason, actor_id=actor_id
            ),
        )

    async def complete_interview(
        self,
        interview_id: str,
        actor_role: RoleInput,
        feedback: Optional[str] = None,
        rating: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> WorkflowOutcome:
        return await self._update_interview(
            "complete",
            interview_id,
            lambda interview, application: scheduler.complete_interview(
                interview, application, actor_role, feedback, rating, actor_id=actor_id
            ),
        )

    async def suggest_slots(
        self, rh_user_id: str, scheduled_date: str, duration: int
    ) -> list[str]:
        interviews = await self.store.query(EntityType.INTERVIEW, rh_user_id=rh_user_id)
        return scheduler.suggest_slots(rh_user_id, scheduled_date, duration, interviews)

    # ==================== Pipeline ===================== #
    async def pipeline_metrics(self, trends: TrendInput = None) -> PipelineMetrics:
        applications = await self.store.query(EntityType.APPLICATION)
        jobs = await self.store.query(EntityType.JOB)
        return compute_pipeline_metrics(applications, jobs, trends)
