"""
Unit tests for the async workflow service.

Tests cover:
- Job lifecycle through the store, including deletion rules
- Application submission and review
- Interview booking with conversation linking
- Withdrawal and rejection releasing a booked interview
- Optimistic concurrency: retries and racing bookings
"""

from datetime import date, timedelta

import pytest

from core.exceptions import (
    EntityNotFound,
    Forbidden,
    InvalidTransition,
    SlotConflict,
    VersionConflict,
)
from workflow.adapters import InMemoryEntityStore
from workflow.effects import EffectRunner
from workflow.models import Application
from workflow.scheduler import ScheduleRequest
from workflow.service import WorkflowService
from workflow.status import (
    ApplicationStatus,
    EntityType,
    InterviewStatus,
    InterviewType,
    JobStatus,
    Role,
)

QUESTIONS = {"questions": [{"text": "Describe a migration you led"}]}


def future_date(days=30):
    return (date.today() + timedelta(days=days)).isoformat()


async def published_job(service):
    job = await service.create_job({"title": "Platform Engineer"}, Role.PROJECT_LEADER, "pl-1")
    await service.attach_question_set(job.id, Role.PROJECT_LEADER, "technical", QUESTIONS)
    await service.transition_job(job.id, Role.PROJECT_LEADER, "submit_to_hr")
    await service.attach_question_set(job.id, "RH", "hr", QUESTIONS)
    await service.transition_job(job.id, Role.HR, "complete_hr")
    await service.transition_job(job.id, Role.PROJECT_LEADER, "submit_for_approval")
    await service.transition_job(job.id, Role.CEO, "approve", actor_id="ceo-1")
    return await service.get_job(job.id)


async def seed_application(store, status=ApplicationStatus.UNDER_REVIEW, **fields):
    application = Application(job_id="job-1", candidate_id="cand-1", status=status, **fields)
    return await store.write_if_version(application, None)


def booking(application_id, time="14:00", **overrides):
    fields = dict(
        application_id=application_id,
        rh_user_id="hr-1",
        scheduled_date=future_date(),
        scheduled_time=time,
        duration=60,
        type=InterviewType.VIDEO,
    )
    fields.update(overrides)
    return ScheduleRequest(**fields)


class FlakyStore(InMemoryEntityStore):
    """Store whose next batch write runs a competing action first."""

    def __init__(self):
        super().__init__()
        self.before_write = None
        self.conflicts_left = 0

    async def write_batch_if_version(self, items):
        if self.conflicts_left:
            self.conflicts_left -= 1
            raise VersionConflict("simulated concurrent write")
        if self.before_write is not None:
            hook, self.before_write = self.before_write, None
            await hook()
        return await super().write_batch_if_version(items)


class TestJobs:
    """Test the job lifecycle through the service."""

    @pytest.mark.asyncio
    async def test_approval_publishes_and_notifies(self, service, sender):
        job = await published_job(service)

        assert job.status == JobStatus.PUBLISHED
        assert job.version == 7
        assert job.published_at is not None
        templates = [intent.template for intent in sender.sent]
        assert templates == [
            "job_pending_hr",
            "job_hr_completed",
            "job_pending_approval",
            "job_approved",
        ]

    @pytest.mark.asyncio
    async def test_create_defaults(self, service):
        job = await service.create_job(
            {"title": "Analyst", "status": "published"}, "project_leader", "pl-7"
        )
        assert job.status == JobStatus.DRAFT
        assert job.project_leader_id == "pl-7"
        assert job.version == 1

    @pytest.mark.asyncio
    async def test_only_project_leader_creates(self, service):
        with pytest.raises(Forbidden):
            await service.create_job({"title": "Analyst"}, Role.HR)

    @pytest.mark.asyncio
    async def test_transition_outcome(self, service):
        job = await service.create_job({"title": "Analyst"}, Role.PROJECT_LEADER, "pl-1")
        outcome = await service.transition_job(job.id, Role.PROJECT_LEADER, "submit_to_hr")
        assert outcome.transitions == ["submit_to_hr"]
        assert outcome.entity.status == JobStatus.PENDING_HR
        assert outcome.effects.failures == []

    @pytest.mark.asyncio
    async def test_delete_draft(self, service):
        job = await service.create_job({"title": "Analyst"}, Role.PROJECT_LEADER)
        await service.delete_job(job.id, Role.CEO)
        with pytest.raises(EntityNotFound):
            await service.get_job(job.id)

    @pytest.mark.asyncio
    async def test_delete_refused_with_applications(self, service):
        job = await published_job(service)
        await service.submit_application({"job_id": job.id}, Role.CANDIDATE, "cand-1")
        with pytest.raises(Forbidden):
            await service.delete_job(job.id, Role.PROJECT_LEADER)

    @pytest.mark.asyncio
    async def test_hr_cannot_delete(self, service):
        job = await service.create_job({"title": "Analyst"}, Role.PROJECT_LEADER)
        with pytest.raises(Forbidden):
            await service.delete_job(job.id, Role.HR)


class TestApplications:
    """Test submission, review and notes."""

    @pytest.mark.asyncio
    async def test_submit_to_published_job(self, service):
        job = await published_job(service)
        application = await service.submit_application(
            {"job_id": job.id, "candidate_id": "spoofed", "tags": ["remote"]},
            Role.CANDIDATE,
            "cand-42",
        )
        assert application.status == ApplicationStatus.SUBMITTED
        assert application.candidate_id == "cand-42"
        assert application.job_title == "Platform Engineer"
        assert await service.list_applications(job_id=job.id) == [application]

    @pytest.mark.asyncio
    async def test_submit_to_unpublished_job(self, service):
        job = await service.create_job({"title": "Analyst"}, Role.PROJECT_LEADER)
        with pytest.raises(InvalidTransition):
            await service.submit_application(
                {"job_id": job.id, "candidate_id": "c"}, Role.CANDIDATE, "c"
            )

    @pytest.mark.asyncio
    async def test_staff_cannot_submit(self, service):
        with pytest.raises(Forbidden):
            await service.submit_application({"job_id": "job-1"}, Role.HR)

    @pytest.mark.asyncio
    async def test_review_flow(self, service, store):
        application = await seed_application(store, ApplicationStatus.SUBMITTED)
        await service.transition_application(application.id, Role.SYSTEM, "start_technical_review")
        await service.transition_application(
            application.id,
            Role.HR,
            "record_technical_assessment",
            {"technical_assessment": {"score": 60, "max_score": 100, "passed": True}},
        )
        outcome = await service.transition_application(
            application.id,
            Role.HR,
            "record_hr_assessment",
            {"hr_assessment": {"score": 90, "max_score": 100, "passed": True}},
        )
        assert outcome.entity.status == ApplicationStatus.UNDER_REVIEW
        assert outcome.entity.overall_score == 72.0

    @pytest.mark.parametrize(
        "transition", ["schedule_interview", "complete_interview", "cancel_interview"]
    )
    @pytest.mark.asyncio
    async def test_scheduler_edges_not_directly_reachable(self, service, store, transition):
        application = await seed_application(store, ApplicationStatus.INTERVIEW_SCHEDULED)
        with pytest.raises(InvalidTransition):
            await service.transition_application(
                application.id, Role.HR, transition, {"interview_id": "x"}
            )

    @pytest.mark.asyncio
    async def test_filter_by_status(self, service, store):
        await seed_application(store, ApplicationStatus.SUBMITTED)
        held = await seed_application(store, ApplicationStatus.PENDING_DECISION)
        found = await service.list_applications(status=ApplicationStatus.PENDING_DECISION)
        assert [a.id for a in found] == [held.id]

    @pytest.mark.asyncio
    async def test_note_on_terminal_application(self, service, store):
        application = await seed_application(store, ApplicationStatus.REJECTED)
        updated = await service.add_note(application.id, "Keep for next year", Role.HR, "hr-1")
        assert updated.notes[0].text == "Keep for next year"
        assert updated.version == 2


class TestInterviews:
    """Test interview booking through the service."""

    @pytest.mark.asyncio
    async def test_booking_persists_and_links_conversation(
        self, service, store, sender, conversations
    ):
        application = await seed_application(store)

        outcome = await service.schedule_interview(
            booking(application.id), "Ada Lovelace", "ada@example.com", actor_id="hr-1"
        )

        interview = outcome.entity
        assert interview.version == 2
        assert interview.candidate_notified is True
        assert outcome.related["application"].status == ApplicationStatus.INTERVIEW_SCHEDULED
        assert [o.kind for o in outcome.effects.outcomes] == [
            "notify_candidate",
            "create_or_reuse_conversation",
        ]
        stored = await service.get_application(application.id)
        assert stored.scheduled_interview_id == interview.id
        assert stored.conversation_id == conversations.conversations[application.id]["id"]
        calendar = await store.read(EntityType.CALENDAR, "hr-1")
        assert calendar.booked_count == 1
        assert sender.sent[0].template == "interview_scheduled"

    @pytest.mark.asyncio
    async def test_overlapping_booking_rejected(self, service, store):
        first = await seed_application(store)
        second = await seed_application(store)
        await service.schedule_interview(booking(first.id, "14:00"), "Ada")

        with pytest.raises(SlotConflict):
            await service.schedule_interview(booking(second.id, "14:30"), "Grace")
        outcome = await service.schedule_interview(booking(second.id, "15:00"), "Grace")
        assert outcome.entity.scheduled_time == "15:00"

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_booking(self, service, store, sender):
        sender.fail_templates.add("interview_scheduled")
        application = await seed_application(store)

        outcome = await service.schedule_interview(booking(application.id), "Ada")

        assert outcome.effects.failures[0].template == "interview_scheduled"
        stored = await service.get_interview(outcome.entity.id)
        assert stored.status == InterviewStatus.SCHEDULED
        assert stored.candidate_notified is False
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_reschedule_replaces(self, service, store):
        application = await seed_application(store)
        first = await service.schedule_interview(booking(application.id, "10:00"), "Ada")

        second = await service.schedule_interview(
            booking(application.id, "10:30", replace_existing=True), "Ada"
        )

        replaced = second.related["replaced_interview"]
        assert replaced.id == first.entity.id
        assert replaced.status == InterviewStatus.RESCHEDULED
        assert second.related["application"].scheduled_interview_id == second.entity.id
        listed = await service.list_interviews(application_id=application.id)
        assert [i.scheduled_time for i in listed] == ["10:00", "10:30"]

    @pytest.mark.asyncio
    async def test_confirm_complete(self, service, store):
        application = await seed_application(store)
        booked = await service.schedule_interview(booking(application.id), "Ada")

        await service.confirm_interview(booked.entity.id, Role.CANDIDATE, "cand-1")
        outcome = await service.complete_interview(
            booked.entity.id, Role.HR, "Good systems thinking", 4, "hr-1"
        )

        assert outcome.entity.status == InterviewStatus.COMPLETED
        assert outcome.related["application"].status == ApplicationStatus.FINAL_REVIEW

    @pytest.mark.asyncio
    async def test_cancel(self, service, store):
        application = await seed_application(store)
        booked = await service.schedule_interview(booking(application.id), "Ada")

        outcome = await service.cancel_interview(booked.entity.id, Role.HR, "No show")

        assert outcome.entity.status == InterviewStatus.CANCELLED
        assert outcome.related["application"].status == ApplicationStatus.UNDER_REVIEW
        slots = await service.suggest_slots("hr-1", future_date(), 60)
        assert "14:00" in slots

    @pytest.mark.asyncio
    async def test_withdrawal_frees_the_slot(self, service, store, sender):
        withdrawn = await seed_application(store)
        other = await seed_application(store)
        booked = await service.schedule_interview(booking(withdrawn.id, "14:00"), "Ada")

        outcome = await service.transition_application(
            withdrawn.id, Role.CANDIDATE, "withdraw", actor_id="cand-1"
        )

        assert outcome.entity.status == ApplicationStatus.WITHDRAWN
        cancelled = await service.get_interview(booked.entity.id)
        assert cancelled.status == InterviewStatus.CANCELLED
        assert outcome.related["cancelled_interview"].id == cancelled.id
        assert sender.sent[-1].template == "interview_cancelled"
        assert sender.sent[-1].recipient_id == "hr-1"

        rebooked = await service.schedule_interview(booking(other.id, "14:00"), "Grace")
        assert rebooked.entity.scheduled_time == "14:00"

    @pytest.mark.asyncio
    async def test_rejection_with_booked_interview(self, service, store):
        application = await seed_application(store)
        booked = await service.schedule_interview(booking(application.id), "Ada")
        await service.confirm_interview(booked.entity.id, Role.HR)

        outcome = await service.transition_application(
            application.id, Role.PROJECT_LEADER, "reject", {"feedback": "Role filled"}, "pl-1"
        )

        assert outcome.entity.status == ApplicationStatus.REJECTED
        assert outcome.entity.scheduled_interview_id is None
        interview = await service.get_interview(booked.entity.id)
        assert interview.status == InterviewStatus.CANCELLED
        assert interview.cancellation_reason == "Application rejected"
        assert "14:00" in await service.suggest_slots("hr-1", future_date(), 60)

    @pytest.mark.asyncio
    async def test_withdrawal_with_missing_interview(self, service, store):
        """A link to an interview that no longer exists does not block withdrawal."""
        interview_id = "int-gone"
        application = await seed_application(
            store, ApplicationStatus.INTERVIEW_SCHEDULED, scheduled_interview_id=interview_id
        )

        outcome = await service.transition_application(
            application.id, Role.CANDIDATE, "withdraw"
        )

        assert outcome.entity.status == ApplicationStatus.WITHDRAWN
        assert outcome.related == {}

    @pytest.mark.asyncio
    async def test_pipeline(self, service, store):
        await published_job(service)
        await seed_application(store, ApplicationStatus.SUBMITTED)
        metrics = await service.pipeline_metrics({"received": "up"})
        assert metrics.total_applications == 1
        assert metrics.active_jobs == 1
        assert metrics.stages[0].trend == "up"


class TestConcurrency:
    """Test version-conflict retries."""

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, sender, conversations):
        store = FlakyStore()
        service = WorkflowService(store, EffectRunner(sender, conversations))
        application = await seed_application(store)
        store.conflicts_left = 2

        outcome = await service.schedule_interview(booking(application.id), "Ada")

        assert outcome.entity.status == InterviewStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, sender, conversations):
        store = FlakyStore()
        service = WorkflowService(
            store, EffectRunner(sender, conversations), max_version_retries=1
        )
        application = await seed_application(store)
        store.conflicts_left = 5

        with pytest.raises(VersionConflict):
            await service.schedule_interview(booking(application.id), "Ada")

    @pytest.mark.asyncio
    async def test_racing_bookings_only_one_wins(self, sender, conversations):
        """Two overlapping bookings computed on the same snapshot: one must fail."""
        store = FlakyStore()
        service = WorkflowService(store, EffectRunner(sender, conversations))
        first = await seed_application(store)
        second = await seed_application(store)

        async def competing_booking():
            await service.schedule_interview(booking(second.id, "14:30"), "Grace")

        store.before_write = competing_booking

        with pytest.raises(SlotConflict):
            await service.schedule_interview(booking(first.id, "14:00"), "Ada")

        booked = await service.list_interviews(rh_user_id="hr-1")
        assert [i.application_id for i in booked] == [second.id]
        assert (await service.get_application(first.id)).status == ApplicationStatus.UNDER_REVIEW
