"""Shared fixtures and utilities for tests."""

import os

# Settings are read at import time, so the environment is seeded before any
# application module is imported.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JSON_LOGS", "false")
os.environ.setdefault("APP_ENV", "development")

from datetime import date, datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

from core.exceptions import DeliveryError  # noqa: E402
from workflow.adapters import (  # noqa: E402
    InMemoryConversationService,
    InMemoryEntityStore,
    LoggingNotificationSender,
)
from workflow.effects import EffectRunner  # noqa: E402
from workflow.models import (  # noqa: E402
    Application,
    Interview,
    Job,
    Question,
    QuestionSet,
)
from workflow.service import WorkflowService  # noqa: E402
from workflow.status import (  # noqa: E402
    ApplicationStatus,
    InterviewType,
    JobStatus,
)

NOW = datetime(2030, 3, 4, 10, 0, tzinfo=timezone.utc)
TODAY = date(2030, 3, 4)


class FlakyNotificationSender(LoggingNotificationSender):
    """Notification sender that fails for selected templates."""

    def __init__(self, fail_templates=()):
        super().__init__()
        self.fail_templates = set(fail_templates)

    async def send(self, intent):
        if getattr(intent, "template", None) in self.fail_templates:
            raise DeliveryError(f"Mail relay rejected {intent.template}")
        await super().send(intent)


@pytest.fixture
def question_set():
    return QuestionSet(
        questions=[Question(text="Explain optimistic locking"), Question(text="Design a queue")]
    )


@pytest.fixture
def make_job(question_set):
    """Factory for jobs in any state."""

    def _make(status=JobStatus.DRAFT, with_questions=True, **overrides):
        fields = dict(
            title="Backend Engineer",
            department="Engineering",
            status=status,
            project_leader_id="pl-1",
            hr_user_id="hr-1",
            ceo_id="ceo-1",
            created_at=NOW - timedelta(days=5),
            updated_at=NOW - timedelta(days=5),
        )
        if with_questions:
            fields["technical_questions"] = question_set
            fields["hr_questions"] = QuestionSet(questions=[Question(text="Why us?")])
        fields.update(overrides)
        return Job(**fields)

    return _make


@pytest.fixture
def make_application():
    """Factory for applications in any state."""

    def _make(status=ApplicationStatus.SUBMITTED, **overrides):
        fields = dict(
            job_id="job-1",
            candidate_id="cand-1",
            job_title="Backend Engineer",
            status=status,
            applied_at=NOW - timedelta(days=10),
            last_updated_at=NOW - timedelta(days=10),
        )
        fields.update(overrides)
        return Application(**fields)

    return _make


@pytest.fixture
def make_interview():
    """Factory for interviews on the fixed test day."""

    def _make(scheduled_time="14:00", duration=60, **overrides):
        fields = dict(
            application_id="app-other",
            candidate_id="cand-other",
            rh_user_id="hr-1",
            scheduled_date=TODAY.isoformat(),
            scheduled_time=scheduled_time,
            duration=duration,
            type=InterviewType.VIDEO,
        )
        fields.update(overrides)
        return Interview(**fields)

    return _make


@pytest.fixture
def store():
    return InMemoryEntityStore()


@pytest.fixture
def sender():
    return FlakyNotificationSender()


@pytest.fixture
def conversations():
    return InMemoryConversationService()


@pytest.fixture
def service(store, sender, conversations):
    return WorkflowService(store, EffectRunner(sender, conversations))
