"""
Tests for the SQLAlchemy entity store, run against in-memory SQLite.
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.exceptions import EntityNotFound, InvalidPayload, VersionConflict
from database.engine import Base
from database.models.entities import WorkflowEntityRecord
from database.store import SQLAlchemyEntityStore, to_payload
from workflow.models import InterviewerCalendar
from workflow.status import ApplicationStatus, EntityType, JobStatus


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SQLAlchemyEntityStore(session_factory)


class TestPayload:
    def test_version_and_derived_fields_not_stored(self, make_job):
        payload = to_payload(make_job())
        assert "version" not in payload
        assert "technical_question_count" not in payload
        assert payload["status"] == "draft"

    def test_table_registered(self):
        assert WorkflowEntityRecord.__tablename__ in Base.metadata.tables


class TestSQLAlchemyEntityStore:
    """Test version-checked persistence."""

    @pytest.mark.asyncio
    async def test_round_trip(self, sql_store, make_job):
        job = make_job(status=JobStatus.PUBLISHED)

        saved = await sql_store.write_if_version(job, None)
        loaded = await sql_store.read(EntityType.JOB, job.id)

        assert saved.version == 1
        assert loaded.version == 1
        assert loaded.status == JobStatus.PUBLISHED
        assert loaded.technical_question_count == 2
        assert loaded.model_dump(exclude={"version"}) == job.model_dump(exclude={"version"})

    @pytest.mark.asyncio
    async def test_read_missing(self, sql_store):
        with pytest.raises(EntityNotFound):
            await sql_store.read(EntityType.APPLICATION, "missing")

    @pytest.mark.asyncio
    async def test_update_bumps_version(self, sql_store, make_application):
        created = await sql_store.write_if_version(make_application(), None)
        moved = created.model_copy(update={"status": ApplicationStatus.TECHNICAL_REVIEW})

        updated = await sql_store.write_if_version(moved, 1)

        assert updated.version == 2
        found = await sql_store.query(
            EntityType.APPLICATION, status=ApplicationStatus.TECHNICAL_REVIEW
        )
        assert [a.id for a in found] == [created.id]

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self, sql_store, make_application):
        created = await sql_store.write_if_version(make_application(), None)
        await sql_store.write_if_version(created, 1)

        with pytest.raises(VersionConflict):
            await sql_store.write_if_version(created, 1)

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self, sql_store, make_application):
        application = make_application()
        await sql_store.write_if_version(application, None)
        with pytest.raises(VersionConflict):
            await sql_store.write_if_version(application, None)

    @pytest.mark.asyncio
    async def test_batch_rolls_back(self, sql_store, make_application, make_interview):
        application = await sql_store.write_if_version(make_application(), None)
        interview = make_interview(application_id=application.id)

        with pytest.raises(VersionConflict):
            await sql_store.write_batch_if_version(
                [
                    (interview, None),
                    (InterviewerCalendar(id="hr-1", booked_count=1), None),
                    (application, 9),
                ]
            )

        assert await sql_store.query(EntityType.INTERVIEW) == []
        assert await sql_store.query(EntityType.CALENDAR) == []

    @pytest.mark.asyncio
    async def test_batch_rejects_duplicates(self, sql_store, make_application):
        application = make_application()
        with pytest.raises(InvalidPayload):
            await sql_store.write_batch_if_version(
                [(application, None), (application, None)]
            )

    @pytest.mark.asyncio
    async def test_query_index_columns(self, sql_store, make_application, make_interview):
        first = await sql_store.write_if_version(make_application(job_id="job-1"), None)
        await sql_store.write_if_version(make_application(job_id="job-2"), None)
        await sql_store.write_if_version(
            make_interview(application_id=first.id, rh_user_id="hr-7"), None
        )
        await sql_store.write_if_version(InterviewerCalendar(id="hr-7"), None)

        assert [a.id for a in await sql_store.query(EntityType.APPLICATION, job_id="job-1")] == [
            first.id
        ]
        by_interviewer = await sql_store.query(EntityType.INTERVIEW, rh_user_id="hr-7")
        assert [i.application_id for i in by_interviewer] == [first.id]
        calendar = await sql_store.read(EntityType.CALENDAR, "hr-7")
        assert calendar.booked_count == 0

    @pytest.mark.asyncio
    async def test_unknown_filter(self, sql_store):
        with pytest.raises(InvalidPayload):
            await sql_store.query(EntityType.JOB, department="Sales")

    @pytest.mark.asyncio
    async def test_delete(self, sql_store, make_job):
        job = await sql_store.write_if_version(make_job(), None)

        with pytest.raises(VersionConflict):
            await sql_store.delete_if_version(EntityType.JOB, job.id, 2)
        await sql_store.delete_if_version(EntityType.JOB, job.id, 1)

        with pytest.raises(EntityNotFound):
            await sql_store.delete_if_version(EntityType.JOB, job.id, 1)
