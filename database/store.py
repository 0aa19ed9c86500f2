"""
SQLAlchemy-backed EntityStore.

Every write is an ``UPDATE ... WHERE version = :expected`` (or an ``INSERT``
for new entities), and a batch runs inside a single transaction so either all
of its rows change or none do.
"""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import EntityNotFound, InvalidPayload, VersionConflict
from database.models.entities import WorkflowEntityRecord
from workflow.interfaces import index_values, normalize_filters
from workflow.models import ENTITY_MODELS, WorkflowEntity
from workflow.status import EntityType

logger = logging.getLogger(__name__)


def to_payload(entity: WorkflowEntity) -> dict[str, Any]:
    """Serialise an entity, leaving out the version and derived fields."""
    derived = set(type(entity).model_computed_fields)
    return entity.model_dump(mode="json", exclude={"version", *derived})


def from_record(record: WorkflowEntityRecord) -> WorkflowEntity:
    model = ENTITY_MODELS[EntityType(record.entity_type)]
    return model.model_validate({**record.payload, "version": record.version})


class SQLAlchemyEntityStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def read(self, entity_type: EntityType, entity_id: str) -> WorkflowEntity:
        entity_type = EntityType(entity_type)
        async with self.session_factory() as session:
            record = await session.get(
                WorkflowEntityRecord, (entity_type.value, entity_id)
            )
            if record is None:
                raise EntityNotFound(
                    f"{entity_type.value} {entity_id} not found",
                    entity_type=entity_type.value,
                    entity_id=entity_id,
                )
            return from_record(record)

    async def query(self, entity_type: EntityType, **filters: Any) -> list[WorkflowEntity]:
        entity_type = EntityType(entity_type)
        wanted = normalize_filters(filters)
        stmt = select(WorkflowEntityRecord).where(
            WorkflowEntityRecord.entity_type == entity_type.value,
            *(getattr(WorkflowEntityRecord, column) == value for column, value in wanted.items()),
        )
        async with self.session_factory() as session:
            result = await session.execute(
                stmt.order_by(WorkflowEntityRecord.created_at, WorkflowEntityRecord.entity_id)
            )
            return [from_record(record) for record in result.scalars().all()]

    async def write_if_version(
        self, entity: WorkflowEntity, expected_version: Optional[int]
    ) -> WorkflowEntity:
        saved = await self.write_batch_if_version([(entity, expected_version)])
        return saved[0]

    async def write_batch_if_version(
        self, items: Sequence[tuple[WorkflowEntity, Optional[int]]]
    ) -> list[WorkflowEntity]:
        keys = [entity.key for entity, _ in items]
        if len(set(keys)) != len(keys):
            raise InvalidPayload("Batch writes the same entity twice")

        saved: list[WorkflowEntity] = []
        async with self.session_factory() as session:
            async with session.begin():
                for entity, expected_version in items:
                    saved.append(await self._write(session, entity, expected_version))
        logger.debug(f"Wrote {len(saved)} workflow entities")
        return saved

    async def _write(
        self,
        session: AsyncSession,
        entity: WorkflowEntity,
        expected_version: Optional[int],
    ) -> WorkflowEntity:
        values = {**index_values(entity), "payload": to_payload(entity)}
        if expected_version is None:
            try:
                await session.execute(
                    insert(WorkflowEntityRecord).values(
                        entity_type=entity.entity_type.value,
                        entity_id=entity.id,
                        version=1,
                        **values,
                    )
                )
            except IntegrityError as e:
                raise VersionConflict(
                    f"{entity.entity_type.value} {entity.id} already exists",
                    entity_id=entity.id,
                ) from e
            return entity.model_copy(update={"version": 1})

        result = await session.execute(
            update(WorkflowEntityRecord)
            .where(
                and_(
                    WorkflowEntityRecord.entity_type == entity.entity_type.value,
                    WorkflowEntityRecord.entity_id == entity.id,
                    WorkflowEntityRecord.version == expected_version,
                )
            )
            .values(version=expected_version + 1, updated_at=func.now(), **values)
        )
        if result.rowcount == 0:
            raise VersionConflict(
                f"{entity.entity_type.value} {entity.id} was modified concurrently",
                entity_id=entity.id,
                expected_version=expected_version,
            )
        return entity.model_copy(update={"version": expected_version + 1})

    async def delete_if_version(
        self, entity_type: EntityType, entity_id: str, expected_version: int
    ) -> None:
        entity_type = EntityType(entity_type)
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(WorkflowEntityRecord).where(
                        WorkflowEntityRecord.entity_type == entity_type.value,
                        WorkflowEntityRecord.entity_id == entity_id,
                        WorkflowEntityRecord.version == expected_version,
                    )
                )
                if result.rowcount:
                    return
                exists = await session.get(
                    WorkflowEntityRecord, (entity_type.value, entity_id)
                )
        if exists is None:
            raise EntityNotFound(
                f"{entity_type.value} {entity_id} not found", entity_id=entity_id
            )
        raise VersionConflict(
            f"{entity_type.value} {entity_id} was modified concurrently",
            entity_id=entity_id,
            expected_version=expected_version,
        )
