"""
In-process reference adapters.

Used by tests and local runs. All state lives on the instance, so separate
instances never share data.
"""

import asyncio
import logging
from typing import Any, Optional, Sequence
from uuid import uuid4

from core.exceptions import EntityNotFound, InvalidPayload, VersionConflict
from core.middleware.logging import mask_sensitive_data
from workflow.interfaces import index_values, normalize_filters
from workflow.models import WorkflowEntity
from workflow.status import EntityType

logger = logging.getLogger(__name__)


class InMemoryEntityStore:
    """Dictionary-backed EntityStore with version-checked writes."""

    def __init__(self):
        self._entities: dict[tuple[EntityType, str], WorkflowEntity] = {}
        self._lock = asyncio.Lock()

    async def read(self, entity_type: EntityType, entity_id: str) -> WorkflowEntity:
        entity = self._entities.get((EntityType(entity_type), entity_id))
        if entity is None:
            raise EntityNotFound(
                f"{EntityType(entity_type).value} {entity_id} not found",
                entity_type=EntityType(entity_type).value,
                entity_id=entity_id,
            )
        return entity.model_copy(deep=True)

    async def query(self, entity_type: EntityType, **filters: Any) -> list[WorkflowEntity]:
        wanted = normalize_filters(filters)
        entity_type = EntityType(entity_type)
        matches = [
            entity.model_copy(deep=True)
            for (kind, _), entity in self._entities.items()
            if kind == entity_type
            and all(index_values(entity).get(k) == v for k, v in wanted.items())
        ]
        return matches

    def _check(self, entity: WorkflowEntity, expected_version: Optional[int]) -> int:
        stored = self._entities.get(entity.key)
        if expected_version is None:
            if stored is not None:
                raise VersionConflict(
                    f"{entity.entity_type.value} {entity.id} already exists",
                    entity_id=entity.id,
                )
            return 1
        if stored is None or stored.version != expected_version:
            raise VersionConflict(
                f"{entity.entity_type.value} {entity.id} was modified concurrently",
                entity_id=entity.id,
                expected_version=expected_version,
                actual_version=stored.version if stored else None,
            )
        return expected_version + 1

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

        async with self._lock:
            versions = [self._check(entity, expected) for entity, expected in items]
            saved = [
                entity.model_copy(update={"version": version}, deep=True)
                for (entity, _), version in zip(items, versions)
            ]
            for entity in saved:
                self._entities[entity.key] = entity
        return [entity.model_copy(deep=True) for entity in saved]

    async def delete_if_version(
        self, entity_type: EntityType, entity_id: str, expected_version: int
    ) -> None:
        key = (EntityType(entity_type), entity_id)
        async with self._lock:
            stored = self._entities.get(key)
            if stored is None:
                raise EntityNotFound(
                    f"{key[0].value} {entity_id} not found", entity_id=entity_id
                )
            if stored.version != expected_version:
                raise VersionConflict(
                    f"{key[0].value} {entity_id} was modified concurrently",
                    entity_id=entity_id,
                    expected_version=expected_version,
                    actual_version=stored.version,
                )
            del self._entities[key]


class InMemoryConversationService:
    """One conversation per application, created on first use."""

    def __init__(self):
        self.conversations: dict[str, dict[str, str]] = {}

    async def create_or_reuse(
        self, application_id: str, candidate_id: str, staff_user_id: str
    ) -> str:
        existing = self.conversations.get(application_id)
        if existing is not None:
            return existing["id"]
        conversation = {
            "id": uuid4().hex,
            "application_id": application_id,
            "candidate_id": candidate_id,
            "staff_user_id": staff_user_id,
        }
        self.conversations[application_id] = conversation
        logger.info(f"Opened conversation {conversation['id']} for application {application_id}")
        return conversation["id"]


class LoggingNotificationSender:
    """Writes notifications to the log instead of delivering them."""

    def __init__(self):
        self.sent: list[Any] = []

    async def send(self, intent: Any) -> None:
        payload = intent.model_dump(mode="json")
        logger.info(f"Notification {payload.get('template')}: {mask_sensitive_data(payload)}")
        self.sent.append(intent)
