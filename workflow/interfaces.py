"""
Collaborator contracts.

The workflow core depends on these protocols only; concrete adapters live in
``workflow.adapters`` and ``database.store``.
"""

from enum import Enum as PyEnum
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from core.exceptions import InvalidPayload
from workflow.models import WorkflowEntity
from workflow.status import EntityType


@runtime_checkable
class NotificationSender(Protocol):
    async def send(self, intent: Any) -> None:
        """
        Deliver a notification intent.

        Delivery is at-least-once; implementations raise ``DeliveryError`` when
        the message could not be handed off.
        """
        ...


@runtime_checkable
class ConversationService(Protocol):
    async def create_or_reuse(
        self, application_id: str, candidate_id: str, staff_user_id: str
    ) -> str:
        """Return the conversation for an application, creating it once."""
        ...


@runtime_checkable
class EntityStore(Protocol):
    async def read(self, entity_type: EntityType, entity_id: str) -> WorkflowEntity:
        """Raises ``EntityNotFound`` when absent."""
        ...

    async def query(
        self, entity_type: EntityType, **filters: Any
    ) -> list[WorkflowEntity]: ...

    async def write_if_version(
        self, entity: WorkflowEntity, expected_version: Optional[int]
    ) -> WorkflowEntity:
        """
        Persist ``entity`` if the stored version still equals ``expected_version``.

        ``None`` means the entity must not exist yet. Returns the stored snapshot
        with its bumped version, or raises ``VersionConflict``.
        """
        ...

    async def write_batch_if_version(
        self, items: Sequence[tuple[WorkflowEntity, Optional[int]]]
    ) -> list[WorkflowEntity]:
        """Write every item or none of them."""
        ...

    async def delete_if_version(
        self, entity_type: EntityType, entity_id: str, expected_version: int
    ) -> None: ...


QUERYABLE_FIELDS = ("status", "job_id", "application_id", "rh_user_id")


def index_values(entity: WorkflowEntity) -> dict[str, Optional[str]]:
    """Column values an entity is queryable by."""
    status = getattr(entity, "status", None)
    values: dict[str, Optional[str]] = {
        "status": status.value if status is not None else None,
        "job_id": getattr(entity, "job_id", None),
        "application_id": getattr(entity, "application_id", None),
        "rh_user_id": getattr(entity, "rh_user_id", None),
    }
    if entity.entity_type == EntityType.JOB:
        values["job_id"] = entity.id
    elif entity.entity_type == EntityType.APPLICATION:
        values["application_id"] = entity.id
    elif entity.entity_type == EntityType.CALENDAR:
        values["rh_user_id"] = entity.id
    return values


def normalize_filters(filters: dict[str, Any]) -> dict[str, str]:
    """Validate query filters and reduce enum values to strings."""
    unknown = sorted(set(filters) - set(QUERYABLE_FIELDS))
    if unknown:
        raise InvalidPayload(
            f"Unsupported filters: {', '.join(unknown)}", filters=unknown
        )
    return {
        key: value.value if isinstance(value, PyEnum) else str(value)
        for key, value in filters.items()
        if value is not None
    }
