"""FastAPI dependencies for dependency injection."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from database.engine import AsyncSessionLocal
from database.store import SQLAlchemyEntityStore
from workflow.adapters import InMemoryConversationService, LoggingNotificationSender
from workflow.effects import EffectRunner
from workflow.interfaces import ConversationService, EntityStore, NotificationSender
from workflow.service import WorkflowService
from workflow.status import Role, parse_role


@dataclass(frozen=True)
class Actor:
    """Who is acting, as asserted by the upstream gateway."""

    role: Role
    id: Optional[str] = None


async def get_actor(
    x_actor_role: str = Header(..., description="candidate, project_leader, hr (RH), ceo or system"),
    x_actor_id: Optional[str] = Header(None, description="Acting user id"),
) -> Actor:
    """Read the acting role and user from the request headers."""
    return Actor(role=parse_role(x_actor_role), id=x_actor_id)


@lru_cache
def get_entity_store() -> EntityStore:
    return SQLAlchemyEntityStore(AsyncSessionLocal)


@lru_cache
def get_notification_sender() -> NotificationSender:
    return LoggingNotificationSender()


@lru_cache
def get_conversation_service() -> ConversationService:
    return InMemoryConversationService()


def get_workflow_service(
    store: EntityStore = Depends(get_entity_store),
    notifications: NotificationSender = Depends(get_notification_sender),
    conversations: ConversationService = Depends(get_conversation_service),
) -> WorkflowService:
    return WorkflowService(store, EffectRunner(notifications, conversations))
