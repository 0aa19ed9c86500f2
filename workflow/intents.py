"""
Side-effect intents.

Workflow operations never talk to the outside world. They describe what should
happen next as intents, and the caller hands those to the effect runner once
the new state has been persisted.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from workflow.status import EntityType, Role


class NotifyCandidate(BaseModel):
    """Send a templated message to the candidate behind an application."""

    kind: Literal["notify_candidate"] = "notify_candidate"
    template: str
    application_id: str
    candidate_id: str
    details: dict[str, Any] = Field(default_factory=dict)


class NotifyActor(BaseModel):
    """Tell a staff role that an entity needs its attention."""

    kind: Literal["notify_actor"] = "notify_actor"
    template: str
    role: Role
    entity_type: EntityType
    entity_id: str
    recipient_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class CreateOrReuseConversation(BaseModel):
    """Open (or find) the message thread between a candidate and a staff user."""

    kind: Literal["create_or_reuse_conversation"] = "create_or_reuse_conversation"
    application_id: str
    candidate_id: str
    staff_user_id: str


SideEffect = Annotated[
    Union[NotifyCandidate, NotifyActor, CreateOrReuseConversation],
    Field(discriminator="kind"),
]
