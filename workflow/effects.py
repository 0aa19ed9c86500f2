"""Execution of side-effect intents after a successful write."""

import logging
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from core.exceptions import DeliveryError
from core.middleware.logging import mask_sensitive_data
from workflow.intents import CreateOrReuseConversation, NotifyActor, NotifyCandidate
from workflow.interfaces import ConversationService, NotificationSender

logger = logging.getLogger(__name__)


class EffectOutcome(BaseModel):
    kind: str
    template: Optional[str] = None
    delivered: bool
    error: Optional[str] = None
    application_id: Optional[str] = None
    conversation_id: Optional[str] = None


class EffectReport(BaseModel):
    outcomes: list[EffectOutcome] = Field(default_factory=list)

    @property
    def failures(self) -> list[EffectOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.delivered]

    @property
    def conversation_ids(self) -> dict[str, str]:
        """Conversation id per application, for intents that produced one."""
        return {
            outcome.application_id: outcome.conversation_id
            for outcome in self.outcomes
            if outcome.conversation_id is not None and outcome.application_id is not None
        }

    def candidate_notified(self, application_id: str) -> bool:
        """Whether a message to the candidate behind ``application_id`` went out."""
        return any(
            outcome.kind == "notify_candidate"
            and outcome.application_id == application_id
            and outcome.delivered
            for outcome in self.outcomes
        )


class EffectRunner:
    """
    Runs intents in order against the collaborator interfaces.

    A failed delivery is logged and recorded in the report, and the remaining
    intents still run. Nothing is retried here; the state change that produced
    the intents has already been committed.
    """

    def __init__(
        self, notifications: NotificationSender, conversations: ConversationService
    ):
        self.notifications = notifications
        self.conversations = conversations

    async def run(self, intents: Iterable[Any]) -> EffectReport:
        report = EffectReport()
        for intent in intents:
            report.outcomes.append(await self._run_one(intent))
        return report

    async def _run_one(self, intent: Any) -> EffectOutcome:
        try:
            if isinstance(intent, CreateOrReuseConversation):
                conversation_id = await self.conversations.create_or_reuse(
                    intent.application_id, intent.candidate_id, intent.staff_user_id
                )
                return EffectOutcome(
                    kind=intent.kind,
                    application_id=intent.application_id,
                    delivered=True,
                    conversation_id=conversation_id,
                )
            if isinstance(intent, (NotifyCandidate, NotifyActor)):
                await self.notifications.send(intent)
                return EffectOutcome(
                    kind=intent.kind,
                    template=intent.template,
                    application_id=getattr(intent, "application_id", None),
                    delivered=True,
                )
        except DeliveryError as e:
            logger.error(
                f"Failed to deliver {intent.kind}: {e.message} "
                f"{mask_sensitive_data(intent.model_dump(mode='json'))}"
            )
            return EffectOutcome(
                kind=intent.kind,
                template=getattr(intent, "template", None),
                application_id=getattr(intent, "application_id", None),
                delivered=False,
                error=e.message,
            )
        raise TypeError(f"Unsupported intent: {type(intent).__name__}")
