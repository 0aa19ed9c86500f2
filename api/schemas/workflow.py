"""Request and response schemas shared by the workflow routes."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from workflow.effects import EffectReport
from workflow.models import Assessment
from workflow.service import WorkflowOutcome


class TransitionRequest(BaseModel):
    """Request model for moving a job or application along an edge."""

    transition: str = Field(..., min_length=1, description="Name of the edge to take")
    feedback: Optional[str] = Field(None, description="Required for reject and request_modifications")
    reason: Optional[str] = Field(None, description="Required for waive_assessments")
    rating: Optional[int] = Field(None, description="1-5")
    technical_assessment: Optional[Assessment] = None
    hr_assessment: Optional[Assessment] = None

    def payload(self) -> dict[str, Any]:
        # rating is left unvalidated here so the engine reports it as INVALID_PAYLOAD
        return self.model_dump(exclude={"transition"}, exclude_none=True)


class OutcomeResponse(BaseModel):
    """Result of a state-changing workflow call."""

    entity: dict[str, Any]
    transitions: list[str] = Field(default_factory=list)
    side_effects: list[dict[str, Any]] = Field(default_factory=list)
    effects: EffectReport = Field(default_factory=EffectReport)
    related: dict[str, Optional[dict[str, Any]]] = Field(default_factory=dict)

    @classmethod
    def from_outcome(cls, outcome: WorkflowOutcome) -> "OutcomeResponse":
        return cls(
            entity=outcome.entity.model_dump(mode="json"),
            transitions=outcome.transitions,
            side_effects=[intent.model_dump(mode="json") for intent in outcome.side_effects],
            effects=outcome.effects,
            related={
                name: entity.model_dump(mode="json") if entity is not None else None
                for name, entity in outcome.related.items()
            },
        )
