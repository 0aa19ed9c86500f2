"""
Workflow error taxonomy.

Every error raised by the workflow core is recoverable: the API layer turns it
into a structured error response and the caller retries with corrected input.
"""

from typing import Any


class WorkflowError(Exception):
    """Base class for all workflow errors."""

    code = "WORKFLOW_ERROR"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses and logs."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# ==================== Workflow engine ===================== #
class InvalidTransition(WorkflowError):
    """Raised when a transition is not a legal edge out of the current state."""

    code = "INVALID_TRANSITION"
    status_code = 409


class Forbidden(WorkflowError):
    """Raised when the acting role may not take the requested edge."""

    code = "FORBIDDEN"
    status_code = 403


class InvalidPayload(WorkflowError):
    """Raised when a transition payload is missing required fields."""

    code = "INVALID_PAYLOAD"
    status_code = 422


class PreconditionFailed(InvalidPayload):
    """Raised when an entity does not satisfy a transition guard."""

    code = "PRECONDITION_FAILED"


# ==================== Interview scheduler ===================== #
class InvalidSlot(WorkflowError):
    """Raised when an interview request fails structural validation."""

    code = "INVALID_SLOT"
    status_code = 422


class SlotConflict(WorkflowError):
    """Raised when a requested slot overlaps an active interview."""

    code = "SLOT_CONFLICT"
    status_code = 409

    def __init__(self, message: str, conflicting_interview_id: str, **details: Any):
        super().__init__(
            message, conflicting_interview_id=conflicting_interview_id, **details
        )
        self.conflicting_interview_id = conflicting_interview_id


class ApplicationAlreadyScheduled(WorkflowError):
    """Raised when an application already holds an active interview."""

    code = "APPLICATION_ALREADY_SCHEDULED"
    status_code = 409

    def __init__(self, message: str, interview_id: str, **details: Any):
        super().__init__(message, interview_id=interview_id, **details)
        self.interview_id = interview_id


# ==================== Persistence & collaborators ===================== #
class VersionConflict(WorkflowError):
    """Raised when an entity changed between read and write."""

    code = "VERSION_CONFLICT"
    status_code = 409


class EntityNotFound(WorkflowError):
    """Raised when an entity does not exist in the store."""

    code = "NOT_FOUND"
    status_code = 404


class DeliveryError(WorkflowError):
    """Raised by a notification sender when delivery fails."""

    code = "DELIVERY_FAILED"
    status_code = 502


class UnknownState(WorkflowError):
    """
    Raised for a status value outside the canonical vocabulary.

    Must not subclass ValueError: pydantic validators let any other exception
    type propagate unwrapped, which keeps corrupt snapshots distinguishable.
    """

    code = "UNKNOWN_STATE"
    status_code = 500
