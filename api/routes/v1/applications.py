"""
Application workflow endpoints.

Submit applications to published jobs, move them through review and decision,
and keep an append-only trail of notes.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, Field

from api.dependencies import Actor, get_actor, get_workflow_service
from api.schemas.common import ERROR_RESPONSES, ListResponse
from api.schemas.workflow import OutcomeResponse, TransitionRequest
from core.exceptions import InvalidPayload
from workflow.models import Priority
from workflow.service import WorkflowService
from workflow.status import ApplicationStatus

router = APIRouter(prefix="/applications", tags=["applications"], responses=ERROR_RESPONSES)


class ApplicationCreateRequest(BaseModel):
    """Request model for submitting an application."""
    job_id: str = Field(..., description="Published job to apply to")
    candidate_id: str = Field(..., description="Applying candidate")
    tags: list[str] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM


class NoteRequest(BaseModel):
    """Request model for appending a note."""
    note: str = Field(..., min_length=1, max_length=5000)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Submit Application",
)
async def submit_application(
    request: ApplicationCreateRequest,
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
) -> dict[str, Any]:
    application = await service.submit_application(
        request.model_dump(), actor.role, actor.id
    )
    return application.model_dump(mode="json")


@router.get("", summary="List Applications")
async def list_applications(
    job_id: Optional[str] = Query(None, description="Filter by job"),
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    service: WorkflowService = Depends(get_workflow_service),
) -> ListResponse[dict[str, Any]]:
    parsed = ApplicationStatus.try_parse(status_filter) if status_filter else None
    if status_filter and parsed is None:
        raise InvalidPayload(f"Unknown application status: {status_filter!r}")
    applications = await service.list_applications(job_id=job_id, status=parsed)
    return ListResponse.of([a.model_dump(mode="json") for a in applications])


@router.get("/{application_id}", summary="Get Application")
async def get_application(
    application_id: str = Path(..., description="Application ID"),
    service: WorkflowService = Depends(get_workflow_service),
) -> dict[str, Any]:
    application = await service.get_application(application_id)
    return application.model_dump(mode="json")


@router.post(
    "/{application_id}/transitions",
    response_model=OutcomeResponse,
    summary="Apply Application Transition",
    description="start_technical_review, record_technical_assessment, record_hr_assessment, "
    "waive_assessments, hold, resume_review, accept, reject or withdraw. Interview "
    "edges are driven by the interview endpoints.",
)
async def transition_application(
    request: TransitionRequest,
    application_id: str = Path(..., description="Application ID"),
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    outcome = await service.transition_application(
        application_id, actor.role, request.transition, request.payload(), actor.id
    )
    return OutcomeResponse.from_outcome(outcome)


@router.post(
    "/{application_id}/notes",
    status_code=status.HTTP_201_CREATED,
    summary="Append Note",
    description="Append a note. Allowed in every state, terminal ones included.",
)
async def add_note(
    request: NoteRequest,
    application_id: str = Path(..., description="Application ID"),
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
) -> dict[str, Any]:
    application = await service.add_note(
        application_id, request.note, actor.role, actor.id
    )
    return application.model_dump(mode="json")
