"""
Job posting workflow endpoints.

Create draft jobs, attach question sets, move jobs through HR preparation and
CEO approval, and delete jobs that never received applications.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, status
from pydantic import BaseModel, Field

from api.dependencies import Actor, get_actor, get_workflow_service
from api.schemas.common import ERROR_RESPONSES
from api.schemas.workflow import OutcomeResponse, TransitionRequest
from workflow.models import EmploymentType, Priority, Question, SalaryRange
from workflow.service import WorkflowService

router = APIRouter(prefix="/jobs", tags=["jobs"], responses=ERROR_RESPONSES)


class JobCreateRequest(BaseModel):
    """Request model for creating a draft job."""
    title: str = Field(..., min_length=1, max_length=255)
    department: Optional[str] = None
    location: Optional[str] = None
    employment_type: EmploymentType = EmploymentType.FULL_TIME
    salary_range: Optional[SalaryRange] = None
    priority: Priority = Priority.MEDIUM
    urgent: bool = False
    hr_user_id: Optional[str] = Field(None, description="HR user preparing the posting")
    ceo_id: Optional[str] = Field(None, description="Approver")


class QuestionSetRequest(BaseModel):
    """Request model for attaching a question set."""
    questions: list[Question] = Field(default_factory=list)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create Job",
    description="Create a job in draft. Project leaders only.",
)
async def create_job(
    request: JobCreateRequest,
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
) -> dict[str, Any]:
    job = await service.create_job(request.model_dump(), actor.role, actor.id)
    return job.model_dump(mode="json")


@router.get("/{job_id}", summary="Get Job")
async def get_job(
    job_id: str = Path(..., description="Job ID"),
    service: WorkflowService = Depends(get_workflow_service),
) -> dict[str, Any]:
    job = await service.get_job(job_id)
    return job.model_dump(mode="json")


@router.put(
    "/{job_id}/question-sets/{kind}",
    summary="Attach Question Set",
    description="Attach or replace the technical (project leader) or HR (HR) question set.",
)
async def attach_question_set(
    request: QuestionSetRequest,
    job_id: str = Path(..., description="Job ID"),
    kind: str = Path(..., description="technical or hr"),
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
) -> dict[str, Any]:
    job = await service.attach_question_set(
        job_id, actor.role, kind, request.model_dump(), actor.id
    )
    return job.model_dump(mode="json")


@router.post(
    "/{job_id}/transitions",
    response_model=OutcomeResponse,
    summary="Apply Job Transition",
    description="submit_to_hr, complete_hr, submit_for_approval, approve, reject, "
    "request_modifications, publish, pause, resume or close.",
)
async def transition_job(
    request: TransitionRequest,
    job_id: str = Path(..., description="Job ID"),
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    outcome = await service.transition_job(
        job_id, actor.role, request.transition, request.payload(), actor.id
    )
    return OutcomeResponse.from_outcome(outcome)


@router.delete(
    "/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Job",
    description="Hard-delete a job. Jobs with live applications can only be closed.",
)
async def delete_job(
    job_id: str = Path(..., description="Job ID"),
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
) -> None:
    await service.delete_job(job_id, actor.role, actor.id)
