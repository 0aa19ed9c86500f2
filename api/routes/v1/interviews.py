"""
Interview scheduling and management endpoints.

Provides REST API for booking, listing, confirming, cancelling and completing
interviews, plus free-slot suggestions for an interviewer.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, Field

from api.dependencies import Actor, get_actor, get_workflow_service
from api.schemas.common import ERROR_RESPONSES, ListResponse
from api.schemas.workflow import OutcomeResponse
from workflow.scheduler import ScheduleRequest
from workflow.service import WorkflowService

router = APIRouter(prefix="/interviews", tags=["interviews"], responses=ERROR_RESPONSES)


class InterviewScheduleRequest(ScheduleRequest):
    """Request model for booking an interview."""
    candidate_name: str = Field(..., min_length=1, description="Used in the invitation")
    candidate_email: Optional[str] = Field(None, description="Used in the invitation")

    def to_schedule_request(self) -> ScheduleRequest:
        return ScheduleRequest.model_validate(
            self.model_dump(exclude={"candidate_name", "candidate_email"})
        )


class CancelRequest(BaseModel):
    """Request model for cancelling an interview."""
    reason: Optional[str] = Field(None, description="Reason for cancellation")


class CompleteRequest(BaseModel):
    """Request model for recording an interview outcome."""
    feedback: Optional[str] = Field(None, description="Interviewer feedback")
    rating: Optional[int] = Field(None, description="1-5")


class SlotSuggestions(BaseModel):
    rh_user_id: str
    date: str
    duration: int
    slots: list[str]


@router.post(
    "/schedule",
    status_code=status.HTTP_201_CREATED,
    response_model=OutcomeResponse,
    summary="Schedule Interview",
    description="Book an interview. Set replace_existing to reschedule the current one.",
)
async def schedule_interview(
    request: InterviewScheduleRequest,
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    outcome = await service.schedule_interview(
        request.to_schedule_request(),
        candidate_name=request.candidate_name,
        candidate_email=request.candidate_email,
        actor_role=actor.role,
        actor_id=actor.id,
    )
    return OutcomeResponse.from_outcome(outcome)


@router.get("", summary="List Interviews")
async def list_interviews(
    rh_user_id: Optional[str] = Query(None, description="Filter by interviewer"),
    application_id: Optional[str] = Query(None, description="Filter by application"),
    service: WorkflowService = Depends(get_workflow_service),
) -> ListResponse[dict[str, Any]]:
    interviews = await service.list_interviews(
        rh_user_id=rh_user_id, application_id=application_id
    )
    return ListResponse.of([i.model_dump(mode="json") for i in interviews])


@router.get(
    "/slots",
    response_model=SlotSuggestions,
    summary="Suggest Slots",
    description="Free start times for an interviewer within the working day.",
)
async def suggest_slots(
    rh_user_id: str = Query(..., description="Interviewer"),
    date: str = Query(..., description="YYYY-MM-DD"),
    duration: int = Query(60, description="Minutes"),
    service: WorkflowService = Depends(get_workflow_service),
):
    slots = await service.suggest_slots(rh_user_id, date, duration)
    return SlotSuggestions(rh_user_id=rh_user_id, date=date, duration=duration, slots=slots)


@router.post(
    "/{interview_id}/confirm",
    response_model=OutcomeResponse,
    summary="Confirm Interview",
)
async def confirm_interview(
    interview_id: str = Path(..., description="Interview ID"),
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    outcome = await service.confirm_interview(interview_id, actor.role, actor.id)
    return OutcomeResponse.from_outcome(outcome)


@router.post(
    "/{interview_id}/cancel",
    response_model=OutcomeResponse,
    summary="Cancel Interview",
    description="Cancel an interview; its application goes back to under review.",
)
async def cancel_interview(
    request: CancelRequest,
    interview_id: str = Path(..., description="Interview ID"),
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    outcome = await service.cancel_interview(
        interview_id, actor.role, request.reason, actor.id
    )
    return OutcomeResponse.from_outcome(outcome)


@router.post(
    "/{interview_id}/complete",
    response_model=OutcomeResponse,
    summary="Complete Interview",
    description="Record feedback and rating; the application moves to final review.",
)
async def complete_interview(
    request: CompleteRequest,
    interview_id: str = Path(..., description="Interview ID"),
    actor: Actor = Depends(get_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    outcome = await service.complete_interview(
        interview_id, actor.role, request.feedback, request.rating, actor.id
    )
    return OutcomeResponse.from_outcome(outcome)
