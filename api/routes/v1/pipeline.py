"""Pipeline metrics endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_workflow_service
from api.schemas.common import ERROR_RESPONSES
from core.exceptions import InvalidPayload
from workflow.pipeline import PipelineMetrics
from workflow.service import WorkflowService

router = APIRouter(prefix="/pipeline", tags=["pipeline"], responses=ERROR_RESPONSES)


def parse_trend_params(values: list[str]) -> dict[str, str]:
    """Turn repeated ``stage:direction`` query values into a mapping."""
    trends: dict[str, str] = {}
    for value in values:
        stage, sep, direction = value.partition(":")
        if not sep or not stage.strip() or not direction.strip():
            raise InvalidPayload(
                f"Trend must look like stage:direction, got {value!r}", trend=value
            )
        trends[stage.strip()] = direction.strip().lower()
    return trends


@router.get(
    "",
    response_model=PipelineMetrics,
    summary="Pipeline Metrics",
    description="Funnel stages with counts, conversion, dwell time and bottlenecks. "
    "Pass trends as repeated trend=stage:up|down|stable.",
)
async def get_pipeline(
    trend: Optional[list[str]] = Query(None, description="stage:direction"),
    service: WorkflowService = Depends(get_workflow_service),
):
    return await service.pipeline_metrics(parse_trend_params(trend or []))
