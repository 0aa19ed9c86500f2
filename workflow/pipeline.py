"""
Pipeline aggregation.

Read-only funnel metrics computed from a snapshot of applications. Counts are
cumulative: an application counts for every stage up to the furthest one it
ever reached, so rejected and withdrawn applications still show up in the
stages they passed through.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping, Optional, Union

from pydantic import BaseModel

from core.config import settings
from core.exceptions import InvalidPayload
from core.utils.datetime import days_elapsed
from core.utils.datetime import now as utc_now
from workflow.models import Application, Job
from workflow.status import ApplicationStatus, JobStatus, Trend


@dataclass(frozen=True)
class StageDefinition:
    id: str
    name: str
    statuses: frozenset[ApplicationStatus]


STAGES: tuple[StageDefinition, ...] = (
    StageDefinition("received", "Received", frozenset({ApplicationStatus.SUBMITTED})),
    StageDefinition(
        "technical_review",
        "Technical Review",
        frozenset({ApplicationStatus.TECHNICAL_REVIEW}),
    ),
    StageDefinition("hr_review", "HR Review", frozenset({ApplicationStatus.HR_REVIEW})),
    StageDefinition(
        "under_review",
        "Under Review",
        frozenset({ApplicationStatus.UNDER_REVIEW, ApplicationStatus.PENDING_DECISION}),
    ),
    StageDefinition(
        "interview", "Interview", frozenset({ApplicationStatus.INTERVIEW_SCHEDULED})
    ),
    StageDefinition(
        "final_review", "Final Review", frozenset({ApplicationStatus.FINAL_REVIEW})
    ),
    StageDefinition("accepted", "Accepted", frozenset({ApplicationStatus.ACCEPTED})),
)

STAGE_INDEX: dict[ApplicationStatus, int] = {
    status: index for index, stage in enumerate(STAGES) for status in stage.statuses
}


class PipelineStage(BaseModel):
    id: str
    name: str
    count: int
    percentage: int
    percentage_exact: float
    avg_time_in_stage: float
    conversion_rate: float
    trend: Trend = Trend.STABLE
    bottleneck: bool = False


class PipelineMetrics(BaseModel):
    total_applications: int
    active_jobs: int
    overall_conversion_rate: float
    average_time_to_hire: Optional[float] = None
    bottlenecks: list[str]
    stages: list[PipelineStage]


TrendInput = Optional[Mapping[str, Union[Trend, str]]]


def _stage_of(status: Union[ApplicationStatus, str, None]) -> Optional[int]:
    parsed = ApplicationStatus.try_parse(status) if status is not None else None
    return STAGE_INDEX.get(parsed) if parsed is not None else None


def furthest_stage(application: Application) -> int:
    """Index of the furthest stage the application ever reached."""
    reached = [_stage_of(application.status)]
    for change in application.history:
        reached.append(_stage_of(change.from_status))
        reached.append(_stage_of(change.to_status))
    return max([0, *(index for index in reached if index is not None)])


def time_in_stages(application: Application, now: datetime) -> dict[int, float]:
    """Days spent per stage index, open intervals measured up to ``now``."""
    spent: dict[int, float] = defaultdict(float)
    status = (
        application.history[0].from_status
        if application.history
        else application.status
    )
    entered = application.applied_at
    for change in application.history:
        index = _stage_of(status)
        if index is not None:
            spent[index] += days_elapsed(entered, change.at)
        status, entered = change.to_status, change.at

    current = ApplicationStatus.try_parse(status)
    index = _stage_of(current)
    if index is not None and current is not None and not current.is_terminal():
        spent[index] += days_elapsed(entered, now)
    return dict(spent)


def _parse_trends(trends: TrendInput) -> dict[str, Trend]:
    known = {stage.id for stage in STAGES}
    parsed: dict[str, Trend] = {}
    for stage_id, value in (trends or {}).items():
        if stage_id not in known:
            raise InvalidPayload(f"Unknown pipeline stage: {stage_id!r}", stage=stage_id)
        try:
            parsed[stage_id] = Trend(value)
        except ValueError as e:
            raise InvalidPayload(
                f"Unknown trend {value!r} for stage {stage_id}", stage=stage_id
            ) from e
    return parsed


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_stages(
    applications: Iterable[Application],
    trends: TrendInput = None,
    *,
    now: Optional[datetime] = None,
    threshold_days: Optional[float] = None,
) -> list[PipelineStage]:
    """
    Build the funnel for a snapshot of applications.

    Args:
        applications: Snapshot to aggregate
        trends: Trend per stage id; stages not listed are ``stable``
        now: Reference time for applications still sitting in a stage
        threshold_days: Dwell time above which a falling stage is a bottleneck

    Returns:
        One entry per stage, in funnel order
    """
    now = now or utc_now()
    if threshold_days is None:
        threshold_days = settings.bottleneck_threshold_days
    stage_trends = _parse_trends(trends)

    counts = [0] * len(STAGES)
    dwell_totals = [0.0] * len(STAGES)
    dwell_samples = [0] * len(STAGES)
    for application in applications:
        for index in range(furthest_stage(application) + 1):
            counts[index] += 1
        for index, days in time_in_stages(application, now).items():
            dwell_totals[index] += days
            dwell_samples[index] += 1

    received = counts[0]
    stages: list[PipelineStage] = []
    for index, definition in enumerate(STAGES):
        count = counts[index]
        if received == 0:
            exact = conversion = 0.0
        else:
            exact = count / received * 100
            if index == 0:
                conversion = 100.0
            else:
                previous = counts[index - 1]
                conversion = count / previous * 100 if previous else 0.0

        avg_days = (
            dwell_totals[index] / dwell_samples[index] if dwell_samples[index] else 0.0
        )
        trend = stage_trends.get(definition.id, Trend.STABLE)
        stages.append(
            PipelineStage(
                id=definition.id,
                name=definition.name,
                count=count,
                percentage=_round_half_up(exact),
                percentage_exact=round(exact, 2),
                avg_time_in_stage=round(avg_days, 2),
                conversion_rate=round(conversion, 2),
                trend=trend,
                bottleneck=avg_days > threshold_days and trend == Trend.DOWN,
            )
        )
    return stages


def classify_trend(previous: int, current: int, tolerance_pct: float = 5.0) -> Trend:
    """Compare two period counts; changes within the tolerance are stable."""
    if previous <= 0:
        return Trend.UP if current > 0 else Trend.STABLE
    change = (current - previous) / previous * 100
    if change > tolerance_pct:
        return Trend.UP
    if change < -tolerance_pct:
        return Trend.DOWN
    return Trend.STABLE


def _time_to_hire(application: Application) -> Optional[float]:
    for change in application.history:
        if change.to_status == ApplicationStatus.ACCEPTED.value:
            return days_elapsed(application.applied_at, change.at)
    return None


def compute_pipeline_metrics(
    applications: Iterable[Application],
    jobs: Iterable[Job] = (),
    trends: TrendInput = None,
    *,
    now: Optional[datetime] = None,
    threshold_days: Optional[float] = None,
) -> PipelineMetrics:
    """Dashboard summary: headline numbers plus the stage funnel."""
    snapshot = list(applications)
    stages = compute_stages(snapshot, trends, now=now, threshold_days=threshold_days)

    received, accepted = stages[0].count, stages[-1].count
    hire_times = [
        days for days in (_time_to_hire(a) for a in snapshot) if days is not None
    ]
    return PipelineMetrics(
        total_applications=len(snapshot),
        active_jobs=sum(1 for job in jobs if job.status == JobStatus.PUBLISHED),
        overall_conversion_rate=round(accepted / received * 100, 2) if received else 0.0,
        average_time_to_hire=(
            round(sum(hire_times) / len(hire_times), 2) if hire_times else None
        ),
        bottlenecks=[stage.name for stage in stages if stage.bottleneck],
        stages=stages,
    )
