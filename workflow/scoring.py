"""Overall application scoring."""

from typing import TYPE_CHECKING, Optional

from core.config import settings

if TYPE_CHECKING:
    from workflow.models import Assessment


def compute_overall_score(
    technical: Optional["Assessment"],
    hr: Optional["Assessment"],
    waived: bool = False,
    *,
    technical_weight: Optional[float] = None,
    hr_weight: Optional[float] = None,
) -> Optional[float]:
    """
    Combine the recorded assessments into a single percentage.

    Both assessments must be present unless they were explicitly waived. With a
    waiver the weights are renormalised over whichever assessments exist, so a
    lone technical result counts fully.

    Args:
        technical: Technical assessment, if recorded
        hr: HR assessment, if recorded
        waived: Whether HR waived the outstanding assessments
        technical_weight: Override for the configured technical weight
        hr_weight: Override for the configured HR weight

    Returns:
        Score in the range 0-100 rounded to two decimals, or None
    """
    if technical_weight is None:
        technical_weight = settings.technical_score_weight
    if hr_weight is None:
        hr_weight = settings.hr_score_weight

    if not waived and (technical is None or hr is None):
        return None

    weighted = [
        (assessment.percentage, weight)
        for assessment, weight in ((technical, technical_weight), (hr, hr_weight))
        if assessment is not None
    ]
    total_weight = sum(weight for _, weight in weighted)
    if not weighted or total_weight <= 0:
        return None

    score = sum(pct * weight for pct, weight in weighted) / total_weight
    return round(score, 2)
