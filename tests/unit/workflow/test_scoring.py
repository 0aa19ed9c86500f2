"""
Unit tests for overall application scoring.
"""

import pytest

from workflow.models import Application, Assessment
from workflow.scoring import compute_overall_score


def assessment(score, max_score=100):
    return Assessment(score=score, max_score=max_score, passed=score >= max_score / 2)


class TestComputeOverallScore:
    """Test weighting and waiver rules."""

    def test_weighted_average(self):
        assert compute_overall_score(assessment(80), assessment(30, 50)) == 72.0

    @pytest.mark.parametrize(
        "technical,hr",
        [
            (None, None),
            (assessment(80), None),
            (None, assessment(9, 10)),
        ],
    )
    def test_missing_assessment_without_waiver(self, technical, hr):
        assert compute_overall_score(technical, hr) is None

    def test_waiver_renormalises_over_present(self):
        assert compute_overall_score(assessment(65), None, waived=True) == 65.0
        assert compute_overall_score(None, assessment(3, 4), waived=True) == 75.0

    def test_waiver_with_nothing_recorded(self):
        assert compute_overall_score(None, None, waived=True) is None

    def test_custom_weights(self):
        score = compute_overall_score(
            assessment(100), assessment(0), technical_weight=1, hr_weight=3
        )
        assert score == 25.0

    def test_rounded_to_two_decimals(self):
        assert compute_overall_score(assessment(1, 3), assessment(1, 3)) == 33.33


class TestAssessmentModel:
    """Test assessment validation."""

    def test_score_above_max_rejected(self):
        with pytest.raises(ValueError):
            Assessment(score=11, max_score=10, passed=True)

    def test_zero_max_rejected(self):
        with pytest.raises(ValueError):
            Assessment(score=0, max_score=0, passed=False)

    def test_percentage(self):
        assert assessment(45, 60).percentage == 75.0


class TestApplicationScore:
    """Test the computed score exposed on applications."""

    def test_score_in_serialised_application(self):
        application = Application(
            job_id="j",
            candidate_id="c",
            technical_assessment=assessment(50),
            hr_assessment=assessment(100),
        )
        assert application.model_dump()["overall_score"] == 70.0

    def test_score_absent_until_complete(self):
        application = Application(
            job_id="j", candidate_id="c", technical_assessment=assessment(50)
        )
        assert application.model_dump(mode="json")["overall_score"] is None
