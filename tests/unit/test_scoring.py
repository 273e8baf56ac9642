import math

import pytest

from interview_session.models import FeedbackRecord, InterviewSummary
from services.scoring import score_feedback, summary_score


def test_mean_with_calibration():
    feedback = FeedbackRecord(correctness=8, clarity=7, confidence=6)
    assert score_feedback(feedback) == 5.95


def test_no_scores_is_zero():
    assert score_feedback(FeedbackRecord()) == 0.0


def test_missing_scores_are_ignored():
    assert score_feedback(FeedbackRecord(correctness=10)) == 8.5


@pytest.mark.parametrize(
    "values",
    [
        (15, -3, 7),
        (1e9, 1e9, 1e9),
        (-1e9, None, None),
        (math.nan, math.inf, 4),
        (-math.inf, None, 0),
    ],
)
def test_score_always_in_bounds(values):
    correctness, clarity, confidence = values
    feedback = FeedbackRecord(correctness=correctness, clarity=clarity, confidence=confidence)
    score = score_feedback(feedback)
    assert 0.0 <= score <= 10.0
    assert score_feedback(feedback) == score


def test_out_of_range_values_are_clamped():
    feedback = FeedbackRecord(correctness=15, clarity=-3, confidence=7)
    # (10 + 0 + 7) / 3 * 0.85
    assert score_feedback(feedback) == 4.82


def test_calibration_override():
    assert score_feedback(FeedbackRecord(correctness=6, clarity=6, confidence=6), calibration=1.0) == 6.0


def test_summary_score_bounds():
    assert summary_score(InterviewSummary(overall_score=7.456)) == 7.46
    assert summary_score(InterviewSummary(overall_score=42)) == 10.0
    assert summary_score(InterviewSummary(overall_score=-1)) == 0.0
