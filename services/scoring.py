"""Score aggregation helpers."""
from __future__ import annotations

import math
from typing import Any, List, Optional

from interview_session.models import FeedbackRecord, InterviewSummary

SCORE_MIN = 0.0
SCORE_MAX = 10.0
DEFAULT_CALIBRATION = 0.85


def _round2(value: float) -> float:
    """Round a float to two decimal places with stable formatting."""
    return float(f"{value:.2f}")


def _clamp(value: float) -> float:
    return max(SCORE_MIN, min(SCORE_MAX, value))


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def score_feedback(feedback: FeedbackRecord, calibration: float = DEFAULT_CALIBRATION) -> float:
    """Average the available answer scores and apply the leniency calibration.

    Out-of-range scores are clamped into [0, 10]; missing or non-finite ones are
    ignored. With nothing usable the score is 0. Never raises.
    """

    values: List[float] = []
    for raw in (feedback.correctness, feedback.clarity, feedback.confidence):
        number = _finite(raw)
        if number is not None:
            values.append(_clamp(number))
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return _round2(_clamp(mean * calibration))


def summary_score(summary: InterviewSummary) -> float:
    """Final interview score taken from the holistic summary, bounded to [0, 10]."""

    number = _finite(summary.overall_score)
    if number is None:
        return 0.0
    return _round2(_clamp(number))


__all__ = ["score_feedback", "summary_score", "SCORE_MIN", "SCORE_MAX", "DEFAULT_CALIBRATION"]
