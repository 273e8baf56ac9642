"""Termination policy for the interview question loop.

The code-side thresholds are the only authority; the model's completion
signal is a hint that is honoured only once the minimum has been reached.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from services.history import CLOSERS
from services.response_parser import CLOSING_PHRASES, COMPLETION_TOKEN

MIN_QUESTION_CHARS = 5

CONTINUE_FEEDBACK = "Thanks for the answer. Let's continue."
MAX_REACHED_FEEDBACK = "We've reached the maximum number of questions. Let's wrap up the interview."
CONTINUATION_QUESTION = "Let's keep going. Can you walk me through another project from your experience in more detail?"
FOLLOW_UP_QUESTION = "Could you elaborate on that?"


def is_closing_remark(text: str) -> bool:
    lowered = (text or "").lower()
    if COMPLETION_TOKEN.lower() in lowered:
        return True
    return any(phrase in lowered for phrase in (*CLOSING_PHRASES, *CLOSERS))


Outcome = Literal["forced", "honoured", "overridden", "continue"]


@dataclass(frozen=True)
class TerminationDecision:
    is_complete: bool
    question: str
    feedback: str
    outcome: Outcome


def decide(
    question_count: int,
    completion_signaled: bool,
    question: str,
    feedback: str,
    *,
    min_questions: int = 12,
    max_questions: int = 25,
) -> TerminationDecision:
    """Apply the ordered rules: hard cap, honoured signal, overridden signal, continue."""

    if question_count >= max_questions:
        return TerminationDecision(True, "", feedback or MAX_REACHED_FEEDBACK, "forced")

    if completion_signaled and question_count >= min_questions:
        return TerminationDecision(True, "", feedback or CONTINUE_FEEDBACK, "honoured")

    usable = question if len(question or "") >= MIN_QUESTION_CHARS else ""
    if is_closing_remark(usable):
        usable = ""
    if completion_signaled or is_closing_remark(question):
        return TerminationDecision(False, usable or CONTINUATION_QUESTION, feedback or CONTINUE_FEEDBACK, "overridden")

    return TerminationDecision(False, usable or FOLLOW_UP_QUESTION, feedback or CONTINUE_FEEDBACK, "continue")


__all__ = [
    "TerminationDecision",
    "decide",
    "is_closing_remark",
    "CONTINUATION_QUESTION",
    "CONTINUE_FEEDBACK",
    "FOLLOW_UP_QUESTION",
    "MAX_REACHED_FEEDBACK",
]
