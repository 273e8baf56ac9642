"""Replay a flat turn history into question/answer/feedback triples."""
from __future__ import annotations

import re
from typing import List, Literal, Optional, Sequence, Tuple

from interview_session.models import QATriple, Role, Turn
from services.response_parser import COMPLETION_TOKEN

LONG_TURN_CHARS = 400
CLOSERS = ("thanks for joining", "interview complete")
MISSING_FEEDBACK = "Feedback not available for this question."

_FEEDBACK_LABEL_RE = re.compile(r"^\s*FEEDBACK\s*:\s*", re.IGNORECASE)

TurnKind = Literal["question", "feedback", "closing"]


def classify(turns: Sequence[Turn], index: int) -> TurnKind:
    """Classify the interviewer turn at ``index``.

    Closers and the completion token are skipped. A turn labelled ``FEEDBACK:``
    is feedback. An unlabelled turn is feedback only when it is short, has no
    question mark and is directly followed by another interviewer turn, since
    anything the candidate replied to was a question.
    """

    text = turns[index].text.strip()
    lowered = text.lower()
    if not text or COMPLETION_TOKEN.lower() in lowered or any(closer in lowered for closer in CLOSERS):
        return "closing"
    if _FEEDBACK_LABEL_RE.match(text):
        return "feedback"
    if "?" in text or len(text) >= LONG_TURN_CHARS:
        return "question"
    following = turns[index + 1] if index + 1 < len(turns) else None
    if following is not None and following.role == Role.INTERVIEWER:
        return "feedback"
    return "question"


def _pairs(turns: Sequence[Turn]) -> List[Tuple[str, str, int]]:
    pairs: List[Tuple[str, str, int]] = []
    question: Optional[str] = None
    answer: Optional[str] = None
    answer_index = -1

    def flush() -> None:
        if question is not None and answer and answer.strip():
            pairs.append((question, answer.strip(), answer_index))

    for index, turn in enumerate(turns):
        if turn.role == Role.INTERVIEWER:
            if classify(turns, index) != "question":
                continue
            flush()
            question = turn.text.strip()
            answer = None
        elif question is not None:
            answer = turn.text.strip()
            answer_index = index
    flush()
    return pairs


def _history_feedback(turns: Sequence[Turn], answer_index: int) -> str:
    for index in range(answer_index + 1, len(turns)):
        turn = turns[index]
        if turn.role != Role.INTERVIEWER:
            continue
        if classify(turns, index) == "feedback":
            return _FEEDBACK_LABEL_RE.sub("", turn.text.strip()).strip()
        return ""
    return ""


def reconstruct(turns: Sequence[Turn], cached_feedback: Sequence[str] = ()) -> List[QATriple]:
    """Rebuild answered (question, answer, feedback) triples in conversational order.

    ``cached_feedback`` is the bounded per-answer side channel in chronological
    order; it holds the feedback for the most recent answers, so it is aligned
    with the tail of the answered pairs. Pairs outside the cache fall back to a
    feedback turn found after the answer in the history.
    """

    pairs = _pairs(turns)
    cached = [item.strip() for item in cached_feedback][-len(pairs):] if pairs else []
    offset = len(pairs) - len(cached)
    triples: List[QATriple] = []
    for position, (question, answer, answer_index) in enumerate(pairs):
        feedback = ""
        if position >= offset:
            feedback = cached[position - offset]
        if not feedback:
            feedback = _history_feedback(turns, answer_index)
        triples.append(QATriple(question=question, answer=answer, feedback=feedback or MISSING_FEEDBACK))
    return triples


__all__ = ["classify", "reconstruct", "MISSING_FEEDBACK", "LONG_TURN_CHARS"]
