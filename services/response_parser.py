"""Heuristics that recover structure from free-form model text.

All functions are pure: the same input text always yields the same result.
Parse problems are reported as ``NeedsRepair`` values, never raised.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import ValidationError

from interview_session.models import FeedbackRecord, InterviewSummary

COMPLETION_TOKEN = "INTERVIEW_COMPLETE"
CLOSING_PHRASES = ("interview complete", "that concludes", "thank you for your time")
REFUSAL_PHRASES = ("i understand", "you are", "provide me with", "my role", "objectively assess")
SCORE_FIELDS = ("correctness", "clarity", "confidence")
SUMMARY_SCORE_FIELDS = ("overallScore", "technicalDepth", "problemSolving", "communication", "experienceRelevance")
SUMMARY_LIST_FIELDS = ("strengths", "weaknesses", "recommendations")

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_BACKTICK_RE = re.compile(r"`([^`]*)`")
_SCORE_RE = re.compile(r'"?(correctness|clarity|confidence)"?\s*[:=]\s*(-?[0-9]+(?:\.[0-9]+)?)', re.IGNORECASE)
_QUESTION_MARK_RE = re.compile(r"QUESTION\s*[:\-]", re.IGNORECASE)
_FEEDBACK_MARK_RE = re.compile(r"FEEDBACK\s*[:\-]", re.IGNORECASE)
_LEADING_LABEL_RE = re.compile(r"^\s*(QUESTION|FEEDBACK)\s*[:\-]\s*", re.IGNORECASE)
_QUESTION_SPILL_RE = re.compile(r"QUESTION\s*[:\-].*", re.IGNORECASE | re.DOTALL)
_FEEDBACK_SPILL_RE = re.compile(r"FEEDBACK\s*[:\-](.*)", re.IGNORECASE | re.DOTALL)
_TOKEN_RE = re.compile(re.escape(COMPLETION_TOKEN), re.IGNORECASE)
_SENTENCE_RE = re.compile(r"[.\n]+")
_INSTRUCTION_PREFIXES = ("you are", "please provide", "once you", "the job description")


@dataclass(frozen=True)
class Parsed:
    feedback: FeedbackRecord
    kind: Literal["parsed"] = "parsed"


@dataclass(frozen=True)
class NeedsRepair:
    feedback: FeedbackRecord  # best-effort salvage, parsing_failed=True
    raw: str
    kind: Literal["needs_repair"] = "needs_repair"


FeedbackParse = Union[Parsed, NeedsRepair]


@dataclass(frozen=True)
class TurnSplit:
    feedback: str
    question: str
    completion_signaled: bool


def strip_fences(text: str) -> str:
    """Remove markdown code fences and inline backticks, keeping their content."""

    cleaned = _FENCE_RE.sub(r"\1", text or "")
    return _BACKTICK_RE.sub(r"\1", cleaned).strip()


def _normalize(text: str) -> str:
    return (text or "").replace("\r\n", "\n").replace("\r", "\n").strip()


def coerce_score(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _json_object(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _drop_instruction_lines(text: str) -> str:
    useful = []
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped and not stripped.lower().startswith(_INSTRUCTION_PREFIXES):
            useful.append(stripped)
    return " ".join(useful).strip()


def looks_like_refusal(text: str) -> bool:
    """True when the model echoed its instructions or chatted instead of answering in JSON."""

    lowered = (text or "").lower()
    return "{" not in lowered or any(phrase in lowered for phrase in REFUSAL_PHRASES)


def parse_feedback(text: str) -> FeedbackParse:
    """Extract correctness/clarity/confidence scores and a comment from model output."""

    if not isinstance(text, str) or not text.strip():
        return NeedsRepair(feedback=FeedbackRecord(parsing_failed=True), raw=text or "")

    cleaned = _drop_instruction_lines(strip_fences(text))
    payload = _json_object(cleaned)
    if payload is not None:
        record = FeedbackRecord(
            correctness=coerce_score(payload.get("correctness")),
            clarity=coerce_score(payload.get("clarity")),
            confidence=coerce_score(payload.get("confidence")),
            overall_feedback=str(
                payload.get("overall_feedback") or payload.get("overallFeedback") or payload.get("feedback") or ""
            ).strip(),
        )
        if record.has_scores():
            return Parsed(feedback=record)
        return NeedsRepair(feedback=record.model_copy(update={"parsing_failed": True}), raw=text)

    found: Dict[str, float] = {}
    for match in _SCORE_RE.finditer(cleaned):
        value = coerce_score(match.group(2))
        if value is not None:
            found[match.group(1).lower()] = value
    sentences = [chunk.strip() for chunk in _SENTENCE_RE.split(cleaned) if chunk.strip()]
    record = FeedbackRecord(
        correctness=found.get("correctness"),
        clarity=found.get("clarity"),
        confidence=found.get("confidence"),
        overall_feedback=sentences[0] if sentences else "",
        parsing_failed=True,
    )
    return NeedsRepair(feedback=record, raw=text)


def detect_completion(text: str) -> bool:
    lowered = (text or "").lower()
    return COMPLETION_TOKEN.lower() in lowered or any(phrase in lowered for phrase in CLOSING_PHRASES)


def split_turn(text: str) -> TurnSplit:
    """Split a ``FEEDBACK: ... QUESTION: ...`` reply; section order does not matter."""

    normalized = _normalize(text)
    feedback = ""
    question = ""
    parts = _QUESTION_MARK_RE.split(normalized)
    if len(parts) > 1:
        head = parts[0]
        question = " ".join(parts[1:]).strip()
        if head.strip():
            feedback = _FEEDBACK_MARK_RE.split(head)[-1].strip()
    else:
        feedback = _FEEDBACK_MARK_RE.split(normalized)[-1].strip() or normalized

    question = _LEADING_LABEL_RE.sub("", question)
    spill = _FEEDBACK_SPILL_RE.search(question)
    if spill:
        if not feedback:
            feedback = spill.group(1)
        question = question[: spill.start()]

    feedback = _normalize(_QUESTION_SPILL_RE.sub("", feedback))
    question = _normalize(_TOKEN_RE.sub("", _normalize(question)))
    return TurnSplit(feedback=feedback, question=question, completion_signaled=detect_completion(text))


def _as_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


def _bounded(value: Any) -> float:
    number = coerce_score(value)
    if number is None:
        return 0.0
    return max(0.0, min(10.0, number))


def parse_summary(text: str) -> Optional[InterviewSummary]:
    """Parse the holistic end-of-interview JSON; ``None`` when no object can be recovered."""

    payload = _json_object(strip_fences(text or ""))
    if payload is None:
        return None
    data: Dict[str, Any] = {name: _bounded(payload.get(name)) for name in SUMMARY_SCORE_FIELDS}
    for name in SUMMARY_LIST_FIELDS:
        data[name] = _as_list(payload.get(name))
    data["summary"] = str(payload.get("summary") or "").strip()
    try:
        return InterviewSummary.model_validate(data)
    except ValidationError:
        return None


class ResponseParser:
    """Seam for swapping the heuristics without touching the orchestrator."""

    completion_token = COMPLETION_TOKEN

    def parse_feedback(self, text: str) -> FeedbackParse:
        return parse_feedback(text)

    def split_turn(self, text: str) -> TurnSplit:
        return split_turn(text)

    def parse_summary(self, text: str) -> Optional[InterviewSummary]:
        return parse_summary(text)

    def looks_like_refusal(self, text: str) -> bool:
        return looks_like_refusal(text)


__all__ = [
    "COMPLETION_TOKEN",
    "CLOSING_PHRASES",
    "FeedbackParse",
    "NeedsRepair",
    "Parsed",
    "ResponseParser",
    "TurnSplit",
    "coerce_score",
    "detect_completion",
    "looks_like_refusal",
    "parse_feedback",
    "parse_summary",
    "split_turn",
    "strip_fences",
]
