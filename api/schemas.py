"""Pydantic schemas for the interview session API."""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from interview_session.models import InterviewSummary, Level


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResumeReq(CamelModel):
    resume_text: str


class StartReq(CamelModel):
    job_role: Optional[str] = None
    level: Level = "Auto"
    job_description: str = ""


class NextReq(CamelModel):
    answer: str


class EvaluateReq(CamelModel):
    question: str
    answer: str


class ResumeResp(CamelModel):
    staged: bool = True


class StartResp(CamelModel):
    question: str
    session_id: str
    resumed: bool = False


class NextResp(CamelModel):
    feedback: str
    question: str
    is_complete: bool
    question_count: int


class QAItem(CamelModel):
    question: str
    answer: str
    feedback: str


class EndResp(CamelModel):
    summary: Optional[InterviewSummary] = None
    score: float = 0.0
    is_cancelled: bool = False
    question_count: int = 0
    items: List[QAItem] = Field(default_factory=list)


class TurnItem(CamelModel):
    role: Literal["interviewer", "candidate"]
    text: str
    timestamp: datetime


class ActiveResp(CamelModel):
    has_active_session: bool
    current_question: Optional[str] = None
    question_count: Optional[int] = None
    history: Optional[List[TurnItem]] = None
    stage: Optional[Literal["started", "completed"]] = None
    has_reset: Optional[bool] = None


class CancelResp(CamelModel):
    cancelled: bool


class FeedbackItem(CamelModel):
    correctness: Optional[float] = None
    clarity: Optional[float] = None
    confidence: Optional[float] = None
    overall_feedback: str = ""
    parsing_failed: bool = False


class EvaluateResp(CamelModel):
    feedback: FeedbackItem
    score: float
    cached: bool = False
