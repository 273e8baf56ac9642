"""Session, feedback and summary models for the interview state machine."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Level = Literal["Junior", "Mid-Level", "Senior", "Lead", "Auto"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Stage(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"


class Role(str, Enum):
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"


class Turn(BaseModel):
    """One utterance in the conversation."""

    role: Role
    text: str
    timestamp: datetime = Field(default_factory=utcnow)


class SessionRecord(BaseModel):
    """Live state of one interview, keyed by identity in the session store."""

    stage: Stage = Stage.STARTED
    current_question: str
    resume_text: str
    history: List[Turn] = Field(default_factory=list)
    question_count: int = Field(default=1, ge=1)
    started_at: datetime = Field(default_factory=utcnow)
    reset_used: bool = False
    job_role: str = "Software Engineer"
    level: Level = "Auto"
    job_description: str = ""
    version: int = 0

    def answer_count(self) -> int:
        return sum(1 for turn in self.history if turn.role == Role.CANDIDATE)


class FeedbackRecord(BaseModel):
    """Structured feedback for a single answer; scores live in [0, 10] when present."""

    correctness: Optional[float] = None
    clarity: Optional[float] = None
    confidence: Optional[float] = None
    overall_feedback: str = ""
    parsing_failed: bool = False

    def scores(self) -> Dict[str, Optional[float]]:
        return {"correctness": self.correctness, "clarity": self.clarity, "confidence": self.confidence}

    def has_scores(self) -> bool:
        return any(value is not None for value in self.scores().values())


class InterviewSummary(BaseModel):
    overall_score: float = Field(default=0.0, alias="overallScore")
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    summary: str = ""
    recommendations: List[str] = Field(default_factory=list)
    technical_depth: float = Field(default=0.0, alias="technicalDepth")
    problem_solving: float = Field(default=0.0, alias="problemSolving")
    communication: float = Field(default=0.0, alias="communication")
    experience_relevance: float = Field(default=0.0, alias="experienceRelevance")

    model_config = {"populate_by_name": True}


class QATriple(BaseModel):
    question: str
    answer: str
    feedback: str


class StartResult(BaseModel):
    question: str
    session_id: str
    resumed: bool = False


class TurnResult(BaseModel):
    feedback: str
    question: str
    is_complete: bool
    question_count: int


class EndResult(BaseModel):
    summary: Optional[InterviewSummary] = None
    score: float = 0.0
    is_cancelled: bool = False
    question_count: int = 0
    triples: List[QATriple] = Field(default_factory=list)


class ActiveSessionView(BaseModel):
    has_active_session: bool
    current_question: Optional[str] = None
    question_count: Optional[int] = None
    history: Optional[List[Turn]] = None
    stage: Optional[Stage] = None
    has_reset: Optional[bool] = None


class EvaluationResult(BaseModel):
    feedback: FeedbackRecord
    score: float
    cached: bool = False


class InterviewResult(BaseModel):
    """Finished interview handed to the result sink."""

    identity: str
    questions: List[str]
    answers: List[str]
    feedback: List[Dict[str, Any]]
    summary: InterviewSummary
    score: float
    started_at: datetime
    ended_at: datetime = Field(default_factory=utcnow)
    job_role: str = "Software Engineer"
    level: Level = "Auto"
