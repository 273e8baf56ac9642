from __future__ import annotations  # Finished-interview persistence layer

import json
from typing import List, Optional, Protocol

from pydantic import BaseModel

from interview_session.models import InterviewResult

from .migrate import SCHEMA
from .sqlite import get_conn


class ResultSink(Protocol):  # Receiver of finished interviews
    def save(self, result: InterviewResult) -> int: ...


class StoredResult(BaseModel):  # Row snapshot returned to inspection tools
    id: int
    identity: str
    job_role: str
    level: str
    question_count: int
    score: float
    started_at: str
    ended_at: str


class InterviewResultStore:  # SQLite-backed sink for finished interviews
    def __init__(self, path: Optional[str] = None) -> None:  # Initialize store and schema
        self._path = path
        self._ensure_schema()

    def _ensure_schema(self) -> None:  # Ensure result tables exist
        with get_conn(self._path) as conn:
            for stmt in SCHEMA:
                conn.execute(stmt)

    def save(self, result: InterviewResult) -> int:  # Persist one finished interview
        with get_conn(self._path) as conn:
            cur = conn.execute(
                """INSERT INTO interview_results
                   (identity, job_role, level, question_count, questions_json, answers_json,
                    feedback_json, summary_json, score, started_at, ended_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    result.identity,
                    result.job_role,
                    result.level,
                    len(result.questions),
                    json.dumps(result.questions, ensure_ascii=False),
                    json.dumps(result.answers, ensure_ascii=False),
                    json.dumps(result.feedback, ensure_ascii=False),
                    result.summary.model_dump_json(by_alias=True),
                    result.score,
                    result.started_at.isoformat(),
                    result.ended_at.isoformat(),
                ),
            )
            return int(cur.lastrowid)

    def recent(self, limit: int = 20) -> List[StoredResult]:  # Latest results, newest first
        with get_conn(self._path) as conn:
            rows = conn.execute(
                """
                SELECT id, identity, job_role, level, question_count, score, started_at, ended_at
                FROM interview_results
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [StoredResult(**dict(row)) for row in rows]


__all__ = ["ResultSink", "InterviewResultStore", "StoredResult"]
