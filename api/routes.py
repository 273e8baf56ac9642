"""FastAPI routes for interview session control."""
from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from api.schemas import (
    ActiveResp,
    CancelResp,
    EndResp,
    EvaluateReq,
    EvaluateResp,
    FeedbackItem,
    NextReq,
    NextResp,
    QAItem,
    ResumeReq,
    ResumeResp,
    StartReq,
    StartResp,
    TurnItem,
)
from interview_session.errors import InterviewError
from interview_session.orchestrator import InterviewOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/interview")


def get_orchestrator(request: Request) -> InterviewOrchestrator:
    return request.app.state.orchestrator


def get_identity(x_user_id: Optional[str] = Header(default=None)) -> str:
    identity = (x_user_id or "").strip()
    if not identity:
        raise HTTPException(
            status_code=401,
            detail={"error": "Unauthorized", "message": "Missing X-User-Id header."},
        )
    return identity


def _http_error(exc: InterviewError) -> HTTPException:
    detail: Dict[str, object] = {"error": exc.kind, "message": exc.message}
    headers = None
    if exc.retry_after is not None:
        detail["retryAfter"] = exc.retry_after
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error("Interview request failed kind=%s: %s", exc.kind, exc.message)
    return HTTPException(status_code=exc.status_code, detail=detail, headers=headers)


@router.post("/resume", response_model=ResumeResp)
def stage_resume(
    req: ResumeReq,
    identity: str = Depends(get_identity),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> ResumeResp:
    try:
        orchestrator.stage_resume(identity, req.resume_text)
    except InterviewError as exc:
        raise _http_error(exc) from exc
    return ResumeResp()


@router.post("/start", response_model=StartResp)
def start(
    req: StartReq,
    identity: str = Depends(get_identity),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> StartResp:
    try:
        result = orchestrator.start(
            identity,
            job_role=req.job_role,
            level=req.level,
            job_description=req.job_description,
        )
    except InterviewError as exc:
        raise _http_error(exc) from exc
    return StartResp(question=result.question, session_id=result.session_id, resumed=result.resumed)


@router.post("/next", response_model=NextResp)
def next_question(
    req: NextReq,
    identity: str = Depends(get_identity),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> NextResp:
    try:
        result = orchestrator.next(identity, req.answer)
    except InterviewError as exc:
        raise _http_error(exc) from exc
    return NextResp(
        feedback=result.feedback,
        question=result.question,
        is_complete=result.is_complete,
        question_count=result.question_count,
    )


@router.post("/end", response_model=EndResp)
def end(
    identity: str = Depends(get_identity),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> EndResp:
    try:
        result = orchestrator.end(identity)
    except InterviewError as exc:
        raise _http_error(exc) from exc
    return EndResp(
        summary=result.summary,
        score=result.score,
        is_cancelled=result.is_cancelled,
        question_count=result.question_count,
        items=[QAItem(question=t.question, answer=t.answer, feedback=t.feedback) for t in result.triples],
    )


@router.get("/active", response_model=ActiveResp)
def active(
    identity: str = Depends(get_identity),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> ActiveResp:
    try:
        view = orchestrator.get_active(identity)
    except InterviewError as exc:
        raise _http_error(exc) from exc
    if not view.has_active_session:
        return ActiveResp(has_active_session=False)
    return ActiveResp(
        has_active_session=True,
        current_question=view.current_question,
        question_count=view.question_count,
        history=[
            TurnItem(role=turn.role.value, text=turn.text, timestamp=turn.timestamp) for turn in view.history or []
        ],
        stage=view.stage.value if view.stage else None,
        has_reset=view.has_reset,
    )


@router.post("/reset", response_model=StartResp)
def reset(
    identity: str = Depends(get_identity),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> StartResp:
    try:
        result = orchestrator.reset(identity)
    except InterviewError as exc:
        raise _http_error(exc) from exc
    return StartResp(question=result.question, session_id=result.session_id)


@router.post("/cancel", response_model=CancelResp)
def cancel(
    identity: str = Depends(get_identity),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> CancelResp:
    try:
        cancelled = orchestrator.cancel(identity)
    except InterviewError as exc:
        raise _http_error(exc) from exc
    return CancelResp(cancelled=cancelled)


@router.post("/evaluate", response_model=EvaluateResp)
def evaluate(
    req: EvaluateReq,
    identity: str = Depends(get_identity),
    orchestrator: InterviewOrchestrator = Depends(get_orchestrator),
) -> EvaluateResp:
    try:
        result = orchestrator.evaluate(identity, req.question, req.answer)
    except InterviewError as exc:
        raise _http_error(exc) from exc
    return EvaluateResp(
        feedback=FeedbackItem(**result.feedback.model_dump()),
        score=result.score,
        cached=result.cached,
    )
