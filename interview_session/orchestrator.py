"""Interview state machine: NotStarted -> Active -> Completed.

The orchestrator owns every SessionRecord. Each operation loads the record,
talks to the model, decides, and only then writes back, so a failed model call
or parse never leaves a half-updated session behind.
"""
from __future__ import annotations

import hashlib
import logging
import threading
import weakref
from datetime import datetime
from typing import Callable, List, Mapping, Optional, Union

from config import EVALUATION_TASK, OPENING_TASK, REPAIR_TASK, SUMMARY_TASK, TURN_TASK, Settings, settings
from interview_session.errors import (
    CancelNotAllowed,
    ModelUnavailable,
    PrecursorMissing,
    RateLimited,
    ResetNotAllowed,
    SessionConflict,
    SessionNotFound,
    StoreUnavailable,
    TransientUpstream,
    ValidationFailure,
)
from interview_session.models import (
    ActiveSessionView,
    EndResult,
    EvaluationResult,
    FeedbackRecord,
    InterviewResult,
    InterviewSummary,
    QATriple,
    Role,
    SessionRecord,
    Stage,
    StartResult,
    Turn,
    TurnResult,
    utcnow,
)
from interview_session.prompts import (
    LEVEL_PROMPTS,
    evaluation_prompt,
    opening_prompt,
    repair_prompt,
    summary_prompt,
    turn_prompt,
)
from llm_gateway import GenerateOptions, LlmGatewayError, ModelUnavailableError, RateLimitedError, TextGenerator
from observability import log_event, span
from services.history import reconstruct
from services.response_parser import COMPLETION_TOKEN, NeedsRepair, Parsed, ResponseParser
from services.scoring import score_feedback, summary_score
from services.termination import decide
from storage.results import ResultSink
from storage.session_store import SessionStore, eval_key, feedback_key, resume_key, session_key

logger = logging.getLogger(__name__)

DEFAULT_JOB_ROLE = "Software Engineer"
OPENING_FALLBACK = "To start, could you walk me through your background and the experience most relevant to this role?"
SAFE_FEEDBACK = "Unable to extract structured feedback. Please retry this question."
REPAIR_OPTIONS = GenerateOptions(max_retries=3)

ModelSource = Union[TextGenerator, Mapping[str, TextGenerator]]


def _default_summary(score: float) -> InterviewSummary:
    return InterviewSummary(
        overall_score=score,
        strengths=["Good communication"],
        weaknesses=["Could improve technical depth"],
        summary="Interview completed. Detailed evaluation unavailable.",
        recommendations=["Continue practicing"],
        technical_depth=score,
        problem_solving=score,
        communication=score,
        experience_relevance=score,
    )


def _failed_summary(score: float) -> InterviewSummary:
    return InterviewSummary(
        overall_score=score,
        strengths=[],
        weaknesses=[],
        summary="Interview completed, but a detailed evaluation could not be generated due to a service error.",
        recommendations=["Please try again later"],
        technical_depth=score,
        problem_solving=score,
        communication=score,
        experience_relevance=score,
    )


class InterviewOrchestrator:
    def __init__(
        self,
        *,
        store: SessionStore,
        model: ModelSource,
        parser: Optional[ResponseParser] = None,
        results: Optional[ResultSink] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._models = model
        self._parser = parser or ResponseParser()
        self._results = results
        self._cfg = config or settings
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Infrastructure helpers
    # ------------------------------------------------------------------
    def _lock_for(self, identity: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(identity)
            if lock is None:
                lock = threading.Lock()
                self._locks[identity] = lock
        return lock

    def _model_for(self, task: str) -> TextGenerator:
        if isinstance(self._models, Mapping):
            return self._models[task]
        return self._models

    def _generate(self, task: str, prompt: str, identity: str, options: Optional[GenerateOptions] = None) -> str:
        retry_after = self._cfg.RETRY_AFTER_SECONDS
        try:
            with span(task, identity):
                return self._model_for(task).generate(prompt, options)
        except RateLimitedError as exc:
            logger.error("Model rate limited task=%s identity=%s: %s", task, identity, exc)
            raise RateLimited(retry_after=retry_after) from exc
        except ModelUnavailableError as exc:
            logger.error("Model unavailable task=%s identity=%s: %s", task, identity, exc)
            raise ModelUnavailable(retry_after=retry_after) from exc
        except LlmGatewayError as exc:
            logger.error("Model call failed task=%s identity=%s: %s", task, identity, exc)
            raise TransientUpstream(retry_after=retry_after) from exc

    def _repair(self, identity: str, text: str) -> Optional[str]:
        log_event("repair_attempted", identity)
        try:
            return self._generate(REPAIR_TASK, repair_prompt(text), identity, REPAIR_OPTIONS)
        except (RateLimited, ModelUnavailable, TransientUpstream) as exc:
            logger.warning("Repair prompt failed identity=%s: %s", identity, exc.kind)
            return None

    def _cache_feedback(self, identity: str, feedback: str) -> None:
        # side channel only; `end` falls back to the history when an entry is missing
        try:
            self._store.push_feedback(
                feedback_key(identity),
                feedback,
                limit=self._cfg.FEEDBACK_CACHE_SIZE,
                ttl=self._cfg.FEEDBACK_TTL_SECONDS,
            )
        except StoreUnavailable as exc:
            logger.warning("Feedback cache write failed identity=%s: %s", identity, exc.kind)

    @staticmethod
    def _require_identity(identity: str) -> str:
        value = (identity or "").strip()
        if not value:
            raise ValidationFailure("A user identity is required.")
        return value

    def _require(self, identity: str) -> SessionRecord:
        record = self._store.get(session_key(identity))
        if record is None:
            raise SessionNotFound()
        return record

    # ------------------------------------------------------------------
    # Resume precursor
    # ------------------------------------------------------------------
    def stage_resume(self, identity: str, resume_text: str) -> None:
        identity = self._require_identity(identity)
        text = (resume_text or "").strip()
        if not text:
            raise ValidationFailure("Resume text is empty.")
        self._store.set_text(resume_key(identity), text, self._cfg.RESUME_TTL_SECONDS)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _open(
        self,
        identity: str,
        *,
        job_role: str,
        level: str,
        job_description: str,
        reset_used: bool,
        resume_text: Optional[str] = None,
    ) -> SessionRecord:
        resume = resume_text or self._store.get_text(resume_key(identity))
        if not resume:
            raise PrecursorMissing()
        question = self._generate(
            OPENING_TASK,
            opening_prompt(resume, job_role, level, job_description),
            identity,
        ).strip()
        if not question:
            question = OPENING_FALLBACK
        now = self._clock()
        record = SessionRecord(
            stage=Stage.STARTED,
            current_question=question,
            resume_text=resume,
            history=[Turn(role=Role.INTERVIEWER, text=question, timestamp=now)],
            question_count=1,
            started_at=now,
            reset_used=reset_used,
            job_role=job_role,
            level=level,
            job_description=job_description,
        )
        return self._store.create(session_key(identity), record, self._cfg.SESSION_TTL_SECONDS)

    def start(
        self,
        identity: str,
        *,
        job_role: Optional[str] = None,
        level: str = "Auto",
        job_description: str = "",
    ) -> StartResult:
        identity = self._require_identity(identity)
        if level != "Auto" and level not in LEVEL_PROMPTS:
            raise ValidationFailure(f"Unknown interview level: {level}")
        key = session_key(identity)
        with self._lock_for(identity):
            existing = self._store.get(key)
            if existing is not None:
                log_event("session_resumed", identity, question_count=existing.question_count)
                return StartResult(question=existing.current_question, session_id=key, resumed=True)
            record = self._open(
                identity,
                job_role=(job_role or "").strip() or DEFAULT_JOB_ROLE,
                level=level,
                job_description=(job_description or "").strip(),
                reset_used=False,
            )
        log_event("session_started", identity, question_count=record.question_count)
        return StartResult(question=record.current_question, session_id=key)

    def next(self, identity: str, answer: str) -> TurnResult:
        identity = self._require_identity(identity)
        text = (answer or "").strip()
        if len(text) < self._cfg.MIN_ANSWER_CHARS:
            raise ValidationFailure(f"Answer must be at least {self._cfg.MIN_ANSWER_CHARS} characters long.")
        if len(text) > self._cfg.MAX_ANSWER_CHARS:
            raise ValidationFailure(f"Answer must be less than {self._cfg.MAX_ANSWER_CHARS} characters.")

        key = session_key(identity)
        with self._lock_for(identity):
            record = self._require(identity)
            if record.stage == Stage.COMPLETED:
                raise SessionConflict("This interview is already complete. Please end it to see your results.")

            now = self._clock()
            history = [*record.history, Turn(role=Role.CANDIDATE, text=text, timestamp=now)]
            prompt = turn_prompt(
                record,
                history,
                min_questions=self._cfg.MIN_QUESTIONS,
                max_questions=self._cfg.MAX_QUESTIONS,
            )
            raw = self._generate(TURN_TASK, prompt, identity)
            split = self._parser.split_turn(raw)
            decision = decide(
                record.question_count,
                split.completion_signaled,
                split.question,
                split.feedback,
                min_questions=self._cfg.MIN_QUESTIONS,
                max_questions=self._cfg.MAX_QUESTIONS,
            )
            feedback = decision.feedback
            if decision.outcome == "honoured" and not split.feedback:
                feedback = raw.replace(COMPLETION_TOKEN, "").strip() or decision.feedback

            if decision.is_complete:
                fields = {"stage": Stage.COMPLETED, "history": history}
                question_count = record.question_count
            else:
                history.append(Turn(role=Role.INTERVIEWER, text=decision.question, timestamp=now))
                question_count = record.question_count + 1
                fields = {
                    "history": history,
                    "current_question": decision.question,
                    "question_count": question_count,
                }
            self._store.merge(key, fields, ttl=self._cfg.SESSION_TTL_SECONDS, expected_version=record.version)
            self._cache_feedback(identity, feedback)

        if decision.outcome == "overridden":
            log_event("completion_overridden", identity, question_count=record.question_count)
        elif decision.outcome == "forced":
            log_event("completion_forced", identity, question_count=record.question_count)
        log_event(
            "turn_completed",
            identity,
            question_count=question_count,
            is_complete=decision.is_complete,
            outcome=decision.outcome,
        )
        return TurnResult(
            feedback=feedback,
            question=decision.question,
            is_complete=decision.is_complete,
            question_count=question_count,
        )

    def _summarize(self, identity: str, record: SessionRecord, triples: List[QATriple]) -> InterviewSummary:
        neutral = self._cfg.NEUTRAL_SCORE
        try:
            raw = self._generate(SUMMARY_TASK, summary_prompt(record.resume_text, triples), identity)
        except (RateLimited, ModelUnavailable, TransientUpstream) as exc:
            logger.warning("Summary generation failed identity=%s: %s", identity, exc.kind)
            return _failed_summary(neutral)
        summary = self._parser.parse_summary(raw)
        if summary is None:
            logger.warning("Failed to parse summary JSON identity=%s, using defaults", identity)
            return _default_summary(neutral)
        return summary

    def end(self, identity: str) -> EndResult:
        identity = self._require_identity(identity)
        key = session_key(identity)
        fkey = feedback_key(identity)
        with self._lock_for(identity):
            record = self._require(identity)
            triples = reconstruct(record.history, self._store.list_feedback(fkey))
            if not triples:
                self._store.delete(key)
                self._store.delete(fkey)
                log_event("session_cancelled", identity, cancelled=True)
                return EndResult(summary=None, score=0.0, is_cancelled=True, question_count=0)

            summary = self._summarize(identity, record, triples)
            score = summary_score(summary)
            if self._results is not None:
                self._results.save(
                    InterviewResult(
                        identity=identity,
                        questions=[item.question for item in triples],
                        answers=[item.answer for item in triples],
                        feedback=[{"overall_feedback": item.feedback} for item in triples],
                        summary=summary,
                        score=score,
                        started_at=record.started_at,
                        ended_at=self._clock(),
                        job_role=record.job_role,
                        level=record.level,
                    )
                )
            self._store.delete(key)
            self._store.delete(fkey)

        log_event("session_ended", identity, question_count=len(triples), score=score)
        return EndResult(summary=summary, score=score, is_cancelled=False, question_count=len(triples), triples=triples)

    def get_active(self, identity: str) -> ActiveSessionView:
        identity = self._require_identity(identity)
        record = self._store.get(session_key(identity))
        if record is None:
            return ActiveSessionView(has_active_session=False)
        return ActiveSessionView(
            has_active_session=True,
            current_question=record.current_question,
            question_count=record.question_count,
            history=record.history,
            stage=record.stage,
            has_reset=record.reset_used,
        )

    def reset(self, identity: str) -> StartResult:
        identity = self._require_identity(identity)
        key = session_key(identity)
        with self._lock_for(identity):
            record = self._require(identity)
            if record.reset_used:
                raise ResetNotAllowed()
            fresh = self._open(
                identity,
                job_role=record.job_role,
                level=record.level,
                job_description=record.job_description,
                reset_used=True,
                resume_text=record.resume_text,
            )
            self._store.delete(feedback_key(identity))
        log_event("session_reset", identity, question_count=fresh.question_count)
        return StartResult(question=fresh.current_question, session_id=key)

    def cancel(self, identity: str) -> bool:
        identity = self._require_identity(identity)
        with self._lock_for(identity):
            record = self._store.get(session_key(identity))
            if record is None:
                return False
            if record.reset_used or record.answer_count() > 0:
                raise CancelNotAllowed()
            self._store.delete(session_key(identity))
            self._store.delete(feedback_key(identity))
        log_event("session_cancelled", identity, cancelled=True)
        return True

    # ------------------------------------------------------------------
    # Single-answer evaluation
    # ------------------------------------------------------------------
    def evaluate(self, identity: str, question: str, answer: str) -> EvaluationResult:
        identity = self._require_identity(identity)
        question = (question or "").strip()
        answer = (answer or "").strip()
        if not question or not answer:
            raise ValidationFailure("Both a question and an answer are required.")
        if len(answer) > self._cfg.MAX_ANSWER_CHARS:
            raise ValidationFailure(f"Answer must be less than {self._cfg.MAX_ANSWER_CHARS} characters.")

        digest = hashlib.sha256(f"{question}\x00{answer}".encode("utf-8")).hexdigest()[:32]
        cache_key = eval_key(identity, digest)
        cached = self._store.get_text(cache_key)
        if cached:
            return EvaluationResult.model_validate_json(cached).model_copy(update={"cached": True})

        raw = self._generate(EVALUATION_TASK, evaluation_prompt(question, answer), identity)
        outcome = self._parser.parse_feedback(raw)
        if self._parser.looks_like_refusal(raw) or isinstance(outcome, NeedsRepair):
            repaired = self._repair(identity, raw)
            if repaired is not None:
                candidate = self._parser.parse_feedback(repaired)
                if isinstance(candidate, Parsed) or not isinstance(outcome, Parsed):
                    outcome = candidate

        feedback: FeedbackRecord = outcome.feedback
        if isinstance(outcome, NeedsRepair):
            feedback = feedback.model_copy(update={"overall_feedback": SAFE_FEEDBACK, "parsing_failed": True})
        result = EvaluationResult(feedback=feedback, score=score_feedback(feedback, self._cfg.SCORE_CALIBRATION))
        self._store.set_text(cache_key, result.model_dump_json(), self._cfg.EVAL_CACHE_TTL_SECONDS)
        log_event("answer_evaluated", identity, score=result.score)
        return result


__all__ = ["InterviewOrchestrator", "SAFE_FEEDBACK", "OPENING_FALLBACK"]
