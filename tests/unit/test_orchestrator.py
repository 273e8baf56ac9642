"""Tests for the interview state machine."""
from __future__ import annotations

import gc
import threading

import pytest

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
from interview_session.models import Role, Stage
from interview_session.orchestrator import SAFE_FEEDBACK, InterviewOrchestrator
from llm_gateway import ModelUnavailableError, RateLimitedError, TransientUpstreamError
from services.termination import CONTINUATION_QUESTION
from storage.session_store import MemorySessionStore, feedback_key, session_key

OPENING = "Tell me about a challenging bug you fixed."
ANSWER = "I once diagnosed a memory leak in a payment service by profiling heap dumps."
SUMMARY_JSON = (
    '{"overallScore": 7.5, "strengths": ["Debugging"], "weaknesses": ["Testing"], '
    '"summary": "Solid backend engineer.", "recommendations": ["Practice system design"], '
    '"technicalDepth": 7, "problemSolving": 8, "communication": 7, "experienceRelevance": 8}'
)


def _started(orchestrator, model, identity):
    model.queue(OPENING)
    return orchestrator.start(identity)


def _set_count(store, identity, count):
    store.merge(session_key(identity), {"question_count": count})


def test_start_requires_staged_resume(orchestrator, model):
    with pytest.raises(PrecursorMissing):
        orchestrator.start("nobody")
    assert model.prompts == []


def test_start_creates_record_with_opening_question(orchestrator, model, store, staged):
    result = _started(orchestrator, model, staged)

    assert result.question == OPENING
    assert result.session_id == "session:user-1"
    assert result.resumed is False
    record = store.get(session_key(staged))
    assert record.question_count == 1
    assert len(record.history) == 1
    assert record.history[0].role == Role.INTERVIEWER
    assert "5 years Java backend" in model.prompts[0]


def test_start_uses_job_context(orchestrator, model, staged):
    model.queue(OPENING)
    orchestrator.start(staged, job_role="Data Engineer", level="Senior", job_description="Spark pipelines")

    prompt = model.prompts[0]
    assert "Data Engineer" in prompt
    assert "architecture, strategy" in prompt
    assert "Spark pipelines" in prompt


def test_start_rejects_unknown_level(orchestrator, staged):
    with pytest.raises(ValidationFailure):
        orchestrator.start(staged, level="Principal")


def test_start_is_idempotent_for_existing_session(orchestrator, model, staged):
    _started(orchestrator, model, staged)
    again = orchestrator.start(staged)

    assert again.resumed is True
    assert again.question == OPENING
    assert len(model.prompts) == 1


def test_next_returns_feedback_and_question(orchestrator, model, store, staged):
    _started(orchestrator, model, staged)
    _set_count(store, staged, 5)
    model.queue("FEEDBACK: Good detail. QUESTION: What would you do differently?")

    result = orchestrator.next(staged, ANSWER)

    assert result.feedback == "Good detail."
    assert result.question == "What would you do differently?"
    assert result.is_complete is False
    assert result.question_count == 6
    record = store.get(session_key(staged))
    assert [turn.role for turn in record.history] == [Role.INTERVIEWER, Role.CANDIDATE, Role.INTERVIEWER]
    assert record.current_question == "What would you do differently?"
    assert store.list_feedback(feedback_key(staged)) == ["Good detail."]


def test_completion_signal_below_floor_is_overridden(orchestrator, model, store, staged):
    _started(orchestrator, model, staged)
    _set_count(store, staged, 9)
    model.queue("FEEDBACK: Nice. QUESTION: INTERVIEW_COMPLETE")

    result = orchestrator.next(staged, ANSWER)

    assert result.is_complete is False
    assert result.question == CONTINUATION_QUESTION
    assert result.question_count == 10
    assert store.get(session_key(staged)).stage == Stage.STARTED


def test_closing_remark_below_floor_is_not_served_as_question(orchestrator, model, store, staged):
    caching = "Okay, well I would like to add something about caching then."
    invalidation = "We use versioned keys and short TTLs."
    _started(orchestrator, model, staged)
    _set_count(store, staged, 9)
    model.queue("FEEDBACK: Good. QUESTION: Interview complete. Thanks for joining!")

    result = orchestrator.next(staged, ANSWER)

    assert result.is_complete is False
    assert result.question == CONTINUATION_QUESTION
    assert store.get(session_key(staged)).current_question == CONTINUATION_QUESTION

    model.queue("FEEDBACK: Fine. QUESTION: How do you invalidate cache entries?")
    orchestrator.next(staged, caching)
    model.queue("FEEDBACK: Sensible. QUESTION: What about stampedes?")
    orchestrator.next(staged, invalidation)
    model.queue(SUMMARY_JSON)

    ended = orchestrator.end(staged)

    assert [(item.question, item.answer, item.feedback) for item in ended.triples] == [
        (OPENING, ANSWER, "Good."),
        (CONTINUATION_QUESTION, caching, "Fine."),
        ("How do you invalidate cache entries?", invalidation, "Sensible."),
    ]


def test_completion_signal_after_floor_is_honoured(orchestrator, model, store, staged):
    _started(orchestrator, model, staged)
    _set_count(store, staged, 14)
    model.queue("FEEDBACK: Thorough answer. QUESTION: INTERVIEW_COMPLETE")

    result = orchestrator.next(staged, ANSWER)

    assert result.is_complete is True
    assert result.question == ""
    assert result.feedback == "Thorough answer."
    assert result.question_count == 14
    assert store.get(session_key(staged)).stage == Stage.COMPLETED

    with pytest.raises(SessionConflict):
        orchestrator.next(staged, ANSWER)


def test_completion_forced_at_cap(orchestrator, model, store, staged):
    _started(orchestrator, model, staged)
    _set_count(store, staged, 25)
    model.queue("FEEDBACK: Fine. QUESTION: One more thing?")

    result = orchestrator.next(staged, ANSWER)

    assert result.is_complete is True
    assert result.question == ""


def test_next_rejects_short_answer_without_model_call(orchestrator, model, staged):
    _started(orchestrator, model, staged)

    with pytest.raises(ValidationFailure):
        orchestrator.next(staged, "too short")
    assert len(model.prompts) == 1


def test_next_without_session_is_not_found(orchestrator):
    with pytest.raises(SessionNotFound):
        orchestrator.next("ghost", ANSWER)


@pytest.mark.parametrize(
    "error, expected",
    [
        (RateLimitedError("quota"), RateLimited),
        (ModelUnavailableError("gone"), ModelUnavailable),
        (TransientUpstreamError("503"), TransientUpstream),
    ],
)
def test_model_failure_leaves_session_untouched(orchestrator, model, store, staged, error, expected):
    _started(orchestrator, model, staged)
    model.queue(error)

    with pytest.raises(expected) as excinfo:
        orchestrator.next(staged, ANSWER)

    assert excinfo.value.retry_after == 60
    assert "quota" not in excinfo.value.message
    record = store.get(session_key(staged))
    assert record.question_count == 1
    assert len(record.history) == 1


class FailingMergeStore(MemorySessionStore):
    def merge(self, key, fields, ttl=None, expected_version=None):
        raise StoreUnavailable()


def test_store_failure_fails_closed(model, clock, results):
    store = FailingMergeStore(clock=clock)
    orchestrator = InterviewOrchestrator(store=store, model=model, results=results)
    orchestrator.stage_resume("user-1", "Resume text for a backend engineer.")
    _started(orchestrator, model, "user-1")
    model.queue("FEEDBACK: Good. QUESTION: Why?")

    with pytest.raises(StoreUnavailable):
        orchestrator.next("user-1", ANSWER)

    assert store.get(session_key("user-1")).question_count == 1
    assert store.list_feedback(feedback_key("user-1")) == []


class FailingFeedbackStore(MemorySessionStore):
    def push_feedback(self, key, text, *, limit, ttl):
        raise StoreUnavailable()


def test_feedback_cache_failure_does_not_fail_turn(model, clock, results):
    store = FailingFeedbackStore(clock=clock)
    orchestrator = InterviewOrchestrator(store=store, model=model, results=results)
    orchestrator.stage_resume("user-1", "Resume text for a backend engineer.")
    _started(orchestrator, model, "user-1")
    model.queue("FEEDBACK: Good. QUESTION: Why?")

    result = orchestrator.next("user-1", ANSWER)

    assert result.question_count == 2
    assert result.feedback == "Good."
    record = store.get(session_key("user-1"))
    assert record.question_count == 2
    assert record.current_question == "Why?"


class GatedModel:
    """Blocks the first call until released so a second caller can race it."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = 0
        self.entered = threading.Event()
        self.release = threading.Event()

    def generate(self, prompt, options=None):
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            assert self.release.wait(timeout=5)
        return self.replies.pop(0)


class BarrierModel:
    """Holds every caller until ``parties`` calls are in flight."""

    def __init__(self, reply, parties=2):
        self.reply = reply
        self.barrier = threading.Barrier(parties, timeout=5)

    def generate(self, prompt, options=None):
        self.barrier.wait()
        return self.reply


def _run_next(orchestrator, identity, answer, outcomes):
    try:
        outcomes.append(orchestrator.next(identity, answer))
    except SessionConflict as exc:
        outcomes.append(exc)


def test_concurrent_next_is_serialised_per_identity(store, results):
    model = GatedModel(OPENING, "FEEDBACK: One. QUESTION: First follow-up?", "FEEDBACK: Two. QUESTION: Second follow-up?")
    orchestrator = InterviewOrchestrator(store=store, model=model, results=results)
    orchestrator.stage_resume("user-1", "Resume text for a backend engineer.")
    model.release.set()
    orchestrator.start("user-1")
    model.calls = 0
    model.entered.clear()
    model.release.clear()

    outcomes = []
    first = threading.Thread(target=_run_next, args=(orchestrator, "user-1", ANSWER, outcomes))
    second = threading.Thread(target=_run_next, args=(orchestrator, "user-1", "A second answer about heap profiling.", outcomes))
    first.start()
    assert model.entered.wait(timeout=5)
    second.start()
    second.join(timeout=0.2)
    assert model.calls == 1
    model.release.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert sorted(result.question_count for result in outcomes) == [2, 3]
    record = store.get(session_key("user-1"))
    assert record.question_count == 3
    assert len(record.history) == 5
    assert store.list_feedback(feedback_key("user-1")) == ["One.", "Two."]


def test_concurrent_next_from_two_workers_admits_one_writer(store, results, make_model):
    opener = InterviewOrchestrator(store=store, model=make_model(OPENING), results=results)
    opener.stage_resume("user-1", "Resume text for a backend engineer.")
    opener.start("user-1")

    model = BarrierModel("FEEDBACK: Good. QUESTION: What next?")
    workers = [InterviewOrchestrator(store=store, model=model, results=results) for _ in range(2)]
    outcomes = []
    threads = [
        threading.Thread(target=_run_next, args=(worker, "user-1", ANSWER, outcomes)) for worker in workers
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert len(outcomes) == 2
    assert sum(isinstance(item, SessionConflict) for item in outcomes) == 1
    record = store.get(session_key("user-1"))
    assert record.question_count == 2
    assert len(record.history) == 3
    assert store.list_feedback(feedback_key("user-1")) == ["Good."]


def test_identity_locks_are_released_after_use(orchestrator):
    for index in range(100):
        assert orchestrator.cancel(f"ghost-{index}") is False

    gc.collect()
    assert len(orchestrator._locks) == 0


def test_end_with_zero_answers_is_cancellation(orchestrator, model, results, staged):
    _started(orchestrator, model, staged)

    result = orchestrator.end(staged)

    assert result.is_cancelled is True
    assert result.summary is None
    assert results.recent() == []
    assert orchestrator.get_active(staged).has_active_session is False


def test_end_summarises_and_persists(orchestrator, model, results, staged):
    _started(orchestrator, model, staged)
    model.queue("FEEDBACK: Good detail. QUESTION: How did you verify the fix?")
    orchestrator.next(staged, ANSWER)
    model.queue("FEEDBACK: Clear testing story. QUESTION: What about monitoring?")
    orchestrator.next(staged, "We added a soak test and compared heap growth before and after.")
    model.queue(f"```json\n{SUMMARY_JSON}\n```")

    result = orchestrator.end(staged)

    assert result.is_cancelled is False
    assert result.score == 7.5
    assert result.summary.strengths == ["Debugging"]
    assert [item.feedback for item in result.triples] == ["Good detail.", "Clear testing story."]
    assert result.triples[0].question == OPENING
    rows = results.recent()
    assert len(rows) == 1
    assert rows[0].identity == staged
    assert rows[0].question_count == 2
    assert orchestrator.get_active(staged).has_active_session is False


def test_end_defaults_unparseable_summary(orchestrator, model, staged):
    _started(orchestrator, model, staged)
    model.queue("FEEDBACK: Ok. QUESTION: Next?")
    orchestrator.next(staged, ANSWER)
    model.queue("The candidate did fine overall.")

    result = orchestrator.end(staged)

    assert result.is_cancelled is False
    assert result.score == 5.0
    assert result.summary.communication == 5.0


def test_end_survives_summary_model_failure(orchestrator, model, staged):
    _started(orchestrator, model, staged)
    model.queue("FEEDBACK: Ok. QUESTION: Next?")
    orchestrator.next(staged, ANSWER)
    model.queue(TransientUpstreamError("boom"))

    result = orchestrator.end(staged)

    assert result.score == 5.0
    assert "service error" in result.summary.summary


def test_end_without_session_is_not_found(orchestrator):
    with pytest.raises(SessionNotFound):
        orchestrator.end("ghost")


def test_get_active_projects_record(orchestrator, model, staged):
    assert orchestrator.get_active(staged).has_active_session is False
    _started(orchestrator, model, staged)

    view = orchestrator.get_active(staged)

    assert view.has_active_session is True
    assert view.current_question == OPENING
    assert view.question_count == 1
    assert view.stage == Stage.STARTED
    assert view.has_reset is False


def test_session_expires_after_ttl(orchestrator, model, clock, staged):
    _started(orchestrator, model, staged)
    clock.advance(7201)

    assert orchestrator.get_active(staged).has_active_session is False
    with pytest.raises(SessionNotFound):
        orchestrator.next(staged, ANSWER)


def test_reset_allowed_once(orchestrator, model, store, staged):
    _started(orchestrator, model, staged)
    model.queue("FEEDBACK: Ok. QUESTION: Next?")
    orchestrator.next(staged, ANSWER)
    model.queue("What drew you to backend engineering?")

    result = orchestrator.reset(staged)

    assert result.question == "What drew you to backend engineering?"
    record = store.get(session_key(staged))
    assert record.reset_used is True
    assert record.question_count == 1
    assert len(record.history) == 1
    assert store.list_feedback(feedback_key(staged)) == []
    with pytest.raises(ResetNotAllowed):
        orchestrator.reset(staged)


def test_reset_without_session_is_not_found(orchestrator):
    with pytest.raises(SessionNotFound):
        orchestrator.reset("ghost")


def test_cancel_rules(orchestrator, model, staged):
    assert orchestrator.cancel(staged) is False

    _started(orchestrator, model, staged)
    assert orchestrator.cancel(staged) is True
    assert orchestrator.get_active(staged).has_active_session is False

    _started(orchestrator, model, staged)
    model.queue("FEEDBACK: Ok. QUESTION: Next?")
    orchestrator.next(staged, ANSWER)
    with pytest.raises(CancelNotAllowed):
        orchestrator.cancel(staged)


def test_cancel_not_allowed_after_reset(orchestrator, model, staged):
    _started(orchestrator, model, staged)
    model.queue("A fresh opening question?")
    orchestrator.reset(staged)

    with pytest.raises(CancelNotAllowed):
        orchestrator.cancel(staged)


def test_evaluate_scores_structured_reply(orchestrator, model):
    model.queue('{"correctness": 8, "clarity": 7, "confidence": 6, "overall_feedback": "Concrete and accurate."}')

    result = orchestrator.evaluate("user-1", "What is a deadlock?", "Two threads each waiting on a lock the other holds.")

    assert result.feedback.parsing_failed is False
    assert result.feedback.overall_feedback == "Concrete and accurate."
    assert result.score == 5.95
    assert result.cached is False
    assert len(model.prompts) == 1


def test_evaluate_serves_cached_result(orchestrator, model):
    model.queue('{"correctness": 8, "clarity": 7, "confidence": 6, "overall_feedback": "Concrete."}')
    first = orchestrator.evaluate("user-1", "What is a deadlock?", "Two threads waiting on each other.")
    second = orchestrator.evaluate("user-1", "What is a deadlock?", "Two threads waiting on each other.")

    assert second.cached is True
    assert second.score == first.score
    assert len(model.prompts) == 1


def test_evaluate_repairs_refusal(orchestrator, model):
    model.queue(
        "I understand, please provide the question and answer you want me to assess.",
        '{"correctness": 6, "clarity": 6, "confidence": 6, "overall_feedback": "Reasonable but brief."}',
    )

    result = orchestrator.evaluate("user-1", "What is a deadlock?", "Threads stuck waiting.")

    assert result.feedback.parsing_failed is False
    assert result.feedback.overall_feedback == "Reasonable but brief."
    assert len(model.prompts) == 2
    assert model.options[1].max_retries == 3


def test_evaluate_never_returns_refusal_prose(orchestrator, model):
    refusal = "I understand, please provide the question and answer you want me to assess."
    model.queue(refusal, "I understand my role is to objectively assess answers.")

    result = orchestrator.evaluate("user-1", "What is a deadlock?", "Threads stuck waiting.")

    assert result.feedback.parsing_failed is True
    assert result.feedback.overall_feedback == SAFE_FEEDBACK
    assert result.score == 0.0


def test_evaluate_requires_question_and_answer(orchestrator):
    with pytest.raises(ValidationFailure):
        orchestrator.evaluate("user-1", " ", "answer")


def test_stage_resume_rejects_empty_text(orchestrator):
    with pytest.raises(ValidationFailure):
        orchestrator.stage_resume("user-1", "   ")


def test_per_task_model_mapping(store, results, make_model):
    opening = make_model(OPENING)
    orchestrator = InterviewOrchestrator(
        store=store,
        model={
            "interview.opening": opening,
            "interview.turn": make_model(),
            "interview.summary": make_model(),
            "interview.evaluation": make_model(),
            "interview.repair": make_model(),
        },
        results=results,
    )
    orchestrator.stage_resume("user-2", "Frontend developer with React experience.")

    assert orchestrator.start("user-2").question == OPENING
    assert len(opening.prompts) == 1
