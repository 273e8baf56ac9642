import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storage.migrate import migrate
from config.settings import settings
from interview_session.orchestrator import InterviewOrchestrator
from storage.results import InterviewResultStore
from storage.session_store import MemorySessionStore


RESUME = "5 years Java backend engineer. Built payment services with Spring Boot and PostgreSQL."


class ScriptedModel:
    """Stand-in model client that replays queued replies or raises queued errors."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []
        self.options = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def generate(self, prompt, options=None):
        self.prompts.append(prompt)
        self.options.append(options)
        if not self.replies:
            raise AssertionError("ScriptedModel has no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def tmp_db(monkeypatch):
    td = tempfile.TemporaryDirectory()
    db_path = os.path.join(td.name, "test.db")
    monkeypatch.setattr(settings, "DB_PATH", db_path, raising=False)
    migrate(db_path)
    try:
        yield db_path
    finally:
        td.cleanup()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemorySessionStore(clock=clock)


@pytest.fixture
def model():
    return ScriptedModel()


@pytest.fixture
def results(tmp_db):
    return InterviewResultStore(tmp_db)


@pytest.fixture
def orchestrator(store, model, results):
    return InterviewOrchestrator(store=store, model=model, results=results, config=settings)


@pytest.fixture
def staged(orchestrator):
    orchestrator.stage_resume("user-1", RESUME)
    return "user-1"


@pytest.fixture
def make_model():
    return ScriptedModel
