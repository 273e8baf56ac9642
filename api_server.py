from __future__ import annotations  # FastAPI server exposing the mock interview API

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from config import LlmRoute, Settings, load_routes, settings
from interview_session.orchestrator import InterviewOrchestrator
from llm_gateway import ResilientModelClient, TextGenerator
from storage.migrate import migrate
from storage.results import InterviewResultStore
from storage.session_store import MemorySessionStore, SessionStore, SqliteSessionStore


logger = logging.getLogger(__name__)


def _build_store(cfg: Settings) -> SessionStore:  # Pick the session backend named in settings
    if cfg.SESSION_BACKEND == "sqlite":
        return SqliteSessionStore(cfg.DB_PATH)
    return MemorySessionStore()


def _build_models(cfg: Settings) -> Dict[str, TextGenerator]:  # One client per route, shared across tasks
    clients: Dict[str, ResilientModelClient] = {}
    models: Dict[str, TextGenerator] = {}
    routes: Dict[str, LlmRoute] = load_routes(cfg)
    for task, route in routes.items():
        if route.name not in clients:
            clients[route.name] = ResilientModelClient(route)
        models[task] = clients[route.name]
    return models


def build_orchestrator(cfg: Optional[Settings] = None) -> InterviewOrchestrator:  # Wire production collaborators
    cfg = cfg or settings
    migrate(cfg.DB_PATH)
    logger.info("Building orchestrator backend=%s db=%s", cfg.SESSION_BACKEND, cfg.DB_PATH)
    return InterviewOrchestrator(
        store=_build_store(cfg),
        model=_build_models(cfg),
        results=InterviewResultStore(cfg.DB_PATH),
        config=cfg,
    )


def create_app(orchestrator: Optional[InterviewOrchestrator] = None) -> FastAPI:  # App factory used by servers and tests
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = build_orchestrator()
        yield

    app = FastAPI(title="Mock Interview API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.orchestrator = orchestrator
    app.include_router(router)
    return app


app = create_app()
