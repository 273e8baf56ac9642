from __future__ import annotations  # Configuration schema for LLM routing

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .settings import Settings


OPENING_TASK = "interview.opening"
TURN_TASK = "interview.turn"
SUMMARY_TASK = "interview.summary"
EVALUATION_TASK = "interview.evaluation"
REPAIR_TASK = "interview.repair"

TASKS = (OPENING_TASK, TURN_TASK, SUMMARY_TASK, EVALUATION_TASK, REPAIR_TASK)


class LlmRoute(BaseModel):  # LLM endpoint configuration
    name: str
    base_url: str
    endpoint: str
    model: str
    fallback_models: List[str] = Field(default_factory=list)
    timeout_s: float = Field(default=45.0, ge=0.1)
    max_retries: int = Field(default=5, ge=1)
    initial_delay_s: float = Field(default=2.0, ge=0.0)
    max_delay_s: float = Field(default=10.0, ge=0.0)
    api_key_env: Optional[str] = None
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    temperature: float = 0.7
    max_tokens: int = 2048

    def chain(self, primary: Optional[str] = None) -> List[str]:  # Ordered fallback chain seeded by primary
        known: List[str] = []
        for candidate in [self.model, *self.fallback_models]:
            if candidate not in known:
                known.append(candidate)
        seed = primary or self.model
        if seed in known:
            return known[known.index(seed):]
        return [seed, *known]


class AppConfig(BaseModel):  # Application configuration root
    routes: Dict[str, LlmRoute]
    registry: Dict[str, str]


def load_config(path: Path) -> AppConfig:  # Load configuration from disk
    data = path.read_text(encoding="utf-8")
    return AppConfig.model_validate_json(data)


def default_config(cfg: Settings) -> AppConfig:  # Single-route configuration derived from environment
    route = LlmRoute(
        name="default",
        base_url=cfg.LLM_BASE_URL,
        endpoint=cfg.LLM_ENDPOINT,
        model=cfg.LLM_MODEL,
        fallback_models=cfg.fallback_models(),
        timeout_s=cfg.LLM_TIMEOUT_S,
        max_retries=cfg.LLM_MAX_RETRIES,
        initial_delay_s=cfg.LLM_INITIAL_DELAY_S,
        max_delay_s=cfg.LLM_MAX_DELAY_S,
        api_key_env=cfg.LLM_API_KEY_ENV,
    )
    return AppConfig(routes={"default": route}, registry={task: "default" for task in TASKS})


def resolve_registry(cfg: AppConfig) -> Dict[str, LlmRoute]:  # Map every orchestrator task to its route
    resolved: Dict[str, LlmRoute] = {}
    for task in TASKS:
        if task not in cfg.registry:
            raise KeyError(f"Registry entry missing for '{task}'")
        route_id = cfg.registry[task]
        if route_id not in cfg.routes:
            raise KeyError(f"Route '{route_id}' missing for '{task}'")
        resolved[task] = cfg.routes[route_id]
    return resolved


def load_routes(cfg: Settings) -> Dict[str, LlmRoute]:  # Load route file when configured, env defaults otherwise
    if cfg.LLM_CONFIG_PATH:
        return resolve_registry(load_config(Path(cfg.LLM_CONFIG_PATH)))
    return resolve_registry(default_config(cfg))
