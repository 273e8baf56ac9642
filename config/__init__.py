"""Configuration package for the interview service."""
from .llm import (
    EVALUATION_TASK,
    OPENING_TASK,
    REPAIR_TASK,
    SUMMARY_TASK,
    TASKS,
    TURN_TASK,
    AppConfig,
    LlmRoute,
    default_config,
    load_config,
    load_routes,
    resolve_registry,
)
from .settings import Settings, settings

__all__ = [
    "AppConfig",
    "LlmRoute",
    "default_config",
    "load_config",
    "load_routes",
    "resolve_registry",
    "EVALUATION_TASK",
    "OPENING_TASK",
    "REPAIR_TASK",
    "SUMMARY_TASK",
    "TASKS",
    "TURN_TASK",
    "Settings",
    "settings",
]
