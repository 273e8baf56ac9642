"""Application settings and configuration management."""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or defaults."""

    DB_PATH: str = Field(default="data/interview.db")
    SESSION_BACKEND: Literal["memory", "sqlite"] = "memory"

    SESSION_TTL_SECONDS: int = Field(default=7200, ge=1)
    FEEDBACK_TTL_SECONDS: int = Field(default=1800, ge=1)
    FEEDBACK_CACHE_SIZE: int = Field(default=10, ge=1)
    RESUME_TTL_SECONDS: int = Field(default=86400, ge=1)
    EVAL_CACHE_TTL_SECONDS: int = Field(default=600, ge=1)

    MIN_ANSWER_CHARS: int = 10
    MAX_ANSWER_CHARS: int = 5000

    MIN_QUESTIONS: int = 12
    MAX_QUESTIONS: int = 25

    SCORE_CALIBRATION: float = 0.85
    NEUTRAL_SCORE: float = 5.0

    LLM_CONFIG_PATH: Optional[str] = None
    LLM_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    LLM_ENDPOINT: str = "/chat/completions"
    LLM_MODEL: str = "gemini-3.0-pro-exp"
    LLM_FALLBACK_MODELS: str = "gemini-2.0-flash-lite,gemini-2.0-flash,gemini-1.5-flash"
    LLM_API_KEY_ENV: Optional[str] = "GEMINI_API_KEY"
    LLM_TIMEOUT_S: float = 45.0
    LLM_MAX_RETRIES: int = 5
    LLM_INITIAL_DELAY_S: float = 2.0
    LLM_MAX_DELAY_S: float = 10.0

    RETRY_AFTER_SECONDS: int = 60

    model_config = SettingsConfigDict(env_file=".env", validate_assignment=True, extra="ignore")

    def fallback_models(self) -> List[str]:
        return [item.strip() for item in self.LLM_FALLBACK_MODELS.split(",") if item.strip()]


settings = Settings()
