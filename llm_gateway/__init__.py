from __future__ import annotations  # Re-export llm_gateway public API

from .llm_gateway import (
    FatalUpstreamError,
    GenerateOptions,
    HttpClient,
    HttpResponse,
    LlmGatewayError,
    ModelUnavailableError,
    RateLimitedError,
    ResilientModelClient,
    TextGenerator,
    TransientUpstreamError,
    classify_message,
    classify_status,
)

__all__ = [
    "FatalUpstreamError",
    "GenerateOptions",
    "HttpClient",
    "HttpResponse",
    "LlmGatewayError",
    "ModelUnavailableError",
    "RateLimitedError",
    "ResilientModelClient",
    "TextGenerator",
    "TransientUpstreamError",
    "classify_message",
    "classify_status",
]
