from __future__ import annotations  # Resilient LLM request gateway module

import logging
import os
import random
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple

import httpx
from pydantic import BaseModel, Field

from config import LlmRoute


logger = logging.getLogger(__name__)  # Module logger setup

JITTER_S = 1.0
RATE_LIMIT_EXPONENT_CAP = 6
TRANSIENT_EXPONENT_CAP = 5

_RATE_LIMIT_MARKERS = ("429", "too many requests", "resource exhausted", "rate limit", "quota")
_UNAVAILABLE_MARKERS = ("404", "not found", "is not supported", "does not exist")
_TRANSIENT_MARKERS = ("500", "502", "503", "504", "overloaded", "timeout", "timed out", "unavailable")


class HttpClient(Protocol):  # Minimal HTTP client protocol
    def post(self, url: str, *, json: Dict[str, Any], headers: Dict[str, str], timeout: float) -> "HttpResponse": ...


class HttpResponse(Protocol):  # Minimal HTTP response protocol
    @property
    def status_code(self) -> int: ...

    def json(self) -> Any: ...

    @property
    def text(self) -> str: ...


class TextGenerator(Protocol):  # Anything that turns a prompt into text
    def generate(self, prompt: str, options: Optional["GenerateOptions"] = None) -> str: ...


class LlmGatewayError(RuntimeError):  # Base gateway error
    kind = "fatal"

    def __init__(self, message: str, *, attempts: int = 0, model: Optional[str] = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.model = model


class RateLimitedError(LlmGatewayError):  # Explicit quota / overload signal
    kind = "rate_limited"


class ModelUnavailableError(LlmGatewayError):  # Model identifier not served
    kind = "model_unavailable"


class TransientUpstreamError(LlmGatewayError):  # 5xx, timeout or overloaded
    kind = "transient"


class FatalUpstreamError(LlmGatewayError):  # Anything not worth retrying
    kind = "fatal"


_KIND_TO_ERROR = {
    "rate_limited": RateLimitedError,
    "model_unavailable": ModelUnavailableError,
    "transient": TransientUpstreamError,
    "fatal": FatalUpstreamError,
}


class GenerateOptions(BaseModel):  # Per-call overrides of route defaults
    model: Optional[str] = None
    max_retries: Optional[int] = Field(default=None, ge=1)
    initial_delay_s: Optional[float] = Field(default=None, ge=0.0)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = Field(default=None, ge=1)


def classify_status(status_code: int, body: str = "") -> str:  # Map an HTTP status to a failure kind
    lowered = (body or "").lower()
    if status_code == 429 or any(marker in lowered for marker in _RATE_LIMIT_MARKERS[1:]):
        return "rate_limited"
    if status_code == 404:
        return "model_unavailable"
    if status_code == 400 and "model" in lowered and any(marker in lowered for marker in _UNAVAILABLE_MARKERS[1:]):
        return "model_unavailable"
    if status_code >= 500 or "overloaded" in lowered:
        return "transient"
    return "fatal"


def classify_message(message: str) -> str:  # Map a free-form exception message to a failure kind
    lowered = (message or "").lower()
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return "rate_limited"
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return "model_unavailable"
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return "transient"
    return "fatal"


class ResilientModelClient:
    """Generate text from a prompt with timeout, retry, backoff and model fallback.

    The fallback chain lives only inside a single ``generate`` call; the client
    itself keeps no state between calls.
    """

    def __init__(
        self,
        route: LlmRoute,
        *,
        client: Optional[HttpClient] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._route = route
        self._client = client
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def route(self) -> LlmRoute:
        return self._route

    def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        opts = options or GenerateOptions()
        max_retries = opts.max_retries or self._route.max_retries
        initial_delay = self._route.initial_delay_s if opts.initial_delay_s is None else opts.initial_delay_s
        chain = self._route.chain(opts.model)
        index = 0
        attempt = 1
        used_fallback = False
        unavailable: Set[str] = set()
        preview = _preview(prompt)
        logger.info(
            "LLM request start route=%s chain=%s max_retries=%d preview=%s",
            self._route.name,
            ",".join(chain),
            max_retries,
            preview,
        )
        while True:
            model = chain[index]
            logger.info(
                "LLM request send route=%s model=%s attempt=%d/%d",
                self._route.name,
                model,
                attempt,
                max_retries,
            )
            try:
                text = self._attempt(model, prompt, opts)
            except LlmGatewayError as exc:
                failure = exc
            else:
                logger.info("LLM request done route=%s model=%s attempt=%d", self._route.name, model, attempt)
                return text

            logger.warning("LLM attempt failed kind=%s model=%s attempt=%d: %s", failure.kind, model, attempt, failure)

            if failure.kind == "rate_limited":
                if index == 0 and not used_fallback and index + 1 < len(chain):
                    index += 1
                    used_fallback = True
                    logger.info("Primary model %s rate limited, switching to %s", model, chain[index])
                    continue
                if attempt >= max_retries:
                    raise _annotated(RateLimitedError, "Rate limit exceeded", attempt, model) from failure
                delay = self._backoff(initial_delay, attempt, RATE_LIMIT_EXPONENT_CAP, floor=initial_delay)
                logger.info("Waiting %.2fs before retry %d", delay, attempt + 1)
                self._sleep(delay)
                attempt += 1
                continue

            if failure.kind == "model_unavailable":
                unavailable.add(model)
                following = _next_available(chain, index, unavailable)
                if following is None:
                    raise _annotated(
                        ModelUnavailableError,
                        f'Model "{model}" is not available and no fallback remains',
                        attempt,
                        model,
                    ) from failure
                logger.info("Model %s unavailable, falling back to %s", model, chain[following])
                index = following
                used_fallback = True
                continue

            if failure.kind == "transient":
                if attempt >= max_retries:
                    raise _annotated(TransientUpstreamError, "Upstream model kept failing", attempt, model) from failure
                delay = self._backoff(initial_delay, attempt, TRANSIENT_EXPONENT_CAP)
                logger.info("Waiting %.2fs before retry %d", delay, attempt + 1)
                self._sleep(delay)
                attempt += 1
                continue

            raise _annotated(FatalUpstreamError, str(failure), attempt, model) from failure

    def _backoff(self, initial_delay: float, attempt: int, cap: int, floor: float = 0.0) -> float:
        delay = initial_delay * (2 ** min(attempt - 1, cap))
        jittered = delay + self._rng.uniform(0.0, JITTER_S)
        return max(floor, min(jittered, self._route.max_delay_s))

    def _attempt(self, model: str, prompt: str, opts: GenerateOptions) -> str:  # One bounded outbound call
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._route.temperature if opts.temperature is None else opts.temperature,
            "max_tokens": opts.max_tokens or self._route.max_tokens,
        }
        headers = {"Content-Type": "application/json"}
        if self._route.api_key_env:
            api_key = os.getenv(self._route.api_key_env)
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
        headers.update(self._route.extra_headers)
        url = f"{self._route.base_url}{self._route.endpoint}"
        try:
            response, close_cb = _post(url, payload, headers, self._route.timeout_s, self._client)
        except httpx.TimeoutException as exc:
            raise TransientUpstreamError(f"LLM timeout after {self._route.timeout_s}s", model=model) from exc
        except httpx.TransportError as exc:
            raise TransientUpstreamError(f"LLM transport failed: {exc}", model=model) from exc
        except LlmGatewayError:
            raise
        except Exception as exc:  # noqa: BLE001
            kind = classify_message(str(exc))
            raise _KIND_TO_ERROR[kind](str(exc) or type(exc).__name__, model=model) from exc
        try:
            if response.status_code >= 400:
                body = _safe_text(response)
                kind = classify_status(response.status_code, body)
                raise _KIND_TO_ERROR[kind](f"LLM returned status {response.status_code}", model=model)
            try:
                data = response.json()
            except ValueError as exc:
                raise TransientUpstreamError("LLM payload was not JSON", model=model) from exc
            return _extract_content(data, model).strip()
        finally:
            _close_safely(close_cb)


def _annotated(error_type: type, message: str, attempts: int, model: str) -> LlmGatewayError:
    return error_type(f"{message} (attempts={attempts}, model={model})", attempts=attempts, model=model)


def _next_available(chain: List[str], index: int, unavailable: Set[str]) -> Optional[int]:
    for position in range(index + 1, len(chain)):
        if chain[position] not in unavailable:
            return position
    return None


def _post(url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float, client: Optional[HttpClient]) -> Tuple[HttpResponse, Optional[Callable[[], None]]]:  # Dispatch HTTP request
    if client is not None:
        return client.post(url, json=payload, headers=headers, timeout=timeout), None
    http_client = httpx.Client(timeout=timeout)
    try:
        response = http_client.post(url, json=payload, headers=headers)
    except Exception:
        http_client.close()
        raise
    return response, http_client.close


def _close_safely(close_cb: Optional[Callable[[], None]]) -> None:  # Close HTTP client callback when provided
    if close_cb is not None:
        close_cb()


def _safe_text(response: HttpResponse) -> str:
    try:
        return response.text or ""
    except Exception:  # noqa: BLE001
        return ""


def _preview(prompt: str) -> str:  # First non-empty prompt line for logging
    for line in (prompt or "").splitlines():
        text = line.strip()
        if text:
            return text if len(text) <= 120 else text[:117] + "..."
    return ""


def _extract_content(data: Any, model: str) -> str:  # Extract message content from LLM response
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str):
                return content
        if isinstance(data.get("content"), str):
            return data["content"]
    raise TransientUpstreamError("LLM response missing content", model=model)
