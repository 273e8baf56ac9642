"""Structured event logging for the interview service."""
from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
import time
import uuid
from typing import Any

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENABLE_FILE_LOGS = os.getenv("ENABLE_FILE_LOGS", "0") in ("1", "true", "True")
LOG_FILE = os.getenv("LOG_FILE", "logs/interview.log")
LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", "5242880"))
LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "5"))

HUMAN_FORMATTER = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s :: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
HUMAN_FIELDS = ("span", "ms", "question_count", "is_complete", "outcome", "score", "cancelled", "error")

_logger = logging.getLogger("interview.events")
_logger.setLevel(LOG_LEVEL)
_logger.propagate = False


def _is_json(record: logging.LogRecord) -> bool:
    return getattr(record, "is_json", False) is True


def _attach(handler: logging.Handler, formatter: logging.Formatter, json_lines: bool) -> None:
    handler.setLevel(LOG_LEVEL)
    handler.setFormatter(formatter)
    handler.addFilter(_is_json if json_lines else (lambda record: not _is_json(record)))
    _logger.addHandler(handler)


def _rotating(path: str) -> logging.handlers.RotatingFileHandler:
    return logging.handlers.RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT)


def _ensure_handlers() -> None:
    if _logger.handlers:
        return

    _attach(logging.StreamHandler(stream=sys.stdout), HUMAN_FORMATTER, json_lines=False)
    if not ENABLE_FILE_LOGS:
        return

    log_dir = os.path.dirname(LOG_FILE)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    stem = LOG_FILE[:-4] if LOG_FILE.endswith(".log") else LOG_FILE
    _attach(_rotating(LOG_FILE), logging.Formatter("%(message)s"), json_lines=True)
    _attach(_rotating(f"{stem}-human.log"), HUMAN_FORMATTER, json_lines=False)


def _format_human(evt: dict[str, Any]) -> str:
    parts = [f"identity={evt.get('identity')}", f"kind={evt.get('kind')}"]
    parts.extend(f"{key}={evt[key]}" for key in HUMAN_FIELDS if key in evt)
    return " ".join(parts)


def _emit(message: str, is_json: bool) -> None:
    record = _logger.makeRecord(_logger.name, logging.INFO, "", 0, message, (), None)
    record.is_json = is_json  # type: ignore[attr-defined]
    _logger.handle(record)


def log_event(kind: str, identity: str, **fields: Any) -> None:
    """Emit one human line, plus a JSON line to the event file when file logs are on."""

    _ensure_handlers()

    payload: dict[str, Any] = {
        "ts": time.time(),
        "trace": str(uuid.uuid4()),
        "kind": kind,
        "identity": identity,
    }
    payload.update(fields)

    _emit(_format_human(payload), is_json=False)
    if ENABLE_FILE_LOGS:
        _emit(json.dumps(payload, ensure_ascii=False, default=str), is_json=True)


__all__ = ["log_event"]
