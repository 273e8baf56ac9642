"""Span helper recording how long an upstream call took."""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from .logger import log_event


@contextmanager
def span(name: str, identity: str) -> Iterator[None]:
    started = time.perf_counter()
    failed = False
    try:
        yield
    except Exception:
        failed = True
        raise
    finally:
        log_event("span", identity, span=name, ms=int((time.perf_counter() - started) * 1000), error=failed)


__all__ = ["span"]
