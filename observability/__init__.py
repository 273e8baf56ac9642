"""Event logging and timing spans for the interview service."""
from .logger import log_event
from .tracing import span

__all__ = ["log_event", "span"]
