"""Key/value session storage with TTL for live interviews.

Key schema::

    session:<identity>   SessionRecord (JSON)
    feedback:<identity>  bounded list of per-answer feedback strings
    resume:<identity>    staged resume text
    eval:<identity>:<digest>  cached single-answer evaluation

Records carry a ``version`` that ``merge`` uses for compare-and-swap. TTLs are
only ever extended by ``merge``/``touch``; an expired key reads as absent.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from pydantic import ValidationError

from interview_session.errors import SessionConflict, SessionNotFound, StoreUnavailable
from interview_session.models import SessionRecord

from .migrate import SCHEMA
from .sqlite import get_conn

logger = logging.getLogger(__name__)


def session_key(identity: str) -> str:
    return f"session:{identity}"


def feedback_key(identity: str) -> str:
    return f"feedback:{identity}"


def resume_key(identity: str) -> str:
    return f"resume:{identity}"


def eval_key(identity: str, digest: str) -> str:
    return f"eval:{identity}:{digest}"


class SessionStore(Protocol):
    def create(self, key: str, record: SessionRecord, ttl: int) -> SessionRecord: ...

    def get(self, key: str) -> Optional[SessionRecord]: ...

    def merge(
        self,
        key: str,
        fields: Mapping[str, Any],
        ttl: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> SessionRecord: ...

    def delete(self, key: str) -> None: ...

    def touch(self, key: str, ttl: int) -> bool: ...

    def push_feedback(self, key: str, text: str, *, limit: int, ttl: int) -> None: ...

    def list_feedback(self, key: str) -> List[str]: ...

    def set_text(self, key: str, value: str, ttl: int) -> None: ...

    def get_text(self, key: str) -> Optional[str]: ...


def _merged(current: SessionRecord, fields: Mapping[str, Any]) -> SessionRecord:
    unknown = set(fields) - set(SessionRecord.model_fields)
    if unknown:
        raise ValueError(f"Unknown session fields: {sorted(unknown)}")
    data = current.model_dump()
    data.update(fields)
    data["version"] = current.version + 1
    return SessionRecord.model_validate(data)


def _decode(raw: str) -> SessionRecord:
    try:
        return SessionRecord.model_validate_json(raw)
    except ValidationError as exc:
        logger.error("Corrupt session record: %s", exc)
        raise StoreUnavailable() from exc


class MemorySessionStore:
    """Process-local store; values are kept serialised so callers never share objects."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[Any, float]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    def create(self, key: str, record: SessionRecord, ttl: int) -> SessionRecord:
        with self._lock:
            self._entries[key] = (record.model_dump_json(), self._clock() + ttl)
        return record

    def get(self, key: str) -> Optional[SessionRecord]:
        with self._lock:
            entry = self._live(key)
        if entry is None:
            return None
        return _decode(entry[0])

    def merge(
        self,
        key: str,
        fields: Mapping[str, Any],
        ttl: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> SessionRecord:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                raise SessionNotFound()
            current = _decode(entry[0])
            if expected_version is not None and current.version != expected_version:
                raise SessionConflict()
            updated = _merged(current, fields)
            expires_at = entry[1]
            if ttl is not None:
                expires_at = max(expires_at, self._clock() + ttl)
            self._entries[key] = (updated.model_dump_json(), expires_at)
        return updated

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def touch(self, key: str, ttl: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._entries[key] = (entry[0], max(entry[1], self._clock() + ttl))
        return True

    def push_feedback(self, key: str, text: str, *, limit: int, ttl: int) -> None:
        with self._lock:
            entry = self._live(key)
            items: List[str] = list(entry[0]) if entry else []
            items.append(text)
            self._entries[key] = (items[-limit:], self._clock() + ttl)

    def list_feedback(self, key: str) -> List[str]:
        with self._lock:
            entry = self._live(key)
        return list(entry[0]) if entry else []

    def set_text(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def get_text(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
        return entry[0] if entry else None


class SqliteSessionStore:
    """SQLite-backed store sharing one ``session_entries`` table across key kinds."""

    def __init__(self, path: str, clock: Callable[[], float] = time.time) -> None:
        self._path = path
        self._clock = clock
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with get_conn(self._path) as conn:
            for stmt in SCHEMA:
                conn.execute(stmt)

    def _row(self, conn, key: str):
        row = conn.execute(
            "SELECT value, version, expires_at FROM session_entries WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        if row["expires_at"] <= self._clock():
            conn.execute("DELETE FROM session_entries WHERE key = ?", (key,))
            return None
        return row

    def _put(self, conn, key: str, value: str, version: int, expires_at: float) -> None:
        conn.execute(
            """INSERT OR REPLACE INTO session_entries (key, value, version, expires_at)
               VALUES (?, ?, ?, ?)""",
            (key, value, version, expires_at),
        )

    def create(self, key: str, record: SessionRecord, ttl: int) -> SessionRecord:
        with get_conn(self._path) as conn:
            self._put(conn, key, record.model_dump_json(), record.version, self._clock() + ttl)
        return record

    def get(self, key: str) -> Optional[SessionRecord]:
        with get_conn(self._path) as conn:
            row = self._row(conn, key)
        if row is None:
            return None
        return _decode(row["value"])

    def merge(
        self,
        key: str,
        fields: Mapping[str, Any],
        ttl: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> SessionRecord:
        with get_conn(self._path) as conn:
            row = self._row(conn, key)
            if row is None:
                raise SessionNotFound()
            current = _decode(row["value"])
            if expected_version is not None and current.version != expected_version:
                raise SessionConflict()
            updated = _merged(current, fields)
            expires_at = row["expires_at"]
            if ttl is not None:
                expires_at = max(expires_at, self._clock() + ttl)
            cur = conn.execute(
                """UPDATE session_entries SET value = ?, version = ?, expires_at = ?
                   WHERE key = ? AND version = ?""",
                (updated.model_dump_json(), updated.version, expires_at, key, current.version),
            )
            if cur.rowcount != 1:
                raise SessionConflict()
        return updated

    def delete(self, key: str) -> None:
        with get_conn(self._path) as conn:
            conn.execute("DELETE FROM session_entries WHERE key = ?", (key,))

    def touch(self, key: str, ttl: int) -> bool:
        with get_conn(self._path) as conn:
            row = self._row(conn, key)
            if row is None:
                return False
            conn.execute(
                "UPDATE session_entries SET expires_at = ? WHERE key = ?",
                (max(row["expires_at"], self._clock() + ttl), key),
            )
        return True

    def push_feedback(self, key: str, text: str, *, limit: int, ttl: int) -> None:
        with get_conn(self._path) as conn:
            row = self._row(conn, key)
            items: List[str] = json.loads(row["value"]) if row else []
            items.append(text)
            self._put(conn, key, json.dumps(items[-limit:], ensure_ascii=False), 0, self._clock() + ttl)

    def list_feedback(self, key: str) -> List[str]:
        with get_conn(self._path) as conn:
            row = self._row(conn, key)
        return list(json.loads(row["value"])) if row else []

    def set_text(self, key: str, value: str, ttl: int) -> None:
        with get_conn(self._path) as conn:
            self._put(conn, key, value, 0, self._clock() + ttl)

    def get_text(self, key: str) -> Optional[str]:
        with get_conn(self._path) as conn:
            row = self._row(conn, key)
        return row["value"] if row else None


__all__ = [
    "SessionStore",
    "MemorySessionStore",
    "SqliteSessionStore",
    "session_key",
    "feedback_key",
    "resume_key",
    "eval_key",
]
