"""SQLite helpers for the persistence layer."""
from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from config.settings import settings
from interview_session.errors import StoreUnavailable

logger = logging.getLogger(__name__)


@contextmanager
def get_conn(path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Yield a SQLite connection, ensuring the data directory exists.

    Any SQLite or filesystem failure is reported as ``StoreUnavailable`` so
    callers fail closed instead of losing state.
    """

    db_path = path or settings.DB_PATH
    try:
        directory = os.path.dirname(db_path) or "."
        os.makedirs(directory, exist_ok=True)
        conn = sqlite3.connect(db_path, timeout=5.0)
    except (OSError, sqlite3.Error) as exc:
        logger.error("SQLite open failed path=%s: %s", db_path, exc)
        raise StoreUnavailable() from exc
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        logger.error("SQLite operation failed path=%s: %s", db_path, exc)
        raise StoreUnavailable() from exc
    finally:
        conn.close()
