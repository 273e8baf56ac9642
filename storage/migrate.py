"""SQLite schema migrations."""
from __future__ import annotations

import os
import sqlite3
from typing import Iterable

SCHEMA: Iterable[str] = [
    """
CREATE TABLE IF NOT EXISTS session_entries (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  version INTEGER NOT NULL DEFAULT 0,
  expires_at REAL NOT NULL
);
""",
    """
CREATE INDEX IF NOT EXISTS idx_session_entries_expiry ON session_entries (expires_at);
""",
    """
CREATE TABLE IF NOT EXISTS interview_results (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  identity TEXT NOT NULL,
  job_role TEXT NOT NULL,
  level TEXT NOT NULL,
  question_count INTEGER NOT NULL,
  questions_json TEXT NOT NULL,
  answers_json TEXT NOT NULL,
  feedback_json TEXT NOT NULL,
  summary_json TEXT NOT NULL,
  score REAL NOT NULL,
  started_at TEXT NOT NULL,
  ended_at TEXT NOT NULL
);
""",
]


def migrate(db_path: str = "data/interview.db") -> None:
    """Apply schema migrations to the SQLite database."""

    directory = os.path.dirname(db_path) or "."
    os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.cursor()
        for stmt in SCHEMA:
            cur.execute(stmt)
        conn.commit()
    finally:
        conn.close()


if __name__ == "__main__":
    migrate()
