"""Lightweight CLI helpers for inspecting finished interviews."""
from __future__ import annotations

import argparse
from typing import Optional, Sequence

from config.settings import settings
from storage.results import InterviewResultStore


def tail_results(limit: int = 20, path: Optional[str] = None) -> None:
    store = InterviewResultStore(path or settings.DB_PATH)
    for row in store.recent(limit):
        print(
            f"[{row.ended_at}] #{row.id} {row.identity} {row.job_role}/{row.level} "
            f"questions={row.question_count} score={row.score}"
        )


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--tail-results", type=int, help="Show the latest finished interviews")
    parser.add_argument("--db", help="Database path (defaults to DB_PATH)")
    args = parser.parse_args(argv)

    if args.tail_results:
        tail_results(args.tail_results, args.db)


if __name__ == "__main__":
    main()
