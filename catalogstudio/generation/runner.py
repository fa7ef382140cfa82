"""CLI entrypoint to run one generation worker pass."""

from __future__ import annotations

import argparse
import json

from catalogstudio.generation.worker import process_queued_jobs
from catalogstudio.storage.db import get_session_factory, load_models


def run_worker_once(*, limit: int | None = None, max_workers: int | None = None) -> list[str]:
    load_models()
    return process_queued_jobs(get_session_factory(), limit=limit, max_workers=max_workers)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one CatalogStudio generation worker pass.")
    parser.add_argument("--limit", type=int, default=None, help="Max queued jobs to claim.")
    parser.add_argument("--workers", type=int, default=None, help="Thread pool size.")
    args = parser.parse_args()

    job_ids = run_worker_once(limit=args.limit, max_workers=args.workers)
    print(json.dumps({"job_ids": job_ids}, ensure_ascii=True, separators=(",", ":"), sort_keys=True))


if __name__ == "__main__":
    main()
