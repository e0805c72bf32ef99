#!/usr/bin/env python3
"""
Start one indexing job and follow it in the foreground, printing each event.

Usage:
  python scripts/03_track_project.py "Acme Tower - Phase 2"
  python scripts/03_track_project.py "Acme Tower" --backend-url http://localhost:7072 --interval 1.0

Exit code is 0 when the job completes, 1 on error.
"""

import argparse
import asyncio
import dataclasses
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config.settings import settings
from src.indexing.backend_client import IndexingBackendClient
from src.indexing.events import is_terminal_event
from src.indexing.state import IndexingStatus
from src.indexing.state_store import get_state_store
from src.indexing.tracker import IndexingTracker
from src.log import get_logger

logger = get_logger(__name__)


async def _track(args) -> int:
    backend_cfg = settings.backend
    if args.backend_url:
        backend_cfg = dataclasses.replace(backend_cfg, base_url=args.backend_url)
    tracker_cfg = settings.tracker
    if args.interval:
        tracker_cfg = dataclasses.replace(tracker_cfg, poll_interval_seconds=args.interval)

    if settings.store.backend == "sql":
        from src.db.engine import init_db
        init_db()

    client = IndexingBackendClient(backend_cfg)
    tracker = IndexingTracker(client, get_state_store(), config=tracker_cfg)
    try:
        async with tracker.bus.subscribe() as sub:
            state = await tracker.start(args.project_name, project_id=args.project_id)
            logger.info("[track] tracking %s as project_id=%s", args.project_name, state.project_id)
            async for event in sub:
                print(json.dumps(event.to_dict(), ensure_ascii=False), flush=True)
                if is_terminal_event(event):
                    break
        final = await tracker.wait(state.project_id)
    finally:
        await tracker.shutdown()
        await client.close()

    if final is None:
        logger.error("[track] no stored state for project_id=%s", state.project_id)
        return 1
    return 0 if final.status == IndexingStatus.completed else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Start and follow one indexing job")
    parser.add_argument("project_name", help="Project name sent to the backend")
    parser.add_argument("--project-id", default=None, help="Tracker key (default: normalized name)")
    parser.add_argument("--backend-url", default=None, help="Override backend.base_url")
    parser.add_argument("--interval", type=float, default=None, help="Poll interval in seconds")
    args = parser.parse_args()
    try:
        code = asyncio.run(_track(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
