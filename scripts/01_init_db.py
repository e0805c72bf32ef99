#!/usr/bin/env python
"""Step 1: create the indexing_states table and mark stale indexing rows as timed out."""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config.settings import settings
from src.log import cleanup_logs, get_logger

logger = get_logger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Initialize the indexing tracker store")
    parser.add_argument(
        "--no-reconcile",
        action="store_true",
        help="Only create tables; leave stale indexing rows untouched",
    )
    args = parser.parse_args()

    from src.indexing.errors import StateStoreError
    from src.indexing.state_store import get_state_store, reconcile_stale_states

    logger.info("=" * 60)
    logger.info("Indexing tracker - store initialization")
    logger.info("=" * 60)
    settings.print_info()
    cleanup_logs()

    if settings.store.backend == "sql":
        from src.db.engine import init_db
        init_db()
        logger.info("[1/2] tables ready (%s)", settings.store.database_url)
    else:
        logger.info("[1/2] redis store needs no schema (%s)", settings.store.redis_url)

    store = get_state_store()
    try:
        store.ping()
    except StateStoreError as e:
        logger.error("store unreachable: %s", e)
        return 1

    if args.no_reconcile:
        logger.info("[2/2] reconciliation skipped")
        return 0
    count = reconcile_stale_states(store)
    logger.info("[2/2] %d stale indexing row(s) marked as timed out", count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
