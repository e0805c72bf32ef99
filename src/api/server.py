"""
FastAPI entry point for the indexing tracker API.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings
from src.api.routes_indexing import router as indexing_router
from src.indexing.backend_client import IndexingBackendClient
from src.indexing.events import EventBus, RedisEventSink
from src.indexing.state_store import get_state_store, reconcile_stale_states
from src.indexing.tracker import IndexingTracker
from src.log import cleanup_logs, get_logger
from src.observability import setup_observability

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: tables -> stale row reconciliation -> tracker. Shutdown: stop jobs, close client."""

    cleanup_logs()

    # 0. make sure indexing_states exists (alembic may already have created it)
    if settings.store.backend == "sql":
        from src.db.engine import init_db
        try:
            init_db()
        except Exception as e:
            logger.warning("[startup] init_db failed (may be OK if alembic already ran): %s", e)

    store = get_state_store()

    # 1. rows left as indexing by a previous process will never finish
    try:
        reconciled = await asyncio.to_thread(reconcile_stale_states, store)
        if reconciled:
            logger.info("[startup] reconciled %d stale indexing state(s)", reconciled)
    except Exception as e:
        logger.warning("[startup] stale state reconciliation failed: %s", e)

    # 2. tracker
    bus = EventBus()
    if settings.events.redis_url:
        bus.add_sink(RedisEventSink(settings.events.redis_url, maxlen=settings.events.stream_maxlen))
        logger.info("[startup] mirroring indexing events to Redis streams")
    client = IndexingBackendClient(settings.backend)
    app.state.store = store
    app.state.tracker = IndexingTracker(client, store, bus=bus, config=settings.tracker)
    logger.info("[startup] indexing tracker ready (backend=%s, store=%s)", client.base_url, settings.store.backend)

    yield

    # Shutdown: running jobs keep their indexing rows; the next startup reconciles them
    await app.state.tracker.shutdown()
    await client.close()


app = FastAPI(
    title="Indexing Tracker API",
    description="Start project indexing jobs and follow their progress",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(indexing_router)

# Observability: middleware + /metrics + /health/detailed
setup_observability(app)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
