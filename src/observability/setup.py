"""
One-call observability wiring: middleware + /metrics + /health/detailed + app info.
"""

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from src.observability.middleware import ObservabilityMiddleware
from src.observability.metrics import metrics
from src.observability.tracing import SERVICE_NAME, SERVICE_VERSION
from src.log import get_logger

logger = get_logger(__name__)


def setup_observability(app: FastAPI) -> None:
    """
    Attach observability to a FastAPI app.

    Call after routers are registered and before startup.
    """
    app.add_middleware(ObservabilityMiddleware)

    @app.get("/metrics", include_in_schema=False)
    def prometheus_metrics():
        return PlainTextResponse(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.get("/health/detailed", tags=["observability"])
    def health_detailed(request: Request):
        """Per-component reachability."""
        from src.indexing.errors import StateStoreError

        checks = {}

        store = getattr(request.app.state, "store", None)
        if store is None:
            checks["state_store"] = "not_configured"
        else:
            try:
                store.ping()
                checks["state_store"] = "ok"
            except StateStoreError as e:
                checks["state_store"] = f"error: {e}"

        tracker = getattr(request.app.state, "tracker", None)
        checks["tracker"] = "ok" if tracker is not None else "not_configured"

        overall = "ok" if all(v == "ok" for v in checks.values()) else "degraded"
        active = tracker.active_project_ids if tracker is not None else []
        return {"status": overall, "components": checks, "active_jobs": len(active)}

    metrics.app_info.info({"version": SERVICE_VERSION, "service": SERVICE_NAME})

    logger.info("[observability] middleware + /metrics + /health/detailed registered")
