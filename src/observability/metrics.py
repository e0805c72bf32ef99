"""
Prometheus metrics.

All custom metrics live here; modules use them via `from src.observability import metrics`.
"""

from prometheus_client import Counter, Histogram, Gauge, Info


class _Metrics:
    """Holds every Prometheus metric the tracker exports."""

    def __init__(self):
        # ── HTTP ──
        self.http_requests_total = Counter(
            "tracker_http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
        )
        self.http_request_duration_seconds = Histogram(
            "tracker_http_request_duration_seconds",
            "HTTP request latency (seconds)",
            ["method", "endpoint"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        # ── Indexing jobs ──
        self.indexing_jobs_started_total = Counter(
            "tracker_indexing_jobs_started_total",
            "Indexing jobs started",
        )
        self.indexing_jobs_finished_total = Counter(
            "tracker_indexing_jobs_finished_total",
            "Indexing jobs that reached a terminal state",
            ["outcome"],  # completed / error
        )
        self.indexing_active_jobs = Gauge(
            "tracker_indexing_active_jobs",
            "Indexing jobs currently being tracked",
        )
        self.indexing_job_duration_seconds = Histogram(
            "tracker_indexing_job_duration_seconds",
            "Wall time from start to terminal state (seconds)",
            buckets=(1, 5, 10, 30, 60, 120, 300, 600, 900),
        )

        # ── Status polling ──
        self.indexing_polls_total = Counter(
            "tracker_indexing_polls_total",
            "Status polls by result",
            ["result"],  # indexing / completed / error / not_found / failed
        )

        # ── System ──
        self.active_connections = Gauge(
            "tracker_active_connections",
            "Open SSE progress streams",
        )
        self.app_info = Info(
            "tracker_app",
            "Application metadata",
        )


# singleton
metrics = _Metrics()
