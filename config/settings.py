"""
Unified settings module
- Config file: config/tracker_config.json (tunable tracker parameters)
- Local override: config/tracker_config.local.json (private, not committed)
- Environment variables override sensitive items (API token, URLs)
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass
from typing import Any, Dict
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent / "tracker_config.json"
_LOCAL_CONFIG_PATH = Path(__file__).parent / "tracker_config.local.json"


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


_RAW_CONFIG: Dict[str, Any] = _load_json(_CONFIG_PATH)
if _LOCAL_CONFIG_PATH.exists():
    _RAW_CONFIG = _deep_merge(_RAW_CONFIG, _load_json(_LOCAL_CONFIG_PATH))


def _section(name: str) -> Dict[str, Any]:
    return _RAW_CONFIG.get(name) or {}


@dataclass
class TrackerSettings:
    """Polling cadence and lifetime limits for one indexing job."""
    poll_interval_seconds: float = 1.5
    max_poll_duration_seconds: float = 15 * 60
    start_grace_seconds: float = 0.5
    # indexing rows not updated for this long are considered abandoned on startup
    stale_after_seconds: float = 60 * 60
    completed_visible_seconds: float = 5 * 60


@dataclass
class BackendSettings:
    base_url: str = "http://localhost:7072"
    api_token: str = ""
    start_path: str = "/api/index"
    status_path: str = "/api/status"
    cancel_path: str = "/api/cancel"
    status_timeout_seconds: float = 10.0
    cancel_timeout_seconds: float = 10.0


@dataclass
class StoreSettings:
    backend: str = "sql"  # sql | redis
    database_url: str = "sqlite:///data/tracker.db"
    redis_url: str = "redis://localhost:6379/0"


@dataclass
class EventSettings:
    # empty redis_url disables the Redis event mirror
    redis_url: str = ""
    stream_maxlen: int = 1000


@dataclass
class ApiSettings:
    host: str = "127.0.0.1"
    port: int = 9100


class Settings:
    def __init__(self):
        self.env = os.getenv("TRACKER_ENV", "dev")

        t = _section("tracker")
        self.tracker = TrackerSettings(
            poll_interval_seconds=float(os.getenv("TRACKER_POLL_INTERVAL_SECONDS") or t.get("poll_interval_seconds", 1.5)),
            max_poll_duration_seconds=float(os.getenv("TRACKER_MAX_POLL_DURATION_SECONDS") or t.get("max_poll_duration_seconds", 900)),
            start_grace_seconds=float(t.get("start_grace_seconds", 0.5)),
            stale_after_seconds=float(t.get("stale_after_seconds", 3600)),
            completed_visible_seconds=float(t.get("completed_visible_seconds", 300)),
        )
        if self.tracker.poll_interval_seconds <= 0:
            raise ValueError("tracker.poll_interval_seconds must be > 0")
        if self.tracker.max_poll_duration_seconds <= 0:
            raise ValueError("tracker.max_poll_duration_seconds must be > 0")

        b = _section("backend")
        self.backend = BackendSettings(
            base_url=(os.getenv("TRACKER_BACKEND_URL") or b.get("base_url") or "http://localhost:7072").rstrip("/"),
            api_token=(os.getenv("TRACKER_BACKEND_TOKEN") or b.get("api_token") or "").strip(),
            start_path=str(b.get("start_path", "/api/index")),
            status_path=str(b.get("status_path", "/api/status")),
            cancel_path=str(b.get("cancel_path", "/api/cancel")),
            status_timeout_seconds=float(b.get("status_timeout_seconds", 10)),
            cancel_timeout_seconds=float(b.get("cancel_timeout_seconds", 10)),
        )

        s = _section("store")
        self.store = StoreSettings(
            backend=str(os.getenv("TRACKER_STORE_BACKEND") or s.get("backend") or "sql").strip().lower(),
            database_url=os.getenv("TRACKER_DATABASE_URL") or s.get("database_url") or "sqlite:///data/tracker.db",
            redis_url=os.getenv("TRACKER_REDIS_URL") or s.get("redis_url") or "redis://localhost:6379/0",
        )
        if self.store.backend not in ("sql", "redis"):
            raise ValueError(f"store.backend must be 'sql' or 'redis', got {self.store.backend!r}")

        e = _section("events")
        self.events = EventSettings(
            redis_url=(os.getenv("TRACKER_EVENTS_REDIS_URL") or e.get("redis_url") or "").strip(),
            stream_maxlen=int(e.get("stream_maxlen", 1000)),
        )

        a = _section("api")
        self.api = ApiSettings(
            host=str(os.getenv("API_HOST") or a.get("host", "127.0.0.1")),
            port=int(os.getenv("API_PORT") or a.get("port", 9100)),
        )

        self.logging: Dict[str, Any] = dict(_section("logging"))
        if os.getenv("TRACKER_LOG_LEVEL"):
            self.logging["level"] = os.environ["TRACKER_LOG_LEVEL"]

    @property
    def is_prod(self) -> bool:
        return self.env == "prod"

    def print_info(self):
        print(f"""
========================================
  Indexing Job Tracker
========================================
  Env: {self.env}
  Backend: {self.backend.base_url}
  Store: {self.store.backend}
  Poll interval: {self.tracker.poll_interval_seconds}s
  Max poll duration: {self.tracker.max_poll_duration_seconds}s
========================================
        """)


# Global singleton
settings = Settings()
