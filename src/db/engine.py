"""
Centralized SQLAlchemy/SQLModel engine.

The database URL is resolved from the TRACKER_DATABASE_URL environment
variable or config/tracker_config(.local).json (store.database_url),
so switching to PostgreSQL is a single configuration change.
"""

from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

_engine: Engine | None = None


def _resolve_db_url() -> str:
    """
    Resolve database URL with precedence:
    1. TRACKER_DATABASE_URL environment variable
    2. settings.store.database_url (tracker_config.local.json over tracker_config.json)
    3. Fallback: sqlite:///data/tracker.db
    """
    env_url = os.environ.get("TRACKER_DATABASE_URL")
    if env_url:
        return env_url
    from config.settings import settings
    return settings.store.database_url or "sqlite:///data/tracker.db"


def _make_absolute_sqlite_url(url: str) -> str:
    """
    Resolve relative sqlite:/// paths against the project root so the DB
    always lands in <project_root>/data regardless of cwd.
    """
    if not url.startswith("sqlite:///") or url == "sqlite:///:memory:":
        return url
    rel_path = url[len("sqlite:///"):]
    if os.path.isabs(rel_path):
        Path(rel_path).parent.mkdir(parents=True, exist_ok=True)
        return url
    root = Path(__file__).resolve().parents[2]
    abs_path = (root / rel_path).resolve()
    abs_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{abs_path}"


def create_db_engine(url: str) -> Engine:
    """Build an engine for url; SQLite connections get WAL and a busy timeout."""
    db_url = _make_absolute_sqlite_url(url)
    is_sqlite = db_url.startswith("sqlite")
    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}

    engine = create_engine(
        db_url,
        echo=False,
        connect_args=connect_args,
        pool_pre_ping=True,
    )

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return engine


def get_engine() -> Engine:
    """Return the singleton engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(_resolve_db_url())
    return _engine


def init_db(engine: Engine | None = None) -> None:
    """
    Create all tables that are not yet present.
    In production the Alembic migration already handles table creation;
    this is a safety net for tests and fresh installs.
    """
    from src.db import models as _models  # noqa: F401 - registers the tables
    SQLModel.metadata.create_all(engine or get_engine())
