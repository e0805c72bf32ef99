"""
src/db: database engine and SQLModel models.

Usage:
    from src.db import get_engine, init_db
    from src.db.models import IndexingStateRow
"""

from src.db.engine import create_db_engine, get_engine, init_db

__all__ = ["create_db_engine", "get_engine", "init_db"]
