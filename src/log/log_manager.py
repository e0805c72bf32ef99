"""
Tracker logging: named loggers on the console plus one file per process run
(logs/tracker/<start time>_<pid>.log), with size/age cleanup of older runs.

Configuration is the "logging" section of config/tracker_config.json, as
merged by config.settings; TRACKER_LOG_LEVEL overrides the level.
"""
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from config.settings import settings

_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_MB = 1024 * 1024


class LogManager:
    """Owns the current run file and hands out loggers bound to it."""

    def __init__(self, config: dict[str, Any] | None = None):
        config = config or {}
        root = Path(__file__).resolve().parents[2]
        self.log_dir = Path(config.get("log_dir") or root / "logs" / "tracker")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        level = logging.getLevelName(str(config.get("level") or "INFO").upper())
        self.level = level if isinstance(level, int) else logging.INFO
        self.console_output = bool(config.get("console_output", True))
        self.max_bytes = float(config.get("max_size_mb", 100)) * _MB
        self.max_age_seconds = float(config.get("max_age_days", 30)) * 86400
        self.min_keep_bytes = float(config.get("min_keep_mb", 20)) * _MB

        # pid keeps the API server and a CLI run started in the same second apart
        self.run_file = self.log_dir / f"{datetime.now():%Y-%m-%d_%H-%M-%S}_{os.getpid()}.log"
        self._formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
        self._file_handler: logging.FileHandler | None = None

    def _shared_file_handler(self) -> logging.FileHandler:
        if self._file_handler is None:
            self._file_handler = logging.FileHandler(self.run_file, encoding="utf-8")
            self._file_handler.setFormatter(self._formatter)
        return self._file_handler

    def get_logger(self, name: str) -> logging.Logger:
        logger = logging.getLogger(name)
        if logger.handlers:
            return logger

        logger.setLevel(self.level)
        logger.propagate = False
        if self.console_output:
            console = logging.StreamHandler()
            console.setFormatter(self._formatter)
            logger.addHandler(console)
        logger.addHandler(self._shared_file_handler())
        return logger

    def cleanup(self) -> dict[str, Any]:
        """
        Delete older run files, oldest first.
        - Nothing is touched while the directory holds less than min_keep_mb.
        - Files past max_age_days always go; younger ones only while the
          total is above max_size_mb.
        - The current run file is never deleted.
        """
        files = sorted((p for p in self.log_dir.glob("*.log") if p.is_file()), key=lambda p: p.stat().st_mtime)
        sizes = {p: p.stat().st_size for p in files}
        total = sum(sizes.values())
        report: dict[str, Any] = {"deleted_by_age": [], "deleted_by_size": [], "remaining_mb": total / _MB}
        if total < self.min_keep_bytes:
            return report

        cutoff = time.time() - self.max_age_seconds
        for path in files:
            if path == self.run_file:
                continue
            expired = path.stat().st_mtime < cutoff
            if not expired and total <= self.max_bytes:
                continue
            path.unlink()
            total -= sizes[path]
            report["deleted_by_age" if expired else "deleted_by_size"].append(path.name)

        report["remaining_mb"] = total / _MB
        return report


_manager: LogManager | None = None


def init_logging(config: dict[str, Any] | None = None) -> LogManager:
    """(Re)build the process-wide manager; config defaults to settings.logging."""
    global _manager
    _manager = LogManager(settings.logging if config is None else config)
    return _manager


def get_logger(name: str) -> logging.Logger:
    if _manager is None:
        init_logging()
    return _manager.get_logger(name)


def cleanup_logs() -> dict[str, Any]:
    """Prune old run files; returns what was deleted."""
    if _manager is None:
        init_logging()
    report = _manager.cleanup()
    deleted = len(report["deleted_by_age"]) + len(report["deleted_by_size"])
    if deleted:
        get_logger(__name__).info(
            "[log] removed %d old log file(s), %.1f MB left", deleted, report["remaining_mb"],
        )
    return report
