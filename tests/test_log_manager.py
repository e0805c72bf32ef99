"""LogManager: per-run files and size/age cleanup."""

import os
import time

from src.log.log_manager import LogManager


def test_logger_writes_to_run_file(tmp_path):
    manager = LogManager({"log_dir": str(tmp_path), "console_output": False, "level": "DEBUG"})
    logger = manager.get_logger("tests.log_manager.run_file")
    logger.info("[test] hello %s", "world")
    for handler in logger.handlers:
        handler.flush()

    files = list(tmp_path.glob("*.log"))
    assert len(files) == 1
    assert "[test] hello world" in files[0].read_text(encoding="utf-8")


def test_cleanup_removes_old_files_but_keeps_current_run(tmp_path):
    manager = LogManager({
        "log_dir": str(tmp_path),
        "console_output": False,
        "max_age_days": 1,
        "max_size_mb": 100,
        "min_keep_mb": 0,
    })
    logger = manager.get_logger("tests.log_manager.cleanup")
    logger.info("current run")

    old = tmp_path / "2000-01-01_00-00-00.log"
    old.write_text("old run\n", encoding="utf-8")
    ten_days_ago = time.time() - 10 * 86400
    os.utime(old, (ten_days_ago, ten_days_ago))

    manager.cleanup()
    assert not old.exists()
    assert any(p.name != old.name for p in tmp_path.glob("*.log"))


def _old_file(directory, name, size, age_days):
    path = directory / name
    path.write_bytes(b"x" * size)
    stamp = time.time() - age_days * 86400
    os.utime(path, (stamp, stamp))
    return path


def test_cleanup_trims_oldest_files_down_to_size_limit(tmp_path):
    manager = LogManager({
        "log_dir": str(tmp_path),
        "console_output": False,
        "max_age_days": 30,
        "max_size_mb": 1,
        "min_keep_mb": 0,
    })
    oldest = _old_file(tmp_path, "a.log", 600_000, age_days=3)
    middle = _old_file(tmp_path, "b.log", 600_000, age_days=2)
    newest = _old_file(tmp_path, "c.log", 300_000, age_days=1)

    report = manager.cleanup()
    assert report["deleted_by_size"] == ["a.log"]
    assert report["deleted_by_age"] == []
    assert not oldest.exists()
    assert middle.exists() and newest.exists()


def test_cleanup_leaves_small_directories_alone(tmp_path):
    manager = LogManager({
        "log_dir": str(tmp_path),
        "console_output": False,
        "max_age_days": 1,
        "min_keep_mb": 20,
    })
    old = _old_file(tmp_path, "old.log", 10, age_days=10)
    report = manager.cleanup()
    assert old.exists()
    assert report["deleted_by_age"] == []


def test_loggers_share_one_run_file(tmp_path):
    manager = LogManager({"log_dir": str(tmp_path), "console_output": False})
    first = manager.get_logger("tests.log_manager.shared.first")
    second = manager.get_logger("tests.log_manager.shared.second")
    first.info("one")
    second.info("two")
    for handler in first.handlers + second.handlers:
        handler.flush()

    assert [p.name for p in tmp_path.glob("*.log")] == [manager.run_file.name]
    text = manager.run_file.read_text(encoding="utf-8")
    assert "one" in text and "two" in text
