"""Tests for the package logger setup."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

import inventory_tracker


def test_log_dir_defaults_to_project_logs():
    assert inventory_tracker.resolve_log_dir({}) == inventory_tracker.PROJECT_ROOT / ".logs"


def test_log_dir_env_override(tmp_path):
    environ = {inventory_tracker.LOG_DIR_ENV: str(tmp_path / "custom")}
    assert inventory_tracker.resolve_log_dir(environ) == tmp_path / "custom"


def test_file_handler_rotates_in_given_directory(tmp_path):
    handler = inventory_tracker._file_handler(tmp_path / "logs", logging.Formatter())
    try:
        assert isinstance(handler, RotatingFileHandler)
        assert handler.maxBytes == inventory_tracker.LOG_MAX_BYTES
        assert handler.backupCount == inventory_tracker.LOG_BACKUPS
        assert (tmp_path / "logs" / inventory_tracker.LOG_FILE_NAME).exists()
    finally:
        handler.close()


def test_unwritable_log_dir_falls_back_to_console(tmp_path, capsys):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")

    assert inventory_tracker._file_handler(blocker / "logs", logging.Formatter()) is None
    assert "inventory log disabled" in capsys.readouterr().err


def test_console_handler_only_shows_warnings():
    logger = inventory_tracker.configure_logging()
    assert logger is inventory_tracker.log
    consoles = [
        handler
        for handler in logger.handlers
        if type(handler) is logging.StreamHandler
    ]
    assert [handler.level for handler in consoles] == [logging.WARNING]
