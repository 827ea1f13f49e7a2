"""Inventory tracker package and its shared logger.

Modules log through ``from . import log``. Records at INFO and above go to a
rotating file; the console only shows warnings so CLI tables stay readable.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR_ENV = "INVENTORY_LOG_DIR"
LOG_FILE_NAME = "inventory_tracker.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 5
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def resolve_log_dir(environ=os.environ) -> Path:
    """Return the log directory, honouring ``INVENTORY_LOG_DIR`` when set."""

    override = environ.get(LOG_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return PROJECT_ROOT / ".logs"


def _file_handler(log_dir: Path, formatter: logging.Formatter) -> logging.Handler | None:
    log_file = log_dir / LOG_FILE_NAME
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
        )
    except OSError as exc:
        # Read-only installs still get console logging.
        print(f"Warning: inventory log disabled, cannot open '{log_file}': {exc}", file=sys.stderr)
        return None
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def configure_logging(log_dir: Path | None = None) -> logging.Logger:
    """Attach the file and console handlers once to the package logger."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handler = _file_handler(log_dir or resolve_log_dir(), formatter)
    if handler is not None:
        logger.addHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger


log = configure_logging()
