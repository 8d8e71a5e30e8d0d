"""Operational logging setup for one CLI invocation."""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def generate_run_id() -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{timestamp}_{uuid.uuid4().hex[:8]}"


def setup_operational_logger(
    log_dir: str | None,
    run_id: str,
    *,
    verbose: bool = False,
) -> tuple[logging.Logger, str | None]:
    """
    Configure a logger for one invocation.

    Everything goes to `<log_dir>/<run_id>_oplog.log` at DEBUG; the console
    gets INFO (DEBUG with `verbose`). With `log_dir=None` only the console
    handler is attached.
    """

    logger = logging.getLogger(f"protonverbs.{run_id}")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    log_file: str | None = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"{run_id}_oplog.log")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    logger.propagate = False

    logger.debug("Operational logging initialized for run %s", run_id)
    if log_file:
        logger.debug("Operational log file: %s", log_file)
    return logger, log_file


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
