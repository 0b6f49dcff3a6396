"""Logging helpers shared by every import stage.

Stages log through the ``catalog_import`` logger; :func:`setup_logging` in
``ingestion_utils`` attaches the console and file handlers for CLI runs, while
library callers keep whatever handlers their application configured.
"""
from __future__ import annotations

import logging
import time
from typing import Dict, Optional

LOGGER_NAME = "catalog_import"


def get_logger(logger: Optional[logging.Logger] = None) -> logging.Logger:
    """Return the given logger or the package logger."""
    return logger if logger is not None else logging.getLogger(LOGGER_NAME)


def start_stage_timer(stage_name: str) -> float:
    """Start a timer for a pipeline stage and return the perf counter."""
    return time.perf_counter()


def end_stage_timer(stage_name: str, start_time: float, timing_dict: Dict[str, float], logger: logging.Logger) -> None:
    """End timer, record to ``timing_dict`` and log the duration."""
    elapsed = time.perf_counter() - float(start_time)
    timing_dict[stage_name] = round(float(elapsed), 4)
    logger.debug("Stage %s completed in %.3f seconds", stage_name, elapsed)


def log_system_event(logger: logging.Logger, message: str, *args) -> None:
    logger.info("[SYSTEM] " + message, *args)


def log_warning(logger: logging.Logger, message: str, *args) -> None:
    logger.warning("[WARNING] " + message, *args)


def log_error(logger: logging.Logger, message: str, *args) -> None:
    logger.error("[ERROR] " + message, *args)
