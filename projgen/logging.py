"""Logging utilities for projgen commands."""

from __future__ import annotations

import logging
from pathlib import Path


_LOGGER_NAME = "projgen"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the projgen hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Configure the projgen logger with console output and optional file sink."""
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Reset handlers to avoid duplicate output when CLI is invoked multiple times.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter("[projgen] %(levelname)s %(message)s"))
    logger.addHandler(stream_handler)

    if log_file is not None:
        logger.addHandler(_build_file_handler(log_file, level))

    return logger


def attach_run_log(log_file: Path, *, verbose: bool = False) -> logging.Handler:
    """Add a per-run file sink to the projgen logger and return it for later removal."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if verbose else logging.INFO
    handler = _build_file_handler(log_file, level)
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    logger.addHandler(handler)
    return handler


def detach_run_log(handler: logging.Handler | None) -> None:
    """Remove and close a handler previously returned by :func:`attach_run_log`."""
    if handler is None:
        return
    logging.getLogger(_LOGGER_NAME).removeHandler(handler)
    handler.close()


def _build_file_handler(log_file: Path, level: int) -> logging.FileHandler:
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    return file_handler


__all__ = ["attach_run_log", "configure_logging", "detach_run_log", "get_logger"]
