import logging
import os
import sys

_DEFAULT_LEVEL = os.getenv("SCHED_DASH_LOG_LEVEL", "INFO").upper()


def setup_logger(name: str, level: str | int | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        if level is not None:
            logger.setLevel(level)
        return logger

    resolved_level = level if level is not None else _DEFAULT_LEVEL
    logger.setLevel(resolved_level)

    handler = logging.StreamHandler(sys.stderr)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def set_log_level(level: str | int) -> None:
    """Apply ``level`` to every ``sched_dash`` logger created so far."""
    for name, candidate in logging.Logger.manager.loggerDict.items():
        if name.startswith("sched_dash") and isinstance(candidate, logging.Logger):
            candidate.setLevel(level)
