from __future__ import annotations

import inspect
import logging
import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} - {message}"

# Stdlib loggers that should stay quieter than the app itself.
QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}

_configured_level: str | None = None


class InterceptHandler(logging.Handler):
    """Forward stdlib records (uvicorn, SQLAlchemy) into the loguru sink."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module so {name}:{line} points at real code.
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO") -> None:
    """Route all logging through loguru. Repeated calls only change the level."""
    global _configured_level
    level = level.upper()
    if _configured_level == level:
        return

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    logger.remove()
    logger.add(sys.stdout, level=level, format=LOG_FORMAT, enqueue=True, diagnose=False, backtrace=False)
    _configured_level = level
