"""Logging configuration using loguru.

Every record carries the id of the pipeline run that produced it.  The
execution modules log through ``logging.getLogger(__name__)``; those records
are routed into loguru by ``_InterceptHandler`` and pick up the run id bound
with :func:`run_context`, the same as native loguru calls.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from contextlib import AbstractContextManager

from loguru import logger

NO_RUN = "-"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[run_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


class _InterceptHandler(logging.Handler):
    """Forward stdlib records to loguru, keeping the original call-site."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def run_context(run_id: str) -> AbstractContextManager[None]:
    """Tag every log record emitted inside the block with *run_id*.

    Backed by ``logger.contextualize``, so the tag follows asyncio tasks
    spawned inside the block.
    """
    return logger.contextualize(run_id=run_id)


def setup_logging(level: str = "INFO", *, quiet: Iterable[str] = QUIET_LOGGERS) -> None:
    """Install loguru on stderr as the only sink.

    Parameters
    ----------
    level:
        Minimum level for the sink, case-insensitive.
    quiet:
        Stdlib logger names capped at WARNING.
    """
    level = level.upper()

    logger.remove()
    logger.configure(extra={"run_id": NO_RUN})
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging ready at {}", level)
