"""
Logging setup for vmtopo.

Thin wrapper over loguru so every module can do::

    from vmtopo.utils.logger import get_logger

    logger = get_logger(__name__)
"""

import sys
import traceback

from loguru import logger as _logger

from vmtopo.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_LEVEL_MAP = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

_logger.configure(extra={"name": "vmtopo"})


def configure_logging(level: LogLevel = LogLevel.INFO) -> None:
    """
    Replace loguru's default sink with a stderr sink at the given level.

    Must be called once before the configuration pass starts. FULL also
    enables loguru's extended backtraces.
    """
    _logger.remove()
    full = level == LogLevel.FULL
    _logger.add(
        sys.stderr,
        level=_LEVEL_MAP.get(level, "INFO"),
        format=LOG_FORMAT,
        backtrace=full,
        diagnose=full,
    )


def get_logger(name: str):
    """Get a logger bound to a module name."""
    return _logger.bind(name=name)


def format_traceback(exc: BaseException) -> str:
    """Render an exception with its traceback for debug output."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
