"""
Logging utilities built on loguru.

Modules get a bound logger with ``get_logger(__name__)``; the process entry
point calls ``configure_logging`` once to install the stderr sink.
"""

import sys
import traceback

from loguru import logger as _logger

from devcontainer_portforward.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

# Records logged before configure_logging still need the "name" key
_logger.configure(extra={"name": "devcontainer_portforward"})


def get_logger(name: str):
    """
    Get a logger bound to a module name.

    Args:
        name: Usually ``__name__`` of the calling module.

    Returns:
        loguru logger with ``name`` in its extra context.
    """
    return _logger.bind(name=name)


def configure_logging(level: LogLevel = LogLevel.INFO) -> None:
    """
    Replace loguru's default sink with a single stderr sink.

    Args:
        level: Verbosity. FULL enables TRACE with backtraces and variable
               values in exception reports.
    """
    match level:
        case LogLevel.FULL:
            loguru_level = "TRACE"
        case LogLevel.DEBUG:
            loguru_level = "DEBUG"
        case LogLevel.INFO:
            loguru_level = "INFO"
        case LogLevel.WARNING:
            loguru_level = "WARNING"
        case _:
            loguru_level = "INFO"

    full = level == LogLevel.FULL
    _logger.remove()
    _logger.add(
        sys.stderr,
        level=loguru_level,
        format=LOG_FORMAT,
        backtrace=full,
        diagnose=full,
    )


def format_traceback(exc: BaseException) -> str:
    """Render an exception with its traceback as a single string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
