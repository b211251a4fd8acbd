"""Logging helpers for the k3d_gitops package.

This module centralizes log level normalization and formatting so every
orchestration step emits pre-formatted log messages consistently.

Example:
>>> from k3d_gitops.logging import get_logger, log_info
>>> logger = get_logger(__name__)
>>> log_info(logger, "Started %s", "bootstrap")

"""

from __future__ import annotations

import enum
import logging
import typing as typ
from logging import basicConfig

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class LogLevel(enum.StrEnum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def get_logger(name: str) -> logging.Logger:
    """Return the named logger."""
    return logging.getLogger(name)


def normalize_log_level(level: str | None) -> tuple[str, bool]:
    """Normalize a log level string and report invalid inputs.

    Parameters
    ----------
    level : str | None
        Raw log level string to normalize.

    Returns
    -------
    tuple[str, bool]
        The normalized log level and a flag indicating invalid input.

    """
    if not level:
        return ("INFO", True)

    normalized = level.strip().upper()
    if normalized == LogLevel.WARN:
        return ("WARNING", False)
    if normalized in LogLevel.__members__:
        return (normalized, False)

    return ("INFO", True)


def configure_logging(level: str, *, force: bool = False) -> tuple[str, bool]:
    """Configure logging and return the normalized level.

    Parameters
    ----------
    level : str
        Raw log level string to normalize.
    force : bool, optional
        Whether to replace any existing handler configuration.

    Returns
    -------
    tuple[str, bool]
        The normalized log level and a flag indicating invalid input.

    """
    normalized, invalid = normalize_log_level(level)
    basicConfig(level=normalized, format=_LOG_FORMAT, force=force)
    return (normalized, invalid)


def _format_message(template: str, *args: object) -> str:
    """Format a message using percent-style interpolation."""
    if not args:
        return template
    return template % args


def format_log_message(template: str, *args: object) -> str:
    """Format a log message using percent-style interpolation.

    Parameters
    ----------
    template : str
        Message template using percent-style placeholders.
    *args : object
        Values to interpolate into the template.

    Returns
    -------
    str
        The formatted message.

    """
    return _format_message(template, *args)


class _SupportsLog(typ.Protocol):
    """Protocol for loggers compatible with :class:`logging.Logger`."""

    def log(
        self,
        level: int,
        msg: object,
        /,
        *,
        exc_info: typ.Any = None,  # noqa: ANN401
        stack_info: bool = False,
    ) -> None: ...


def _log_at_level(
    logger: _SupportsLog,
    level: int,
    message: str,
    *,
    exc_info: object | None = None,
) -> None:
    """Log a pre-formatted message at the specified level."""
    logger.log(
        level,
        message,
        exc_info=exc_info,
        stack_info=False,
    )


def log_debug(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Log a DEBUG message with percent-style formatting."""
    _log_at_level(
        logger,
        logging.DEBUG,
        _format_message(template, *args),
        exc_info=exc_info,
    )


def log_info(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Log an INFO message with percent-style formatting.

    Parameters
    ----------
    logger : _SupportsLog
        Logger that receives the formatted message.
    template : str
        Message template using percent-style placeholders.
    *args : object
        Values to interpolate into the template.
    exc_info : object | None, optional
        Exception information to attach to the log record.

    """
    _log_at_level(
        logger,
        logging.INFO,
        _format_message(template, *args),
        exc_info=exc_info,
    )


def log_warning(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Log a WARNING message with percent-style formatting.

    Parameters
    ----------
    logger : _SupportsLog
        Logger that receives the formatted message.
    template : str
        Message template using percent-style placeholders.
    *args : object
        Values to interpolate into the template.
    exc_info : object | None, optional
        Exception information to attach to the log record.

    """
    _log_at_level(
        logger,
        logging.WARNING,
        _format_message(template, *args),
        exc_info=exc_info,
    )


def log_error(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Log an ERROR message with percent-style formatting.

    Parameters
    ----------
    logger : _SupportsLog
        Logger that receives the formatted message.
    template : str
        Message template using percent-style placeholders.
    *args : object
        Values to interpolate into the template.
    exc_info : object | None, optional
        Exception information to attach to the log record.

    """
    _log_at_level(
        logger,
        logging.ERROR,
        _format_message(template, *args),
        exc_info=exc_info,
    )


def log_exception(logger: _SupportsLog, message: str, exc: BaseException) -> None:
    """Log an exception with exc_info attached.

    Parameters
    ----------
    logger : _SupportsLog
        Logger that receives the exception payload.
    message : str
        Pre-formatted message describing the failure.
    exc : BaseException
        Exception instance to attach as exc_info.

    """
    _log_at_level(logger, logging.ERROR, message, exc_info=exc)


__all__ = [
    "LogLevel",
    "configure_logging",
    "format_log_message",
    "get_logger",
    "log_debug",
    "log_error",
    "log_exception",
    "log_info",
    "log_warning",
    "normalize_log_level",
]
