"""Logging helpers for femtologging integration.

Steward emits pre-formatted messages through femtologging. Reconciliation
events additionally use a ``[event] key=value`` layout so log aggregators can
parse run outcomes without a bespoke formatter.

Example:
>>> from steward.logging import get_logger, log_event
>>> logger = get_logger(__name__)
>>> log_event(logger, "INFO", "reconcile.run.started", tenant="acme")

"""

from __future__ import annotations

import enum
import typing as typ

from femtologging import basicConfig, get_logger


class LogLevel(enum.StrEnum):
    """Log levels accepted by femtologging."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SupportsLog(typ.Protocol):
    """Protocol for femtologging-compatible loggers."""

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str | None: ...


def normalize_log_level(level: str | None) -> tuple[str, bool]:
    """Normalize a log level string and report invalid inputs.

    Returns
    -------
    tuple[str, bool]
        The normalized level (``INFO`` for unusable input) and a flag that is
        ``True`` when the input was missing or unrecognised.

    """
    if not level:
        return ("INFO", True)

    normalized = level.strip().upper()
    if normalized in LogLevel.__members__:
        return (normalized, False)

    return ("INFO", True)


def configure_logging(level: str | None, *, force: bool = False) -> tuple[str, bool]:
    """Configure femtologging's root handler and return the normalized level."""
    normalized, invalid = normalize_log_level(level)
    basicConfig(level=normalized, force=force)
    return (normalized, invalid)


def format_log_message(template: str, *args: object) -> str:
    """Format a log message using percent-style interpolation."""
    return template % args if args else template


def format_event(event: str, fields: typ.Mapping[str, object]) -> str:
    """Render a structured event as ``[event] key=value ...``.

    Examples
    --------
    >>> format_event("reconcile.run.started", {"tenant": "acme", "phase": "sync"})
    '[reconcile.run.started] tenant=acme phase=sync'

    """
    rendered = " ".join(f"{key}={value}" for key, value in fields.items())
    return f"[{event}] {rendered}" if rendered else f"[{event}]"


def _emit(
    logger: SupportsLog,
    level: str,
    message: str,
    *,
    exc_info: object | None = None,
) -> None:
    logger.log(level, message, exc_info=exc_info, stack_info=False)


def log_debug(logger: SupportsLog, template: str, *args: object) -> None:
    """Log a DEBUG message with percent-style formatting."""
    _emit(logger, "DEBUG", format_log_message(template, *args))


def log_info(
    logger: SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Log an INFO message with percent-style formatting."""
    _emit(logger, "INFO", format_log_message(template, *args), exc_info=exc_info)


def log_warning(
    logger: SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Log a WARNING message with percent-style formatting."""
    _emit(logger, "WARNING", format_log_message(template, *args), exc_info=exc_info)


def log_error(
    logger: SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Log an ERROR message with percent-style formatting."""
    _emit(logger, "ERROR", format_log_message(template, *args), exc_info=exc_info)


def log_exception(logger: SupportsLog, message: str, exc: BaseException) -> None:
    """Log an exception at ERROR with ``exc_info`` wired into femtologging."""
    _emit(logger, "ERROR", message, exc_info=exc)


def log_event(
    logger: SupportsLog,
    level: str,
    event: str,
    *,
    exc_info: object | None = None,
    **fields: object,
) -> None:
    """Log a structured event at ``level``.

    Parameters
    ----------
    logger : SupportsLog
        Logger that receives the rendered event.
    level : str
        femtologging level name, e.g. ``"INFO"``.
    event : str
        Dotted event name such as ``reconcile.run.completed``.
    exc_info : object | None, optional
        Exception information to attach to the log record.
    **fields : object
        Key/value pairs rendered in insertion order.

    """
    _emit(logger, level, format_event(event, fields), exc_info=exc_info)


__all__ = [
    "LogLevel",
    "SupportsLog",
    "configure_logging",
    "format_event",
    "format_log_message",
    "get_logger",
    "log_debug",
    "log_error",
    "log_event",
    "log_exception",
    "log_info",
    "log_warning",
    "normalize_log_level",
]
