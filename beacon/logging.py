"""femtologging wrappers shared by the gateway, worker and republisher.

Messages are formatted before they reach femtologging, so handlers receive
plain strings. Lifecycle events use a fixed ``[event.name] key=value`` shape
that log aggregators can split without a structured handler.

Example:
>>> from beacon.logging import get_logger, log_event
>>> logger = get_logger(__name__)
>>> log_event(logger, "INFO", "delivery.message.acked", topic="beacon-events")

"""

from __future__ import annotations

import enum
import typing as typ

from femtologging import basicConfig, get_logger

_FALLBACK_LEVEL = "INFO"


class LogLevel(enum.StrEnum):
    """Level names femtologging understands."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def normalize_log_level(level: str | None) -> tuple[str, bool]:
    """Map a user-supplied level name onto :class:`LogLevel`.

    Parameters
    ----------
    level : str | None
        Level name as read from ``BEACON_LOG_LEVEL``; case and surrounding
        whitespace are ignored.

    Returns
    -------
    tuple[str, bool]
        The level to use, and ``True`` when *level* was missing or unknown
        and ``INFO`` was substituted.

    """
    candidate = (level or "").strip().upper()
    if candidate in LogLevel.__members__:
        return (candidate, False)
    return (_FALLBACK_LEVEL, True)


def configure_logging(level: str, *, force: bool = False) -> tuple[str, bool]:
    """Install femtologging's root handler at the normalized *level*.

    ``force`` replaces handlers configured earlier in the process. The
    return value is that of :func:`normalize_log_level`, so callers can warn
    about a rejected level once logging works.
    """
    resolved = normalize_log_level(level)
    basicConfig(level=resolved[0], force=force)
    return resolved


def _render_value(value: object) -> str:
    if isinstance(value, str):
        return value if value and " " not in value else repr(value)
    if isinstance(value, float):
        return f"{value:.3f}"
    return str(value)


def format_event_message(event: str, **fields: object) -> str:
    """Render an event name and its fields as a single log line.

    Parameters
    ----------
    event : str
        Dotted event identifier, for example ``ingest.batch.accepted``.
    **fields : object
        Key/value pairs appended in insertion order. Strings containing
        spaces are quoted; floats are rendered with millisecond precision.

    Returns
    -------
    str
        The formatted message.

    """
    rendered = (f"{key}={_render_value(value)}" for key, value in fields.items())
    return " ".join((f"[{event}]", *rendered))


class _SupportsLog(typ.Protocol):
    """The slice of femtologging's logger API used here."""

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str | None: ...


def _emit(
    logger: _SupportsLog,
    level: str,
    message: str,
    exc_info: object | None,
) -> None:
    logger.log(level, message, exc_info=exc_info, stack_info=False)


def log_info(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at INFO."""
    _emit(logger, LogLevel.INFO, template % args, exc_info)


def log_warning(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at WARNING."""
    _emit(logger, LogLevel.WARNING, template % args, exc_info)


def log_error(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at ERROR."""
    _emit(logger, LogLevel.ERROR, template % args, exc_info)


def log_exception(logger: _SupportsLog, message: str, exc: BaseException) -> None:
    """Emit *message* at ERROR with *exc* attached for the traceback."""
    _emit(logger, LogLevel.ERROR, message, exc)


def log_event(
    logger: _SupportsLog,
    level: str,
    event: str,
    *,
    exc_info: object | None = None,
    **fields: object,
) -> None:
    """Emit a lifecycle event line at *level*.

    Parameters
    ----------
    logger : _SupportsLog
        Logger that receives the formatted message.
    level : str
        femtologging level name (``INFO``, ``WARNING``, ``ERROR``...).
    event : str
        Dotted event identifier.
    exc_info : object | None, optional
        Exception information to attach to the log record.
    **fields : object
        Event fields rendered by :func:`format_event_message`.

    """
    _emit(logger, level, format_event_message(event, **fields), exc_info)


__all__ = [
    "LogLevel",
    "configure_logging",
    "format_event_message",
    "get_logger",
    "log_error",
    "log_event",
    "log_exception",
    "log_info",
    "log_warning",
    "normalize_log_level",
]
