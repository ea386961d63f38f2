"""Structured logging for astro-sequencer.

Thin layer over the standard logging module that lets every call site
attach key-value data to a record:

    logger = get_logger(__name__)
    logger.info("Slew complete", target="M31", polls=42)

Ambient keys (the active target, the session) are pushed with
LogContext and merged into every record emitted inside the block:

    with LogContext(target="M31", target_number=3):
        logger.warning("Guiding failed, skipping target")

Records render either as human readable text (``message | k=v k=v``)
or as one JSON object per line for log shippers:

    configure_logging(level="DEBUG", json_format=True)

Untrusted values (device names reported by a backend, target names
read from a plan) belong in keyword arguments, not in the message, so
that they are quoted instead of being able to forge log lines.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any, cast

ROOT_LOGGER_NAME = "astro_sequencer"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "astro_sequencer_log_context", default={}
)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept structured keyword data.

    Any keyword argument that is not one of the standard logging
    parameters is collected into ``record.structured_data`` together with
    the active LogContext. Explicit keywords win over context values.
    """

    def debug(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at DEBUG with structured data."""
        if self.isEnabledFor(logging.DEBUG):
            self._log_structured(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at INFO with structured data."""
        if self.isEnabledFor(logging.INFO):
            self._log_structured(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at WARNING with structured data."""
        if self.isEnabledFor(logging.WARNING):
            self._log_structured(logging.WARNING, msg, args, **kwargs)

    def error(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at ERROR with structured data."""
        if self.isEnabledFor(logging.ERROR):
            self._log_structured(logging.ERROR, msg, args, **kwargs)

    def exception(
        self, msg: object, *args: Any, exc_info: Any = True, **kwargs: Any
    ) -> None:
        """Log at ERROR including the active exception's traceback."""
        if self.isEnabledFor(logging.ERROR):
            self._log_structured(
                logging.ERROR, msg, args, exc_info=exc_info, **kwargs
            )

    def critical(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at CRITICAL with structured data."""
        if self.isEnabledFor(logging.CRITICAL):
            self._log_structured(logging.CRITICAL, msg, args, **kwargs)

    def _log_structured(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any],
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Merge context and keyword data, then hand off to Logger._log.

        Args:
            level: Numeric logging level.
            msg: Message, optionally with %-style placeholders.
            args: Arguments for the placeholders.
            exc_info: Exception info as accepted by Logger._log.
            extra: Extra record attributes; ``structured_data`` is
                overwritten.
            stack_info: Attach the current stack.
            stacklevel: Caller frames to skip, relative to the level method.
            **kwargs: Structured key-value data for the record.
        """
        structured_data = {**_log_context.get(), **kwargs}
        extra = dict(extra) if extra else {}
        extra["structured_data"] = structured_data
        # level method + this helper
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 2,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Human readable formatter: ``<base format> | key=value key=value``."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Create the formatter.

        Args:
            fmt: Base format string. Defaults to
                ``%(asctime)s - %(name)s - %(levelname)s - %(message)s``.
            datefmt: Date format for ``%(asctime)s``.
            include_structured: Append structured data after the message.
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Render the base format, then the structured pairs if any."""
        base = super().format(record)
        structured = getattr(record, "structured_data", None)
        if not self.include_structured or not structured:
            return base
        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per record (NDJSON).

    Keys: ``timestamp`` (UTC ISO 8601), ``level``, ``logger``, ``message``,
    ``exception`` when present, and every structured key at top level.
    Values that JSON cannot encode are rendered with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        """Serialize the record as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "structured_data", {}) or {})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _format_value(value: Any) -> str:
    """Render one structured value for StructuredFormatter.

    ``None`` becomes ``null``, strings containing whitespace are quoted,
    containers are JSON encoded and everything else uses str().
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if any(ch.isspace() for ch in value):
            return json.dumps(value)
        return value
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


class LogContext:
    """Push key-value pairs onto every record logged inside a ``with`` block.

    Contexts nest; inner values override outer ones for the same key and
    the previous context is restored on exit, even when the block raises.
    Backed by contextvars, so each thread sees its own context.

    Example:
        with LogContext(session="2026-10-19T21:04:00"):
            with LogContext(target="M31"):
                logger.info("Exposure started", duration=120.0)
    """

    def __init__(self, **kwargs: Any) -> None:
        self._kwargs = kwargs
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        self._token = _log_context.set({**_log_context.get(), **self._kwargs})
        return self

    def __exit__(self, *exc: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def current_context() -> dict[str, Any]:
    """Return a copy of the structured context active in this thread."""
    return dict(_log_context.get())


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Install the package handler on the ``astro_sequencer`` logger.

    Only the first call has an effect unless ``force`` is set, which
    removes the existing handler and configures again. Safe to call from
    several threads.

    Args:
        level: Minimum level, as a number or a name such as ``"DEBUG"``.
        json_format: Emit NDJSON instead of human readable lines.
        stream: Destination stream. Defaults to ``sys.stderr``.
        include_structured: Append key=value pairs in text mode.
        force: Reconfigure even if logging was already configured.

    Example:
        >>> import io
        >>> buffer = io.StringIO()
        >>> configure_logging(level="DEBUG", stream=buffer, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Configure without taking the lock."""
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Reset without taking the lock."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    _configured = False


def reset_logging() -> None:
    """Drop the package handler so the next configure starts fresh.

    Intended for tests.
    """
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Return the structured logger for a module, configuring on first use.

    Args:
        name: Logger name, normally ``__name__``.

    Returns:
        A StructuredLogger accepting keyword data on every level method.
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    logger = logging.getLogger(name)
    if not isinstance(logger, StructuredLogger):
        # Created before setLoggerClass ran; swap its class in place.
        logger.__class__ = StructuredLogger
    return cast(StructuredLogger, logger)
