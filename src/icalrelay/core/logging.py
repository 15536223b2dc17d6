"""Structured logging for icalrelay.

Uses structlog's ProcessorFormatter to transparently upgrade all existing
``logging.getLogger(__name__)`` call sites; nothing in the package logs
through structlog directly.

Two output formats:
- ``text``: Colored, human-readable console output (dev default)
- ``json``: Machine-parseable JSON lines (production / log aggregation)

Every record carries the profile being rendered and, while a module runs,
the module name. Both come from ContextVars scoped by :func:`log_context`.
The OTel trace context is added from the current span.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

# ---------------------------------------------------------------------------
# Relay context
# ---------------------------------------------------------------------------

_profile_context: ContextVar[str | None] = ContextVar("profile_name", default=None)
_module_context: ContextVar[str | None] = ContextVar("module_name", default=None)


@contextmanager
def log_context(*, profile: str | None = None, module: str | None = None) -> Iterator[None]:
    """Tag records logged inside the block with *profile* and/or *module*.

    Arguments left as ``None`` keep the enclosing value. The previous values
    are restored on exit, including when the block raises.
    """
    tokens = []
    if profile is not None:
        tokens.append((_profile_context, _profile_context.set(profile)))
    if module is not None:
        tokens.append((_module_context, _module_context.set(module)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def get_profile_context() -> str | None:
    return _profile_context.get()


def get_module_context() -> str | None:
    return _module_context.get()


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_relay_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``profile`` always and ``module`` while a module is running."""
    event_dict["profile"] = _profile_context.get()
    module = _module_context.get()
    if module is not None:
        event_dict["module"] = module
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id`` and ``span_id`` from the current OTel span."""
    ctx = trace.get_current_span().get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

# Source fetches log every request at INFO.
_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
)

LOG_FILE_NAME = "icalrelay.log"


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_relay_context,
        add_otel_context,
    ]


def _handler(
    handler: logging.Handler, renderer: structlog.types.Processor, time_fmt: str
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=_pre_chain(time_fmt),
        )
    )
    return handler


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
) -> None:
    """Configure structured logging for the process.

    Parameters
    ----------
    level:
        Root log level (e.g. "DEBUG", "INFO", "WARNING").
    fmt:
        Console format: ``"text"`` for colored output, ``"json"`` for JSON lines.
    log_root:
        Directory for a JSON log file (``{log_root}/icalrelay.log``) that
        records everything down to DEBUG, in addition to the console.
    """
    if fmt == "json":
        console = _handler(
            logging.StreamHandler(sys.stderr), structlog.processors.JSONRenderer(), "iso"
        )
    else:
        console = _handler(
            logging.StreamHandler(sys.stderr), structlog.dev.ConsoleRenderer(), "%H:%M:%S"
        )

    root = logging.getLogger()
    # Remove existing handlers to avoid duplicate output on reconfiguration
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        file_handler = _handler(
            logging.FileHandler(log_root / LOG_FILE_NAME),
            structlog.processors.JSONRenderer(),
            "iso",
        )
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)
