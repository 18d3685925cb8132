"""Structured logging and OpenTelemetry spans for strata.

Every pipeline stage (compile, publish, registry refresh, resolve, evaluate)
runs inside ``span()``, which opens an OpenTelemetry span and emits
``<stage>_started`` / ``<stage>_completed`` / ``<stage>_failed`` events
through structlog. Without an OpenTelemetry SDK installed the tracer is a
no-op and only the log events remain.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer
    from structlog.stdlib import BoundLogger

TRACER_NAME = "strata"

_tracer: Tracer | None = None


def get_logger() -> BoundLogger:
    """Return the logger shared by the pipeline stages."""
    return structlog.get_logger(TRACER_NAME)


def get_tracer() -> Tracer:
    """Return the strata tracer, created on first use."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(TRACER_NAME)
    return _tracer


def _processors(json_format: bool, add_timestamp: bool) -> list[Any]:
    processors: list[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))
    processors.append(structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer())
    return processors


def configure_logging(
    *,
    log_level: str = "INFO",
    json_format: bool = True,
    add_timestamp: bool = True,
) -> None:
    """Route structlog through stdlib logging on stderr.

    Stdout stays free for command output, so ``strata resolve`` and
    ``strata render`` can be piped.

    Args:
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Emit JSON lines instead of the console renderer.
        add_timestamp: Add an ISO timestamp to every event.

    Example:
        >>> configure_logging(log_level="DEBUG", json_format=False)
    """
    structlog.configure(
        processors=_processors(json_format, add_timestamp),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )


def _log_fields(attributes: Mapping[str, Any]) -> dict[str, Any]:
    # "strata.layer_key" -> "strata_layer_key"
    return {key.replace(".", "_"): value for key, value in attributes.items()}


@contextmanager
def span(
    name: str,
    *,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: dict[str, Any] | None = None,
    log_start: bool = True,
    log_end: bool = True,
) -> Iterator[Span]:
    """Run a pipeline stage inside an OpenTelemetry span.

    Args:
        name: Stage name, e.g. ``strata.publish``.
        kind: Span kind.
        attributes: Span attributes; also logged with dots turned into
            underscores.
        log_start: Log ``<name>_started``.
        log_end: Log ``<name>_completed`` with the elapsed time.

    Yields:
        The active span.

    Raises:
        Exception: Whatever the stage raises, after it is recorded on the
            span and logged as ``<name>_failed``.

    Example:
        >>> with span("strata.publish", attributes={"strata.layer_key": key}):
        ...     publisher.publish(artifact)
    """
    attrs = attributes or {}
    fields = _log_fields(attrs)
    logger = get_logger()
    started = time.perf_counter()

    with get_tracer().start_as_current_span(name, kind=kind, attributes=attrs) as current:
        if log_start:
            logger.debug(f"{name}_started", **fields)
        try:
            yield current
        except Exception as exc:
            current.set_status(Status(StatusCode.ERROR, str(exc)))
            current.record_exception(exc)
            logger.error(f"{name}_failed", error=str(exc), error_type=type(exc).__name__, **fields)
            raise
        current.set_status(Status(StatusCode.OK))
        if log_end:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 3)
            logger.debug(f"{name}_completed", duration_ms=elapsed_ms, **fields)


def log_retry_attempt(operation: str, attempt: int, max_attempts: int, error: str) -> None:
    """Log that ``operation`` failed ``attempt`` of ``max_attempts`` and will be retried."""
    get_logger().warning(
        "retry_scheduled",
        operation=operation,
        attempt=attempt,
        max_attempts=max_attempts,
        error=error,
    )
