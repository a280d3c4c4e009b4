"""
Structured logging configuration.

All log entries are structlog events with a snake_case event name and
keyword fields. Each entry carries:
- timestamp (ISO 8601)
- level
- logger name
- service
- trace_id (when a query is in flight)
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import Processor

trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)

DEFAULT_SERVICE_NAME = "rag_orchestrator"


def add_trace_context(service_name: str) -> Processor:
    """Build a processor stamping `service` and the current trace id on every entry."""

    def processor(
        logger: Any,
        method_name: str,
        event_dict: dict[str, Any],
    ) -> dict[str, Any]:
        trace_id = trace_id_var.get()
        if trace_id:
            event_dict["trace_id"] = trace_id
        event_dict["service"] = service_name
        return event_dict

    return processor


def configure_logging(
    log_level: str = "INFO",
    service_name: str | None = None,
    json_output: bool = True,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        service_name: value of the `service` field on every entry
        json_output: JSON lines when True, console renderer otherwise
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context(service_name or DEFAULT_SERVICE_NAME),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def set_trace_id(trace_id: str | None) -> None:
    trace_id_var.set(trace_id)

