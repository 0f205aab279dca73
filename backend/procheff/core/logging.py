"""
Structured logging configuration for the orchestration service.

JSON-structured logs via structlog. Every entry carries:
- timestamp (ISO 8601)
- level
- service (service name identifier)
- trace_id (correlation ID for the HTTP request, when available)
- request_id (unique per HTTP request)
- orchestration_id (unique per orchestration call, when inside one)
"""
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

import structlog
from structlog.types import Processor

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
orchestration_id_var: ContextVar[Optional[str]] = ContextVar("orchestration_id", default=None)

SERVICE_NAME = "procheff_ai_orchestrator"


def add_trace_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add trace_id, request_id, orchestration_id and service to every entry."""
    trace_id = trace_id_var.get()
    if trace_id:
        event_dict["trace_id"] = trace_id

    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    orchestration_id = orchestration_id_var.get()
    if orchestration_id and "orchestration_id" not in event_dict:
        event_dict["orchestration_id"] = orchestration_id

    event_dict["service"] = SERVICE_NAME

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name identifier (defaults to SERVICE_NAME)
        json_output: JSON lines when True (production), console renderer otherwise
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context,
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
        level=getattr(logging, log_level.upper()),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger (typically ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def set_trace_id(trace_id: Optional[str]) -> None:
    trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    return trace_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_orchestration_id(orchestration_id: Optional[str]) -> None:
    """
    Bind an orchestration call ID to the current context.

    asyncio tasks copy the context at creation, so provider tasks spawned
    after this call log the same orchestration_id without affecting
    concurrent, unrelated calls.
    """
    orchestration_id_var.set(orchestration_id)


def get_orchestration_id() -> Optional[str]:
    return orchestration_id_var.get()


@contextmanager
def orchestration_scope(orchestration_id: str) -> Iterator[None]:
    """Bind `orchestration_id` for the duration of the block, then restore the previous value."""
    token = orchestration_id_var.set(orchestration_id)
    try:
        yield
    finally:
        orchestration_id_var.reset(token)


def generate_request_id() -> str:
    """Generate a new unique request ID (UUID4)."""
    return str(uuid.uuid4())


def generate_trace_id() -> str:
    """Generate a new unique trace ID (UUID4)."""
    return str(uuid.uuid4())
