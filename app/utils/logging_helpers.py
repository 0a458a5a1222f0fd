"""
Structured logging helpers for worker iterations and handlers.

Logging contract:
- correlation_id: Unique identifier for the tick / update being processed
- component: Component name (handler, worker, service)
- operation: Operation name (rollover_tick, access_grant_poll, member_join)
- outcome: success | degraded | failed | skipped

Failure taxonomy:
- infra_error: Infrastructure errors (DB, network, timeouts)
- dependency_error: External collaborator errors (Telegram, directory)
- domain_error: Business rule errors (invalid period, invalid input)
- unexpected_error: Unexpected errors (bugs, unhandled exceptions)
"""

import asyncio
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

import asyncpg

from app.core.exceptions import CollaboratorError, CollaboratorTimeoutError

_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

logger = logging.getLogger(__name__)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for a tick or update."""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _emit(log_data: dict, outcome: Optional[str]) -> None:
    # Emit as JSON with a level field matching the Python logging level
    if outcome == "failed":
        log_data["level"] = "ERROR"
        logger.error(json.dumps(log_data, default=str))
    elif outcome == "degraded":
        log_data["level"] = "WARNING"
        logger.warning(json.dumps(log_data, default=str))
    else:
        log_data["level"] = "INFO"
        logger.info(json.dumps(log_data, default=str))


def log_worker_iteration_start(
    worker_name: str,
    iteration_number: Optional[int] = None,
    **kwargs
) -> str:
    """
    Log worker iteration start.

    Args:
        worker_name: Name of the worker (e.g., "rollover")
        iteration_number: Iteration number (optional)
        **kwargs: Additional context to log

    Returns:
        Correlation ID for this iteration
    """
    correlation_id = generate_correlation_id()
    set_correlation_id(correlation_id)

    log_data = {
        "event": "ITERATION_START",
        "worker": worker_name,
        "correlation_id": correlation_id,
        "component": "worker",
        "operation": f"{worker_name}_iteration",
        "timestamp": _utc_timestamp(),
    }
    if iteration_number is not None:
        log_data["iteration_number"] = iteration_number
    if kwargs:
        log_data.update(kwargs)

    _emit(log_data, None)
    return correlation_id


def log_worker_iteration_end(
    worker_name: str,
    outcome: str,  # "success" | "degraded" | "failed" | "skipped" | "timeout"
    items_processed: Optional[int] = None,
    error_type: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> None:
    """
    Log worker iteration end.

    Args:
        worker_name: Name of the worker
        outcome: Outcome of the iteration
        items_processed: Number of items processed (optional)
        error_type: Type of error if outcome is "failed" (optional)
        duration_ms: Duration of the iteration in milliseconds (optional)
        **kwargs: Additional context to log
    """
    log_data = {
        "event": "ITERATION_END",
        "worker": worker_name,
        "correlation_id": get_correlation_id(),
        "component": "worker",
        "operation": f"{worker_name}_iteration",
        "outcome": outcome,
        "timestamp": _utc_timestamp(),
    }
    if items_processed is not None:
        log_data["items_processed"] = items_processed
    if error_type:
        log_data["error_type"] = error_type
    if duration_ms is not None:
        log_data["duration_ms"] = duration_ms
    if kwargs:
        log_data.update(kwargs)

    _emit(log_data, "failed" if outcome == "timeout" else outcome)


def log_handler_exit(
    handler_name: str,
    outcome: str,
    telegram_id: Optional[int] = None,
    error_type: Optional[str] = None,
    **kwargs
) -> None:
    """Log handler exit point (success | degraded | failed)."""
    log_data = {
        "event": "HANDLER_EXIT",
        "handler": handler_name,
        "correlation_id": get_correlation_id(),
        "component": "handler",
        "operation": handler_name,
        "outcome": outcome,
        "timestamp": _utc_timestamp(),
    }
    if telegram_id:
        log_data["telegram_id"] = telegram_id
    if error_type:
        log_data["error_type"] = error_type
    if kwargs:
        log_data.update(kwargs)

    _emit(log_data, outcome)


def classify_error(exception: BaseException) -> str:
    """
    Classify error type for failure taxonomy.

    Returns:
        "infra_error" | "dependency_error" | "domain_error" | "unexpected_error"
    """
    if isinstance(exception, (CollaboratorTimeoutError, asyncio.TimeoutError, ConnectionError, OSError)):
        return "infra_error"

    if isinstance(exception, CollaboratorError):
        return "dependency_error"

    if isinstance(exception, ValueError):
        return "domain_error"

    if isinstance(exception, asyncpg.PostgresError):
        return "infra_error"

    return "unexpected_error"
