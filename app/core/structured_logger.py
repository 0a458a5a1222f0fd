"""
Structured lifecycle logging.

One line per lifecycle step (startup, polling, rollover finalization, shutdown)
carrying component, operation and outcome as `extra` fields, plus the period
key when the step belongs to one. Member IDs may be logged; message bodies
and invite URLs may not.
"""
from logging import Logger
from typing import Optional


def _render(component: str, operation: str, outcome: str, period: Optional[str], reason: Optional[str]) -> str:
    parts = [component, operation, f"outcome={outcome}"]
    if period is not None:
        parts.append(f"period={period}")
    if reason is not None:
        parts.append(f"reason={reason}")
    return " ".join(parts)


def log_event(
    logger: Logger,
    *,
    component: str,
    operation: str,
    outcome: str,
    period: Optional[str] = None,
    correlation_id: Optional[str] = None,
    duration_ms: Optional[int] = None,
    reason: Optional[str] = None,
    level: str = "info",
    message: Optional[str] = None,
) -> None:
    """
    Emit a lifecycle event.

    `message` replaces the rendered "<component> <operation> outcome=..." text;
    the structured fields are attached either way. Unknown levels fall back
    to INFO.
    """
    extra = {"component": component, "operation": operation, "outcome": outcome}
    optional = {
        "period": period,
        "correlation_id": correlation_id,
        "duration_ms": duration_ms,
        "reason": reason,
    }
    extra.update({key: value for key, value in optional.items() if value is not None})

    emit = getattr(logger, level.lower(), logger.info)
    emit(message or _render(component, operation, outcome, period, reason), extra=extra)
