"""Structured logging helpers for orchestrator components."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from backoffice.logging_events import log_event


def format_datetime(value: datetime | None) -> str | None:
    """Return an ISO formatted timestamp for ``value`` if present."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.isoformat()
    return value.astimezone(timezone.utc).isoformat()


def emit_enqueue_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str,
    priority: int,
    queue_position: int,
    scheduled_for: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "job_type": job_type,
        "status": "queued",
        "priority": priority,
        "queue_position": queue_position,
    }
    if scheduled_for is not None:
        payload["scheduled_for"] = scheduled_for
    _emit_event(logger, "orchestrator.enqueue", payload)


def emit_schedule_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str,
    status: str,
    attempts: int,
    priority: int,
    available_at: str | None = None,
    wait_s: float | None = None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "job_type": job_type,
        "status": status,
        "attempts": attempts,
        "priority": priority,
    }
    if available_at is not None:
        payload["available_at"] = available_at
    if wait_s is not None:
        payload["wait_s"] = round(wait_s, 3)
    _emit_event(logger, "orchestrator.schedule", payload)


def emit_dispatch_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str,
    status: str,
    attempts: int | None = None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "job_type": job_type,
        "status": status,
    }
    if attempts is not None:
        payload["attempts"] = attempts
    _emit_event(logger, "orchestrator.dispatch", payload)


def emit_subtarget_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str,
    subtarget: str,
    status: str,
    duration_ms: int,
    retryable: bool | None = None,
    error: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "job_type": job_type,
        "subtarget": subtarget,
        "status": status,
        "duration_ms": duration_ms,
    }
    if retryable is not None:
        payload["retryable"] = retryable
    if error:
        payload["error"] = error
    level = logging.WARNING if status == "failed" else logging.INFO
    _emit_event(logger, "orchestrator.subtarget", payload, level=level)


def emit_commit_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str,
    status: str,
    attempts: int,
    duration_ms: int,
    success_rate: int | None = None,
    error: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "job_type": job_type,
        "status": status,
        "attempts": attempts,
        "duration_ms": duration_ms,
    }
    if success_rate is not None:
        payload["success_rate"] = success_rate
    if error:
        payload["error"] = error
    level = logging.ERROR if status == "failed" else logging.INFO
    _emit_event(logger, "orchestrator.commit", payload, level=level)


def emit_retry_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str,
    attempts: int,
    retry_in: float,
    retry_at: str | None,
    error: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "job_type": job_type,
        "status": "retrying",
        "attempts": attempts,
        "retry_in": retry_in,
    }
    if retry_at is not None:
        payload["retry_at"] = retry_at
    if error:
        payload["error"] = error
    _emit_event(logger, "orchestrator.retry", payload, level=logging.WARNING)


def emit_timeout_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str,
    attempts: int,
    timeout_at: str | None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "job_type": job_type,
        "status": "timeout",
        "attempts": attempts,
    }
    if timeout_at is not None:
        payload["timeout_at"] = timeout_at
    _emit_event(logger, "orchestrator.timeout", payload, level=logging.WARNING)


def emit_cancel_event(
    logger: Any,
    *,
    job_id: str,
    job_type: str | None,
    status: str,
    reason: str | None = None,
) -> None:
    payload: dict[str, Any] = {
        "entity_id": job_id,
        "status": status,
    }
    if job_type is not None:
        payload["job_type"] = job_type
    if reason:
        payload["reason"] = reason
    _emit_event(logger, "orchestrator.cancel", payload)


def _emit_event(
    logger: Any,
    event: str,
    payload: dict[str, Any],
    *,
    level: int = logging.INFO,
) -> None:
    log_event(logger, event, level=level, **payload)


__all__ = [
    "emit_cancel_event",
    "emit_commit_event",
    "emit_dispatch_event",
    "emit_enqueue_event",
    "emit_retry_event",
    "emit_schedule_event",
    "emit_subtarget_event",
    "emit_timeout_event",
    "format_datetime",
]
