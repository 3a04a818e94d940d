"""Error hierarchy for the back office job engine."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes attached to engine exceptions."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SETUP_ERROR = "SETUP_ERROR"
    REPORT_FORMAT_ERROR = "REPORT_FORMAT_ERROR"
    REPORT_VALIDATION_ERROR = "REPORT_VALIDATION_ERROR"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(Exception):
    """Base exception for engine specific errors."""

    __slots__ = ("message", "code", "meta")

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.meta = dict(meta) if meta is not None else None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.meta:
            payload["meta"] = dict(self.meta)
        return payload


class JobValidationError(AppError):
    """Raised by ``enqueue`` when a payload or priority is rejected."""

    def __init__(self, message: str, *, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION_ERROR, meta=meta)


class ConfigurationError(AppError):
    """Raised at startup when the engine wiring is inconsistent."""

    def __init__(self, message: str, *, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(message, code=ErrorCode.CONFIGURATION_ERROR, meta=meta)


class JobSetupError(AppError):
    """Job level failure raised before or around the sub-target calls."""

    __slots__ = ("retryable",)

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        code: ErrorCode = ErrorCode.SETUP_ERROR,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, meta=meta)
        self.retryable = retryable


class ReportFormatError(JobSetupError):
    """The acquired report does not match the declared format."""

    def __init__(self, message: str, *, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(
            message,
            retryable=False,
            code=ErrorCode.REPORT_FORMAT_ERROR,
            meta=meta,
        )


class ReportValidationError(JobSetupError):
    """The parsed report contains no usable line items."""

    def __init__(self, message: str, *, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(
            message,
            retryable=False,
            code=ErrorCode.REPORT_VALIDATION_ERROR,
            meta=meta,
        )


class InvalidTransitionError(AppError):
    """Raised when a job record is moved along an edge the lifecycle forbids."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Job {job_id} cannot move from {current} to {target}",
            code=ErrorCode.INVALID_TRANSITION,
            meta={"job_id": job_id, "from": current, "to": target},
        )
        self.job_id = job_id
        self.current = current
        self.target = target


__all__ = [
    "AppError",
    "ConfigurationError",
    "ErrorCode",
    "InvalidTransitionError",
    "JobSetupError",
    "JobValidationError",
    "ReportFormatError",
    "ReportValidationError",
]
