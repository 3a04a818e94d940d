"""Retry classification and per-kind retry policies."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from backoffice.config import EngineConfig
from backoffice.errors import JobSetupError
from backoffice.integrations.contracts import PlatformError
from backoffice.jobs.models import JobKind

RETRYABLE_KEYWORDS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "connection refused",
    "temporarily unavailable",
    "temporary unavailable",
    "rate limited",
    "server error",
)

_RETRYABLE_HTTPX_ERRORS = (httpx.TimeoutException, httpx.ConnectError)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Constant-delay retry policy for one job kind."""

    max_attempts: int
    delay_seconds: float


@dataclass(slots=True, frozen=True)
class RetryDecision:
    retry: bool
    delay_s: float
    retryable: bool
    reason: str


def is_retryable_error(error: BaseException) -> bool:
    """Return ``True`` when ``error`` describes a transient condition."""

    if isinstance(error, PlatformError):
        return error.retryable
    if isinstance(error, JobSetupError):
        return error.retryable
    if isinstance(error, _RETRYABLE_HTTPX_ERRORS):
        return True
    if isinstance(error, TimeoutError):
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in RETRYABLE_KEYWORDS)


def describe_error(error: BaseException, limit: int = 512) -> str:
    text = str(error).strip() or type(error).__name__
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


class RetryPolicyProvider:
    """Resolve retry policies for job kinds from the engine configuration."""

    def __init__(self, config: EngineConfig) -> None:
        self._policies: Mapping[JobKind, RetryPolicy] = {
            kind: RetryPolicy(
                max_attempts=config.for_kind(kind.value).max_attempts,
                delay_seconds=config.for_kind(kind.value).retry_delay_s,
            )
            for kind in JobKind
        }

    def get_retry_policy(self, kind: JobKind) -> RetryPolicy:
        return self._policies[kind]

    def decide(self, kind: JobKind, attempts: int, error: BaseException) -> RetryDecision:
        policy = self.get_retry_policy(kind)
        retryable = is_retryable_error(error)
        reason = describe_error(error)
        if not retryable:
            return RetryDecision(retry=False, delay_s=0.0, retryable=False, reason=reason)
        if attempts >= policy.max_attempts:
            return RetryDecision(retry=False, delay_s=0.0, retryable=True, reason=reason)
        return RetryDecision(
            retry=True,
            delay_s=max(0.0, policy.delay_seconds),
            retryable=True,
            reason=reason,
        )


__all__ = [
    "RETRYABLE_KEYWORDS",
    "RetryDecision",
    "RetryPolicy",
    "RetryPolicyProvider",
    "describe_error",
    "is_retryable_error",
]
