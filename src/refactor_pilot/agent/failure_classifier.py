"""Deterministic classification of failed agent calls."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
    "exceeded",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "invalid api key",
    "authentication",
    "not logged in",
    "please log in",
    "restricted token",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
    "not available in your region",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "please retry",
    "try again later",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "network error",
    "could not resolve host",
    "overloaded",
)
_WRITE_BLOCK_MARKERS: tuple[str, ...] = (
    "workspace is running read-only",
    "outside-write project context",
    "file writes are blocked",
    "blocked on write operations",
    "write access is available",
    "cannot apply any edits",
    "can't apply any edits",
    "can’t apply any edits",
    "non-writable from the sandbox policy",
)


class FailureClass(str, Enum):
    """Failure categories reported for unsuccessful agent calls."""

    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    TRANSIENT = "transient"
    NON_RETRYABLE = "non_retryable"


@dataclass(slots=True)
class AgentFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_pattern: str | None

    @property
    def transient(self) -> bool:
        return self.failure_class is FailureClass.TRANSIENT


def classify_agent_failure(*, provider: str, output: str) -> AgentFailureClassification:
    """Classify a non-timeout failure from the combined agent output."""

    haystack = output.lower()
    for failure_class, patterns in (
        (FailureClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
        (FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
        (FailureClass.TRANSIENT, _TRANSIENT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return AgentFailureClassification(
                failure_class=failure_class,
                reason_code=f"{provider}_{failure_class.value}",
                matched_pattern=pattern,
            )
    return AgentFailureClassification(
        failure_class=FailureClass.NON_RETRYABLE,
        reason_code=f"{provider}_{FailureClass.NON_RETRYABLE.value}",
        matched_pattern=None,
    )


def has_write_block_signal(output: str, *, status_prefix: str) -> bool:
    """Return True when the agent reports it could not write in its sandbox."""

    lower = output.lower()
    if _first_match(lower, _WRITE_BLOCK_MARKERS) is not None:
        return True
    read_only_sandbox = "sandbox: read-only" in lower or "read-only sandbox" in lower
    return read_only_sandbox and f"{status_prefix.lower()}: continue" in lower


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
