"""Custom exceptions for viralyze."""

from __future__ import annotations

from typing import Any


class ViralyzeError(Exception):
    """Base exception for viralyze."""

    pass


# --- Fatal, run-aborting ---


class FatalRunError(ViralyzeError):
    """Condition that must stop the whole run."""

    pass


class CostCeilingExceededError(FatalRunError):
    """Booking another call would push cumulative spend past the ceiling."""

    def __init__(self, cumulative_cost: float, ceiling: float, attempted_cost: float) -> None:
        super().__init__(
            f"Cost ceiling of ${ceiling:.2f} reached "
            f"(cumulative ${cumulative_cost:.2f}, next call ${attempted_cost:.4f})"
        )
        self.cumulative_cost = cumulative_cost
        self.ceiling = ceiling
        self.attempted_cost = attempted_cost


class RunAbortedError(FatalRunError):
    """The orchestrator stopped before the backlog was drained."""

    def __init__(self, reason: str, report: Any = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.report = report


class HealthCheckFailedError(RunAbortedError):
    """Inference endpoint unreachable at run start."""

    pass


# --- Per-item ---


class ItemFailureError(ViralyzeError):
    """Failure scoped to a single work item."""

    pass


class TransientFailureError(ItemFailureError):
    """Retryable hiccup (rate limiting, unstructured response)."""

    def __init__(self, message: str, rate_limited: bool = False, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited
        self.retry_after = retry_after


class PermanentFailureError(ItemFailureError):
    """Definitive failure; retrying cannot help."""

    def __init__(self, message: str, kind: str = "permanent", raw_response: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.raw_response = raw_response


class RetriesExhaustedError(ItemFailureError):
    """Every allowed attempt failed transiently."""

    def __init__(self, attempts: int, last_error: Exception | None) -> None:
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


# --- Collaborators ---


class ProviderError(ViralyzeError):
    """Inference provider call failed."""

    def __init__(
        self,
        message: str,
        is_rate_limited: bool = False,
        status_code: int | None = None,
        retry_after: float | None = None,
        permanent: bool = False,
    ) -> None:
        super().__init__(message)
        self.is_rate_limited = is_rate_limited
        self.status_code = status_code
        self.retry_after = retry_after
        self.permanent = permanent

    @property
    def is_transient(self) -> bool:
        """Rate limits, server-side errors and dropped connections are worth retrying."""
        if self.is_rate_limited:
            return True
        if self.permanent:
            return False
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in (408, 409)


class MediaAnalysisError(ViralyzeError):
    """Video or image summarization failed."""

    pass


class StoreError(ViralyzeError):
    """Reading from or writing to the result store failed."""

    pass
