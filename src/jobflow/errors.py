from __future__ import annotations


class JobflowError(Exception):
    """Base class for errors raised by jobflow services."""


class ValidationError(JobflowError):
    """Malformed input such as an empty upload. Never retried."""


class NotFoundError(JobflowError):
    """A referenced profile, posting, run or queue does not exist."""


class UnknownQueueError(NotFoundError):
    def __init__(self, name: str):
        super().__init__(f"queue {name!r} not found")
        self.name = name


class ExtractionError(JobflowError):
    """Document content was unreadable or empty."""


class TransientInfraError(JobflowError):
    """Timeout, refused connection or rate limit signal. Retried by the broker."""

    def __init__(self, message: str, *, retry_after_ms: int | None = None):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class DeliveryFailed(JobflowError):
    """A send that exhausted its attempts or can never succeed."""


class ScoringDegraded(JobflowError):
    """The preferred external scorer is unavailable; callers fall back locally."""


class PipelineTimeout(JobflowError):
    def __init__(self, run_id: int, timeout_sec: float):
        super().__init__(f"pipeline run {run_id} exceeded {timeout_sec:g}s")
        self.run_id = run_id
        self.timeout_sec = timeout_sec


PERMANENT_ERRORS: tuple[type[Exception], ...] = (
    ValidationError,
    NotFoundError,
    ExtractionError,
    DeliveryFailed,
)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, PERMANENT_ERRORS):
        return False
    return True
