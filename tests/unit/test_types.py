from __future__ import annotations

import pydantic
import pytest

from jobflow.errors import (
    DeliveryFailed,
    NotFoundError,
    TransientInfraError,
    UnknownQueueError,
    ValidationError,
    is_retryable,
)
from jobflow.types import BackoffPolicy, JobOptions, MatchResult, PostingData, ResumeExtraction


def test_backoff_delays() -> None:
    fixed = BackoffPolicy(type="fixed", delay_ms=60_000)
    exponential = BackoffPolicy(type="exponential", delay_ms=100)

    assert [fixed.delay_for(attempt) for attempt in (1, 2, 3)] == [60_000, 60_000, 60_000]
    assert [exponential.delay_for(attempt) for attempt in (1, 2, 3)] == [100, 200, 400]


def test_job_options_validation() -> None:
    with pytest.raises(pydantic.ValidationError):
        JobOptions(attempts=0)
    with pytest.raises(pydantic.ValidationError):
        JobOptions(delay_ms=-1)


def test_scores_must_stay_in_range() -> None:
    with pytest.raises(pydantic.ValidationError):
        MatchResult(score=101)
    with pytest.raises(pydantic.ValidationError):
        PostingData(title="Engineer", relevance_score=-1)


def test_years_of_experience_coercion() -> None:
    assert ResumeExtraction(years_of_experience="5+ years").years_of_experience == 5.0
    assert ResumeExtraction(years_of_experience="").years_of_experience is None
    assert ResumeExtraction(years_of_experience=3).years_of_experience == 3.0


def test_error_classification() -> None:
    assert is_retryable(TransientInfraError("timeout"))
    assert is_retryable(RuntimeError("unexpected"))
    assert not is_retryable(ValidationError("empty"))
    assert not is_retryable(DeliveryFailed("550"))
    assert not is_retryable(UnknownQueueError("missing"))
    assert isinstance(UnknownQueueError("missing"), NotFoundError)
