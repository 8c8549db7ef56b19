from __future__ import annotations

from dataclasses import dataclass

RESUME_PARSING = "resume-parsing"
JOB_SCRAPING = "job-scraping"
COVER_LETTER_GENERATION = "cover-letter-generation"
EMAIL_SENDING = "email-sending"
APPLICATION_PIPELINE = "application-pipeline"

QUEUE_NAMES: tuple[str, ...] = (
    RESUME_PARSING,
    JOB_SCRAPING,
    COVER_LETTER_GENERATION,
    EMAIL_SENDING,
    APPLICATION_PIPELINE,
)


@dataclass(frozen=True, slots=True)
class RateLimit:
    max_jobs: int
    duration_ms: int


@dataclass(frozen=True, slots=True)
class QueueConfig:
    concurrency: int = 1
    limiter: RateLimit | None = None
    lease_ms: int = 30_000
    stalled_interval_ms: int = 30_000
    poll_interval_sec: float = 1.0


DEFAULT_CONFIGS: dict[str, QueueConfig] = {
    RESUME_PARSING: QueueConfig(concurrency=2, limiter=RateLimit(max_jobs=10, duration_ms=60_000)),
    JOB_SCRAPING: QueueConfig(concurrency=1, limiter=RateLimit(max_jobs=10, duration_ms=60_000)),
    COVER_LETTER_GENERATION: QueueConfig(concurrency=2),
    EMAIL_SENDING: QueueConfig(concurrency=1, limiter=RateLimit(max_jobs=5, duration_ms=60_000)),
    APPLICATION_PIPELINE: QueueConfig(concurrency=2),
}
