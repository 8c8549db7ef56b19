from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

Recommendation = Literal["Apply", "Maybe", "Skip"]
BackoffType = Literal["fixed", "exponential"]
JobState = Literal["waiting", "delayed", "active", "completed", "failed"]
RunStatus = Literal["started", "matching", "generating", "sending", "completed", "failed", "timed-out"]


class ResumeExtraction(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    skills: list[str] = Field(default_factory=list)
    experience: str = ""
    education: str = ""
    years_of_experience: float | None = None
    keywords: list[str] = Field(default_factory=list)

    @field_validator("years_of_experience", mode="before")
    @classmethod
    def coerce_years(cls, value: Any) -> float | None:
        if value is None or value == "":
            return None
        if isinstance(value, (int, float)):
            return float(value)
        digits = "".join(ch for ch in str(value) if ch.isdigit() or ch == ".")
        try:
            return float(digits) if digits else None
        except ValueError:
            return None


class CandidateProfileData(BaseModel):
    id: int
    content_hash: str
    filename: str = ""
    name: str = ""
    email: str = ""
    phone: str = ""
    skills: list[str] = Field(default_factory=list)
    years_of_experience: float | None = None
    keywords: list[str] = Field(default_factory=list)
    experience_summary: str = ""
    education: str = ""
    created_at: datetime | None = None

    @property
    def search_terms(self) -> list[str]:
        seen: dict[str, None] = {}
        for term in [*self.keywords, *self.skills]:
            if term and term not in seen:
                seen[term] = None
        return list(seen)


class PostingData(BaseModel):
    title: str
    company: str = ""
    location: str = ""
    description: str = ""
    url: str = ""
    source: str = "manual"
    contact_email: str | None = None
    relevance_score: int = 0
    recommendation: Recommendation | None = None
    id: int | None = None

    @field_validator("relevance_score")
    @classmethod
    def validate_score(cls, value: int) -> int:
        if value < 0 or value > 100:
            raise ValueError("relevance_score must be between 0 and 100")
        return value

    @property
    def match_text(self) -> str:
        return f"{self.title} {self.company} {self.description}"


class MatchResult(BaseModel):
    score: int = 0
    recommendation: Recommendation = "Skip"
    matching_skills: list[str] = Field(default_factory=list)
    missing_skills: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("score")
    @classmethod
    def validate_score(cls, value: int) -> int:
        if value < 0 or value > 100:
            raise ValueError("score must be between 0 and 100")
        return value


class StackDetection(BaseModel):
    stack: str
    confidence: int
    matches: list[str] = Field(default_factory=list)


class TechStackResult(BaseModel):
    score: int = 0
    recommendation: Recommendation = "Skip"
    primary_match: bool = False
    compatible_match: bool = False
    matched_stacks: list[str] = Field(default_factory=list)
    missing_stacks: list[str] = Field(default_factory=list)
    transferable_skills: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    job_stacks: list[str] = Field(default_factory=list)
    user_stacks: list[str] = Field(default_factory=list)


class BackoffPolicy(BaseModel):
    type: BackoffType = "fixed"
    delay_ms: int = 0

    def delay_for(self, attempts_made: int) -> int:
        if self.type == "exponential":
            return self.delay_ms * 2 ** max(0, attempts_made - 1)
        return self.delay_ms


class RemovalPolicy(BaseModel):
    age_sec: int | None = None
    count: int | None = None


class JobOptions(BaseModel):
    priority: int = 0
    delay_ms: int = 0
    attempts: int = 1
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    remove_on_complete: bool | RemovalPolicy = False
    remove_on_fail: bool | RemovalPolicy = False
    job_key: str | None = None
    name: str = ""

    @field_validator("attempts")
    @classmethod
    def validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("attempts must be at least 1")
        return value

    @field_validator("delay_ms")
    @classmethod
    def validate_delay(cls, value: int) -> int:
        if value < 0:
            raise ValueError("delay_ms must not be negative")
        return value


class QueueStats(BaseModel):
    active: int = 0
    waiting: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: int = 0


class JobInfo(BaseModel):
    id: int
    queue: str
    name: str
    state: JobState
    data: dict[str, Any] = Field(default_factory=dict)
    progress: int = 0
    attempts_made: int = 0
    max_attempts: int = 1
    failed_reason: str | None = None
    result: dict[str, Any] | None = None
    timestamp: datetime | None = None
    processed_on: datetime | None = None
    finished_on: datetime | None = None


class RunError(BaseModel):
    step: str
    error: str
    posting_id: int | None = None


class RunSummary(BaseModel):
    run_id: int
    status: RunStatus
    profile_id: int
    matched: int = 0
    generated: int = 0
    sent: int = 0
    skipped: int = 0
    errors: list[RunError] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
