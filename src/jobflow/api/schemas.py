from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from jobflow.types import CandidateProfileData, MatchResult, PostingData, RunError


class ResumeResponse(BaseModel):
    profile: CandidateProfileData
    cached: bool = False


class ResumeQueuedResponse(BaseModel):
    job_id: int
    queue: str


class MatchItemResponse(BaseModel):
    posting: PostingData
    match: MatchResult


class PipelineCreateRequest(BaseModel):
    profile_id: int
    posting_ids: list[int] = Field(default_factory=list)
    timeout_sec: float | None = Field(default=None, gt=0)


class PipelineResponse(BaseModel):
    run_id: int
    status: str
    profile_id: int
    total: int = 0
    matched: int = 0
    generated: int = 0
    sent: int = 0
    skipped: int = 0
    progress: int = 0
    errors: list[RunError] = Field(default_factory=list)
    posting_ids: list[int] = Field(default_factory=list)
    queue_job_id: int | None = None
    timeout_sec: float | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class QueueStateResponse(BaseModel):
    queue: str
    paused: bool


class QueueCleanRequest(BaseModel):
    grace_ms: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1, le=10_000)
    state: str = "completed"


class QueueCleanResponse(BaseModel):
    queue: str
    removed: int


class ApplicationResponse(BaseModel):
    id: int
    profile_id: int
    posting_id: int
    status: str
    email_to: str
    delivery_id: str
    letter_strategy: str
    error_message: str | None = None
    sent_at: str | None = None
    created_at: str | None = None


class SendApplicationRequest(BaseModel):
    profile_id: int
    posting_id: int
    email_to: str | None = None


class EnqueuedResponse(BaseModel):
    job_id: int
    queue: str
    data: dict[str, Any] = Field(default_factory=dict)
