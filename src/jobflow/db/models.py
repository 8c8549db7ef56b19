from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from jobflow.db.base import Base, TimestampMixin, utcnow

SENT_STATUSES = ("sent", "test_sent")
_SENT_PREDICATE = text("status IN ('sent', 'test_sent')")


class CandidateProfile(TimestampMixin, Base):
    __tablename__ = "candidate_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    filename: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    resume_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    document: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    email: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    phone: Mapped[str] = mapped_column(String(60), default="", nullable=False)
    skills_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    years_of_experience: Mapped[float | None] = mapped_column(Float, nullable=True)
    keywords_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    experience_summary: Mapped[str] = mapped_column(Text, default="", nullable=False)
    education: Mapped[str] = mapped_column(Text, default="", nullable=False)


class JobPosting(TimestampMixin, Base):
    __tablename__ = "job_postings"
    __table_args__ = (Index("ix_job_postings_source_url", "source", "url"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    location: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    url: Mapped[str] = mapped_column(String(800), default="", nullable=False)
    source: Mapped[str] = mapped_column(String(120), default="manual", nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    relevance_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    recommendation: Mapped[str | None] = mapped_column(String(20), nullable=True)


class Application(TimestampMixin, Base):
    __tablename__ = "applications"
    __table_args__ = (
        Index(
            "uq_applications_sent_pair",
            "profile_id",
            "posting_id",
            unique=True,
            sqlite_where=_SENT_PREDICATE,
            postgresql_where=_SENT_PREDICATE,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    profile_id: Mapped[int] = mapped_column(
        ForeignKey("candidate_profiles.id", ondelete="CASCADE"), index=True
    )
    posting_id: Mapped[int] = mapped_column(ForeignKey("job_postings.id", ondelete="CASCADE"), index=True)
    cover_letter: Mapped[str] = mapped_column(Text, default="", nullable=False)
    letter_strategy: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    status: Mapped[str] = mapped_column(String(40), default="pending", nullable=False)
    email_to: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    delivery_id: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class PipelineRun(TimestampMixin, Base):
    __tablename__ = "pipeline_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    profile_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    posting_ids_json: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(40), default="started", nullable=False)
    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    matched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    generated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    timeout_sec: Mapped[float] = mapped_column(Float, default=1800.0, nullable=False)
    queue_job_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    summary_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class QueueJob(TimestampMixin, Base):
    __tablename__ = "queue_jobs"
    __table_args__ = (
        Index("ix_queue_jobs_dispatch", "queue", "state", "priority", "run_at"),
        Index("ix_queue_jobs_key", "queue", "job_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    queue: Mapped[str] = mapped_column(String(80), nullable=False)
    name: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    job_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    state: Mapped[str] = mapped_column(String(20), default="waiting", nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    attempts_made: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    backoff_type: Mapped[str] = mapped_column(String(20), default="fixed", nullable=False)
    backoff_delay_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remove_on_complete_json: Mapped[Any] = mapped_column(JSON, default=False, nullable=False)
    remove_on_fail_json: Mapped[Any] = mapped_column(JSON, default=False, nullable=False)
    lease_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lease_owner: Mapped[str | None] = mapped_column(String(120), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    stalled_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    result_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    failed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class QueueState(TimestampMixin, Base):
    __tablename__ = "queue_states"
    __table_args__ = (UniqueConstraint("name", name="uq_queue_states_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
