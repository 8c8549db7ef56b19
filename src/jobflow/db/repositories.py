from __future__ import annotations

import hashlib
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobflow.db.base import utcnow
from jobflow.db.models import (
    SENT_STATUSES,
    Application,
    CandidateProfile,
    JobPosting,
    PipelineRun,
)
from jobflow.errors import NotFoundError
from jobflow.types import CandidateProfileData, PostingData, ResumeExtraction, RunError, RunSummary

OPEN_APPLICATION_STATUSES = ("generated", "pending", "retrying")
RUN_COUNTERS = ("matched", "generated", "sent", "skipped")


def hash_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def profile_to_data(profile: CandidateProfile) -> CandidateProfileData:
    return CandidateProfileData(
        id=profile.id,
        content_hash=profile.content_hash,
        filename=profile.filename,
        name=profile.name,
        email=profile.email,
        phone=profile.phone,
        skills=list(profile.skills_json or []),
        years_of_experience=profile.years_of_experience,
        keywords=list(profile.keywords_json or []),
        experience_summary=profile.experience_summary,
        education=profile.education,
        created_at=profile.created_at,
    )


def posting_to_data(posting: JobPosting) -> PostingData:
    return PostingData(
        id=posting.id,
        title=posting.title,
        company=posting.company,
        location=posting.location,
        description=posting.description,
        url=posting.url,
        source=posting.source,
        contact_email=posting.contact_email,
        relevance_score=posting.relevance_score,
        recommendation=posting.recommendation,
    )


class Repository:
    def __init__(self, session: Session):
        self.session = session

    # profiles

    def get_profile(self, profile_id: int) -> CandidateProfile | None:
        return self.session.get(CandidateProfile, profile_id)

    def require_profile(self, profile_id: int) -> CandidateProfile:
        profile = self.get_profile(profile_id)
        if profile is None:
            raise NotFoundError(f"profile {profile_id} not found")
        return profile

    def get_profile_by_hash(self, content_hash: str) -> CandidateProfile | None:
        return self.session.scalar(select(CandidateProfile).where(CandidateProfile.content_hash == content_hash))

    def create_profile(
        self,
        *,
        content_hash: str,
        filename: str,
        resume_text: str,
        document: bytes | None,
        extraction: ResumeExtraction,
    ) -> CandidateProfile:
        profile = CandidateProfile(
            content_hash=content_hash,
            filename=filename,
            resume_text=resume_text,
            document=document,
            name=extraction.name,
            email=extraction.email,
            phone=extraction.phone,
            skills_json=list(extraction.skills),
            years_of_experience=extraction.years_of_experience,
            keywords_json=list(extraction.keywords),
            experience_summary=extraction.experience,
            education=extraction.education,
        )
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        return profile

    def list_profiles(self) -> list[CandidateProfile]:
        return list(self.session.scalars(select(CandidateProfile).order_by(CandidateProfile.id.desc())).all())

    def delete_profile(self, profile_id: int) -> None:
        profile = self.require_profile(profile_id)
        self.session.delete(profile)
        self.session.commit()

    # postings

    def get_posting(self, posting_id: int) -> JobPosting | None:
        return self.session.get(JobPosting, posting_id)

    def require_posting(self, posting_id: int) -> JobPosting:
        posting = self.get_posting(posting_id)
        if posting is None:
            raise NotFoundError(f"posting {posting_id} not found")
        return posting

    def find_posting_by_url(self, source: str, url: str) -> JobPosting | None:
        return self.session.scalar(select(JobPosting).where(JobPosting.source == source, JobPosting.url == url))

    def upsert_posting(self, data: PostingData) -> JobPosting:
        existing = None
        if data.id is not None:
            existing = self.session.get(JobPosting, data.id)
        elif data.url:
            existing = self.find_posting_by_url(data.source, data.url)

        values = data.model_dump(exclude={"id"})
        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
            posting = existing
        else:
            posting = JobPosting(**values)
            self.session.add(posting)

        self.session.commit()
        self.session.refresh(posting)
        return posting

    def list_postings(self, *, min_score: int = 0, limit: int = 50) -> list[JobPosting]:
        statement = (
            select(JobPosting)
            .where(JobPosting.relevance_score >= min_score)
            .order_by(JobPosting.relevance_score.desc(), JobPosting.id.asc())
            .limit(limit)
        )
        return list(self.session.scalars(statement).all())

    # applications

    def find_sent_application(self, profile_id: int, posting_id: int) -> Application | None:
        statement = select(Application).where(
            Application.profile_id == profile_id,
            Application.posting_id == posting_id,
            Application.status.in_(SENT_STATUSES),
        )
        return self.session.scalar(statement)

    def find_open_application(self, profile_id: int, posting_id: int) -> Application | None:
        statement = (
            select(Application)
            .where(
                Application.profile_id == profile_id,
                Application.posting_id == posting_id,
                Application.status.in_(OPEN_APPLICATION_STATUSES),
            )
            .order_by(Application.id.desc())
        )
        return self.session.scalar(statement)

    def get_application(self, application_id: int) -> Application | None:
        return self.session.get(Application, application_id)

    def save_generated_application(
        self,
        *,
        profile_id: int,
        posting_id: int,
        cover_letter: str,
        letter_strategy: str,
        email_to: str,
    ) -> Application:
        application = self.find_open_application(profile_id, posting_id)
        if application is None:
            application = Application(profile_id=profile_id, posting_id=posting_id)
            self.session.add(application)

        application.cover_letter = cover_letter
        application.letter_strategy = letter_strategy
        application.email_to = email_to
        application.status = "generated"
        application.error_message = None
        self.session.commit()
        self.session.refresh(application)
        return application

    def update_application(
        self,
        application_id: int,
        *,
        status: str,
        error_message: str | None = None,
        delivery_id: str | None = None,
        email_to: str | None = None,
    ) -> Application:
        application = self.session.get(Application, application_id)
        if application is None:
            raise NotFoundError(f"application {application_id} not found")

        application.status = status
        application.error_message = error_message
        if delivery_id is not None:
            application.delivery_id = delivery_id
        if email_to is not None:
            application.email_to = email_to
        if status in SENT_STATUSES:
            application.sent_at = utcnow()

        self.session.commit()
        self.session.refresh(application)
        return application

    def list_applications(self, *, profile_id: int | None = None, limit: int = 100) -> list[Application]:
        statement = select(Application).order_by(Application.created_at.desc(), Application.id.desc()).limit(limit)
        if profile_id is not None:
            statement = statement.where(Application.profile_id == profile_id)
        return list(self.session.scalars(statement).all())

    # pipeline runs

    def create_run(self, *, profile_id: int, posting_ids: list[int], timeout_sec: float) -> PipelineRun:
        run = PipelineRun(
            profile_id=profile_id,
            posting_ids_json=list(posting_ids),
            status="started",
            timeout_sec=timeout_sec,
            started_at=utcnow(),
        )
        self.session.add(run)
        self.session.commit()
        self.session.refresh(run)
        return run

    def get_run(self, run_id: int) -> PipelineRun | None:
        return self.session.get(PipelineRun, run_id)

    def require_run(self, run_id: int) -> PipelineRun:
        run = self.get_run(run_id)
        if run is None:
            raise NotFoundError(f"pipeline run {run_id} not found")
        return run

    def update_run(
        self,
        run_id: int,
        *,
        status: str | None = None,
        progress: int | None = None,
        queue_job_id: int | None = None,
        summary: dict[str, Any] | None = None,
        completed: bool = False,
    ) -> PipelineRun:
        run = self.require_run(run_id)
        if summary is not None:
            run.summary_json = summary
        if status is not None:
            run.status = status
        if progress is not None:
            run.progress = max(run.progress, progress)
        if queue_job_id is not None:
            run.queue_job_id = queue_job_id
        if completed:
            run.completed_at = utcnow()

        self.session.commit()
        self.session.refresh(run)
        return run

    def set_run_counters(self, run_id: int, *, total: int | None = None, **counters: int) -> PipelineRun:
        run = self.require_run(run_id)
        if total is not None:
            if total < run.total:
                raise ValueError(f"run {run_id} total cannot shrink from {run.total} to {total}")
            run.total = total

        for name, value in counters.items():
            if name not in RUN_COUNTERS:
                raise ValueError(f"unknown run counter {name!r}")
            current = getattr(run, name)
            if value < current:
                raise ValueError(f"run {run_id} counter {name} cannot regress from {current} to {value}")
            if value > run.total:
                raise ValueError(f"run {run_id} counter {name}={value} exceeds total {run.total}")
            setattr(run, name, value)

        self.session.commit()
        self.session.refresh(run)
        return run

    def advance_run_counters(self, run_id: int, **counters: int) -> PipelineRun:
        """Set counters to the larger of the stored and given values."""
        run = self.require_run(run_id)
        raised = {name: max(value, getattr(run, name, 0)) for name, value in counters.items()}
        return self.set_run_counters(run_id, **raised)

    def append_run_error(self, run_id: int, error: RunError) -> PipelineRun:
        run = self.require_run(run_id)
        run.errors_json = [*(run.errors_json or []), error.model_dump()]
        self.session.commit()
        self.session.refresh(run)
        return run

    def list_runs(self, limit: int = 50) -> list[PipelineRun]:
        statement = select(PipelineRun).order_by(PipelineRun.started_at.desc()).limit(limit)
        return list(self.session.scalars(statement).all())


def run_to_summary(run: PipelineRun) -> RunSummary:
    return RunSummary(
        run_id=run.id,
        status=run.status,
        profile_id=run.profile_id,
        matched=run.matched,
        generated=run.generated,
        sent=run.sent,
        skipped=run.skipped,
        errors=[RunError.model_validate(item) for item in run.errors_json or []],
        started_at=run.started_at,
        completed_at=run.completed_at,
    )


def serialize_application(application: Application) -> dict[str, Any]:
    return {
        "id": application.id,
        "profile_id": application.profile_id,
        "posting_id": application.posting_id,
        "status": application.status,
        "email_to": application.email_to,
        "delivery_id": application.delivery_id,
        "letter_strategy": application.letter_strategy,
        "error_message": application.error_message,
        "sent_at": application.sent_at.isoformat() if application.sent_at else None,
        "created_at": application.created_at.isoformat() if application.created_at else None,
    }
