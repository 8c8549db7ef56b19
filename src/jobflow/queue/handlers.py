from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from jobflow.config import Settings
from jobflow.core.ingestion import ResumeIngestor
from jobflow.core.job_matcher import JobMatcher
from jobflow.core.letters import CoverLetterWriter
from jobflow.core.orchestrator import PipelineOrchestrator
from jobflow.db.repositories import Repository, posting_to_data, profile_to_data
from jobflow.errors import ValidationError, is_retryable
from jobflow.mail.mailer import Attachment, Mailer
from jobflow.queue.names import (
    APPLICATION_PIPELINE,
    COVER_LETTER_GENERATION,
    EMAIL_SENDING,
    JOB_SCRAPING,
    RESUME_PARSING,
)
from jobflow.queue.worker import Handler, JobContext

logger = logging.getLogger(__name__)


def _require_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if value is None:
        raise ValidationError(f"job payload missing {key!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"job payload {key!r} must be an integer") from exc


class QueueHandlers:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        settings: Settings,
        ingestor: ResumeIngestor,
        matcher: JobMatcher,
        writer: CoverLetterWriter,
        mailer: Mailer,
        orchestrator: PipelineOrchestrator,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.ingestor = ingestor
        self.matcher = matcher
        self.writer = writer
        self.mailer = mailer
        self.orchestrator = orchestrator

    def mapping(self) -> dict[str, Handler]:
        return {
            RESUME_PARSING: self.parse_resume,
            JOB_SCRAPING: self.scrape_jobs,
            COVER_LETTER_GENERATION: self.generate_cover_letter,
            EMAIL_SENDING: self.send_application,
            APPLICATION_PIPELINE: self.run_pipeline,
        }

    async def parse_resume(self, ctx: JobContext) -> dict[str, Any]:
        path = ctx.payload.get("path")
        if not path:
            raise ValidationError("resume job payload missing 'path'")

        file_path = Path(path)
        if not file_path.is_file():
            raise ValidationError(f"resume file {file_path} does not exist")

        raw = await asyncio.to_thread(file_path.read_bytes)
        await ctx.report_progress(30)
        result = await asyncio.to_thread(
            self.ingestor.ingest, raw, ctx.payload.get("filename") or file_path.name
        )
        await ctx.report_progress(100)
        return {"profile_id": result.profile.id, "cached": result.cached}

    async def scrape_jobs(self, ctx: JobContext) -> dict[str, Any]:
        keywords = ctx.payload.get("keywords") or self.settings.scrape_keyword_list
        location = ctx.payload.get("location")
        return await self.matcher.refresh(list(keywords), location)

    async def generate_cover_letter(self, ctx: JobContext) -> dict[str, Any]:
        profile_id = _require_int(ctx.payload, "profile_id")
        posting_id = _require_int(ctx.payload, "posting_id")
        return await asyncio.to_thread(self._generate, profile_id, posting_id)

    async def send_application(self, ctx: JobContext) -> dict[str, Any]:
        profile_id = _require_int(ctx.payload, "profile_id")
        posting_id = _require_int(ctx.payload, "posting_id")

        existing = await asyncio.to_thread(self._find_sent, profile_id, posting_id)
        if existing is not None:
            logger.info("Application already sent profile_id=%s posting_id=%s", profile_id, posting_id)
            return {"skipped": True, "application_id": existing, "reason": "already sent"}

        application_id, destination = await asyncio.to_thread(self._prepare_send, ctx.payload, profile_id, posting_id)
        try:
            delivery_id = await asyncio.to_thread(self._deliver, application_id, destination)
        except Exception as exc:
            status = "retrying" if is_retryable(exc) and not ctx.final_attempt else "failed"
            await asyncio.to_thread(self._mark, application_id, status, str(exc))
            raise

        if delivery_id is None:
            return {"skipped": True, "application_id": application_id, "reason": "already sent"}
        return {
            "application_id": application_id,
            "delivery_id": delivery_id,
            "status": "test_sent" if self.mailer.sandbox else "sent",
        }

    async def run_pipeline(self, ctx: JobContext) -> dict[str, Any]:
        run_id = _require_int(ctx.payload, "run_id")
        summary = await self.orchestrator.execute(run_id, progress=ctx.report_progress)
        return summary.model_dump(mode="json")

    # blocking helpers

    def _find_sent(self, profile_id: int, posting_id: int) -> int | None:
        with self.session_factory() as db:
            application = Repository(db).find_sent_application(profile_id, posting_id)
            return application.id if application else None

    def _generate(self, profile_id: int, posting_id: int) -> dict[str, Any]:
        with self.session_factory() as db:
            repo = Repository(db)
            profile = profile_to_data(repo.require_profile(profile_id))
            posting = posting_to_data(repo.require_posting(posting_id))
            if repo.find_sent_application(profile_id, posting_id) is not None:
                return {"skipped": True, "reason": "already sent"}

            text, strategy = self.writer.write(profile, posting)
            application = repo.save_generated_application(
                profile_id=profile_id,
                posting_id=posting_id,
                cover_letter=text,
                letter_strategy=strategy,
                email_to=posting.contact_email or self.settings.fallback_contact_email,
            )
            return {"application_id": application.id, "strategy": strategy}

    def _prepare_send(self, payload: dict[str, Any], profile_id: int, posting_id: int) -> tuple[int, str]:
        with self.session_factory() as db:
            repo = Repository(db)
            profile = profile_to_data(repo.require_profile(profile_id))
            posting = posting_to_data(repo.require_posting(posting_id))

            application = None
            if payload.get("application_id") is not None:
                application = repo.get_application(int(payload["application_id"]))
            if application is None or application.status not in ("generated", "pending", "retrying"):
                application = repo.find_open_application(profile_id, posting_id)
            if application is None:
                text, strategy = self.writer.write(profile, posting)
                application = repo.save_generated_application(
                    profile_id=profile_id,
                    posting_id=posting_id,
                    cover_letter=text,
                    letter_strategy=strategy,
                    email_to=posting.contact_email or "",
                )

            destination = (
                payload.get("email_to")
                or application.email_to
                or posting.contact_email
                or self.settings.fallback_contact_email
            )
            if not destination:
                repo.update_application(application.id, status="failed", error_message="no contact address")
                raise ValidationError(f"posting {posting_id} has no contact address")

            repo.update_application(application.id, status="pending", email_to=destination)
            return application.id, destination

    def _deliver(self, application_id: int, destination: str) -> str | None:
        with self.session_factory() as db:
            repo = Repository(db)
            application = repo.get_application(application_id)
            profile_row = repo.require_profile(application.profile_id)
            profile = profile_to_data(profile_row)
            posting = posting_to_data(repo.require_posting(application.posting_id))
            attachment = (
                Attachment(filename=profile_row.filename or "resume.pdf", content=profile_row.document)
                if profile_row.document
                else None
            )

        delivery_id = self.mailer.send(profile, posting, application.cover_letter, destination, attachment=attachment)
        status = "test_sent" if self.mailer.sandbox else "sent"

        with self.session_factory() as db:
            try:
                Repository(db).update_application(application_id, status=status, delivery_id=delivery_id)
            except IntegrityError:
                # another delivery of the same pair committed first
                db.rollback()
                logger.warning("Duplicate send detected application_id=%s", application_id)
                return None
        logger.info("Application delivered application_id=%s delivery_id=%s", application_id, delivery_id)
        return delivery_id

    def _mark(self, application_id: int, status: str, error: str) -> None:
        with self.session_factory() as db:
            Repository(db).update_application(application_id, status=status, error_message=error)
