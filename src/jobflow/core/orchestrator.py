from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from jobflow.config import Settings, get_settings
from jobflow.core.job_matcher import JobMatcher
from jobflow.core.letters import CoverLetterWriter
from jobflow.db.repositories import Repository, posting_to_data, profile_to_data, run_to_summary
from jobflow.errors import NotFoundError, PipelineTimeout
from jobflow.queue.broker import SqlBroker
from jobflow.queue.names import APPLICATION_PIPELINE, EMAIL_SENDING
from jobflow.types import BackoffPolicy, CandidateProfileData, JobOptions, PostingData, RunError, RunSummary

logger = logging.getLogger(__name__)

ProgressCallback = Callable[..., Awaitable[None]]

TERMINAL_RUN_STATUSES = frozenset({"completed", "failed", "timed-out"})

PIPELINE_JOB_OPTIONS = JobOptions(name="application-pipeline", attempts=1)
EMAIL_JOB_OPTIONS = JobOptions(
    name="send-application",
    priority=0,
    delay_ms=5_000,
    attempts=5,
    backoff=BackoffPolicy(type="fixed", delay_ms=60_000),
)


@dataclass(slots=True)
class _Generated:
    application_id: int
    posting: PostingData


class PipelineOrchestrator:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        broker: SqlBroker,
        matcher: JobMatcher,
        writer: CoverLetterWriter,
        *,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.broker = broker
        self.matcher = matcher
        self.writer = writer
        self.settings = settings or get_settings()
        self.sleep = sleep

    def create_run(
        self,
        profile_id: int,
        posting_ids: list[int] | None = None,
        timeout_sec: float | None = None,
    ) -> RunSummary:
        with self.session_factory() as db:
            repo = Repository(db)
            repo.require_profile(profile_id)
            run = repo.create_run(
                profile_id=profile_id,
                posting_ids=list(posting_ids or []),
                timeout_sec=timeout_sec or self.settings.pipeline_timeout_sec,
            )

        job_id = self.broker.enqueue(APPLICATION_PIPELINE, {"run_id": run.id}, PIPELINE_JOB_OPTIONS)
        with self.session_factory() as db:
            run = Repository(db).update_run(run.id, queue_job_id=job_id)
            logger.info("Pipeline run created run_id=%s profile_id=%s job_id=%s", run.id, profile_id, job_id)
            return run_to_summary(run)

    def get_run(self, run_id: int) -> RunSummary:
        with self.session_factory() as db:
            return run_to_summary(Repository(db).require_run(run_id))

    def get_run_details(self, run_id: int) -> dict[str, Any]:
        with self.session_factory() as db:
            run = Repository(db).require_run(run_id)
            return {
                **run_to_summary(run).model_dump(mode="json"),
                "total": run.total,
                "progress": run.progress,
                "posting_ids": list(run.posting_ids_json or []),
                "queue_job_id": run.queue_job_id,
                "timeout_sec": run.timeout_sec,
            }

    async def execute(self, run_id: int, progress: ProgressCallback | None = None) -> RunSummary:
        run = await asyncio.to_thread(self.get_run_details, run_id)
        if run["status"] in TERMINAL_RUN_STATUSES:
            logger.info("Pipeline run_id=%s already %s, not re-running", run_id, run["status"])
            return await asyncio.to_thread(self.get_run, run_id)

        timeout = float(run["timeout_sec"])
        try:
            await asyncio.wait_for(self._run_steps(run_id, progress), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Pipeline run timed out run_id=%s after %ss", run_id, timeout)
            await asyncio.to_thread(self._record_error, run_id, RunError(step="pipeline", error="timed out"))
            await asyncio.to_thread(self._finish, run_id, "timed-out")
            raise PipelineTimeout(run_id, timeout) from None
        except Exception as exc:
            if isinstance(exc, NotFoundError):
                logger.error("Pipeline run failed run_id=%s: %s", run_id, exc)
            else:
                logger.exception("Pipeline run crashed run_id=%s", run_id)
            await asyncio.to_thread(self._record_error, run_id, RunError(step="pipeline", error=str(exc)))
            await asyncio.to_thread(self._finish, run_id, "failed")
            raise
        return await asyncio.to_thread(self.get_run, run_id)

    async def _run_steps(self, run_id: int, progress: ProgressCallback | None) -> None:
        await self._report(run_id, progress, 10, "started")
        profile = await asyncio.to_thread(self._load_profile, run_id)

        await self._set_status(run_id, "matching")
        await self._report(run_id, progress, 30, "matching")
        postings = await self._select_postings(run_id, profile)
        await asyncio.to_thread(self._counters, run_id, total=len(postings), matched=len(postings))
        logger.info("Pipeline run_id=%s matched %d posting(s)", run_id, len(postings))

        await self._set_status(run_id, "generating")
        await self._report(run_id, progress, 50, "generating")
        generated = await self._generate(run_id, profile, postings, progress)

        await self._set_status(run_id, "sending")
        await self._report(run_id, progress, 80, "sending")
        await self._enqueue_sends(run_id, profile, generated)

        summary = await asyncio.to_thread(self._finish, run_id, "completed")
        await self._report(run_id, progress, 100, "completed")
        logger.info(
            "Pipeline completed run_id=%s generated=%s sent=%s skipped=%s errors=%s",
            run_id,
            summary.generated,
            summary.sent,
            summary.skipped,
            len(summary.errors),
        )

    async def _select_postings(self, run_id: int, profile: CandidateProfileData) -> list[PostingData]:
        details = await asyncio.to_thread(self.get_run_details, run_id)
        posting_ids = details["posting_ids"]
        if posting_ids:
            return await asyncio.to_thread(self._load_postings, run_id, posting_ids)

        scored = await self.matcher.match(profile.id)
        selected = [item.posting for item in scored if item.match.score > self.settings.pipeline_min_score]
        return selected[: self.settings.pipeline_max_postings]

    async def _generate(
        self,
        run_id: int,
        profile: CandidateProfileData,
        postings: list[PostingData],
        progress: ProgressCallback | None,
    ) -> list[_Generated]:
        generated: list[_Generated] = []
        skipped = 0
        total = len(postings)
        for index, posting in enumerate(postings):
            await self._report(run_id, progress, 50 + int(20 * index / total), "generating")
            if index > 0 and self.settings.pipeline_pacing_sec > 0:
                await self.sleep(self.settings.pipeline_pacing_sec)

            if await asyncio.to_thread(self._already_sent, profile.id, posting.id):
                skipped += 1
                await asyncio.to_thread(self._counters, run_id, skipped=skipped)
                logger.info("Skipping already sent pair profile_id=%s posting_id=%s", profile.id, posting.id)
                continue

            try:
                text, strategy = await asyncio.to_thread(self.writer.write, profile, posting)
                application_id = await asyncio.to_thread(self._save_letter, profile, posting, text, strategy)
            except Exception as exc:
                logger.warning("Cover letter failed run_id=%s posting_id=%s: %s", run_id, posting.id, exc)
                await asyncio.to_thread(
                    self._record_error,
                    run_id,
                    RunError(step="cover_letter_generation", error=str(exc), posting_id=posting.id),
                )
                continue

            generated.append(_Generated(application_id=application_id, posting=posting))
            await asyncio.to_thread(self._counters, run_id, generated=len(generated))
        return generated

    async def _enqueue_sends(self, run_id: int, profile: CandidateProfileData, generated: list[_Generated]) -> None:
        sent = 0
        for item in generated:
            destination = item.posting.contact_email or self.settings.fallback_contact_email
            if not destination:
                await asyncio.to_thread(
                    self._record_error,
                    run_id,
                    RunError(step="email_queueing", error="no contact address", posting_id=item.posting.id),
                )
                continue

            payload = {
                "run_id": run_id,
                "application_id": item.application_id,
                "profile_id": profile.id,
                "posting_id": item.posting.id,
                "email_to": destination,
            }
            options = EMAIL_JOB_OPTIONS.model_copy(update={"job_key": f"send:{profile.id}:{item.posting.id}"})
            try:
                await asyncio.to_thread(self.broker.enqueue, EMAIL_SENDING, payload, options)
            except Exception as exc:
                logger.warning("Failed to queue send run_id=%s posting_id=%s: %s", run_id, item.posting.id, exc)
                await asyncio.to_thread(
                    self._record_error,
                    run_id,
                    RunError(step="email_queueing", error=str(exc), posting_id=item.posting.id),
                )
                continue

            sent += 1
            await asyncio.to_thread(self._counters, run_id, sent=sent)

    async def _report(self, run_id: int, progress: ProgressCallback | None, value: int, stage: str) -> None:
        await asyncio.to_thread(self._update_run, run_id, progress=value)
        if progress is not None:
            await progress(value, stage=stage, run_id=run_id)

    async def _set_status(self, run_id: int, status: str) -> None:
        await asyncio.to_thread(self._update_run, run_id, status=status)

    # blocking store helpers, run via asyncio.to_thread

    def _update_run(self, run_id: int, **changes: Any) -> None:
        with self.session_factory() as db:
            Repository(db).update_run(run_id, **changes)

    def _counters(self, run_id: int, **counters: int) -> None:
        with self.session_factory() as db:
            Repository(db).advance_run_counters(run_id, **counters)

    def _record_error(self, run_id: int, error: RunError) -> None:
        with self.session_factory() as db:
            Repository(db).append_run_error(run_id, error)

    def _finish(self, run_id: int, status: str) -> RunSummary:
        with self.session_factory() as db:
            repo = Repository(db)
            run = repo.update_run(run_id, status=status, completed=True)
            summary = run_to_summary(run)
            run = repo.update_run(run_id, summary=summary.model_dump(mode="json"))
            return run_to_summary(run)

    def _load_profile(self, run_id: int) -> CandidateProfileData:
        with self.session_factory() as db:
            repo = Repository(db)
            run = repo.require_run(run_id)
            return profile_to_data(repo.require_profile(run.profile_id))

    def _load_postings(self, run_id: int, posting_ids: list[int]) -> list[PostingData]:
        postings: list[PostingData] = []
        with self.session_factory() as db:
            repo = Repository(db)
            for posting_id in posting_ids:
                posting = repo.get_posting(posting_id)
                if posting is None:
                    repo.append_run_error(
                        run_id,
                        RunError(step="matching", error=f"posting {posting_id} not found", posting_id=posting_id),
                    )
                    continue
                postings.append(posting_to_data(posting))
        return postings

    def _already_sent(self, profile_id: int, posting_id: int | None) -> bool:
        if posting_id is None:
            return False
        with self.session_factory() as db:
            return Repository(db).find_sent_application(profile_id, posting_id) is not None

    def _save_letter(self, profile: CandidateProfileData, posting: PostingData, text: str, strategy: str) -> int:
        with self.session_factory() as db:
            application = Repository(db).save_generated_application(
                profile_id=profile.id,
                posting_id=posting.id,
                cover_letter=text,
                letter_strategy=strategy,
                email_to=posting.contact_email or self.settings.fallback_contact_email,
            )
            return application.id
