from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from pathlib import Path

import pytest

from jobflow.core.runtime import ServiceContainer, build_container
from jobflow.core.sources import StaticJobSource
from jobflow.db.base import utcnow
from jobflow.db.repositories import Repository
from jobflow.errors import TransientInfraError
from jobflow.queue.broker import SqlBroker
from jobflow.queue.names import COVER_LETTER_GENERATION, EMAIL_SENDING, JOB_SCRAPING, RESUME_PARSING
from jobflow.queue.worker import JobContext, QueueWorker
from jobflow.types import JobOptions, PostingData


class FlakyMailer:
    sandbox = False

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, profile, posting, text, destination, *, attachment=None) -> str:
        self.attempts += 1
        raise TransientInfraError("SMTP unavailable")


class ShiftedClock:
    def __init__(self) -> None:
        self.offset = timedelta(0)

    def __call__(self):
        return utcnow() + self.offset


def store_postings(container: ServiceContainer, postings: list[PostingData]) -> list[int]:
    with container.session_factory() as db:
        repo = Repository(db)
        return [repo.upsert_posting(posting).id for posting in postings]


def run_once(container: ServiceContainer, queue: str) -> int | None:
    handler = container.handlers.mapping()[queue]
    return asyncio.run(QueueWorker(container.broker, queue, handler).process_next())


def test_parse_resume_job(container, resume_bytes: bytes, tmp_path: Path) -> None:
    path = tmp_path / "resume.txt"
    path.write_bytes(resume_bytes)
    job_id = container.broker.enqueue(RESUME_PARSING, {"path": str(path), "filename": "resume.txt"})

    run_once(container, RESUME_PARSING)

    info = container.broker.lookup_job(job_id)
    assert info.state == "completed"
    assert info.result["cached"] is False
    assert container.ingestor.get_profile(info.result["profile_id"]).name == "Jane Doe"


def test_parse_resume_job_with_missing_file_fails(container, tmp_path: Path) -> None:
    job_id = container.broker.enqueue(
        RESUME_PARSING, {"path": str(tmp_path / "missing.pdf")}, JobOptions(attempts=3)
    )

    run_once(container, RESUME_PARSING)

    assert container.broker.lookup_job(job_id).state == "failed"


def test_scrape_job_stores_only_new_postings(container) -> None:
    first = container.broker.enqueue(JOB_SCRAPING, {"keywords": ["python"]})
    second = container.broker.enqueue(JOB_SCRAPING, {"keywords": ["python"]})

    run_once(container, JOB_SCRAPING)
    run_once(container, JOB_SCRAPING)

    assert container.broker.lookup_job(first).result == {"found": 2, "stored": 2}
    assert container.broker.lookup_job(second).result == {"found": 2, "stored": 0}


def test_generate_cover_letter_job(container, resume_bytes: bytes, postings: list[PostingData]) -> None:
    profile = container.ingestor.ingest(resume_bytes, "resume.txt").profile
    posting_id = store_postings(container, postings[:1])[0]
    job_id = container.broker.enqueue(COVER_LETTER_GENERATION, {"profile_id": profile.id, "posting_id": posting_id})

    run_once(container, COVER_LETTER_GENERATION)

    result = container.broker.lookup_job(job_id).result
    assert result["strategy"] == "template"
    with container.session_factory() as db:
        application = Repository(db).get_application(result["application_id"])
        assert application.status == "generated"
        assert application.email_to == "hiring@acme.example"
        assert "Senior Python Developer" in application.cover_letter


def test_send_application_is_idempotent(container, resume_bytes: bytes, postings: list[PostingData]) -> None:
    profile = container.ingestor.ingest(resume_bytes, "resume.txt").profile
    posting_id = store_postings(container, postings[:1])[0]
    payload = {"profile_id": profile.id, "posting_id": posting_id}

    first = container.broker.enqueue(EMAIL_SENDING, payload)
    run_once(container, EMAIL_SENDING)
    second = container.broker.enqueue(EMAIL_SENDING, payload)
    run_once(container, EMAIL_SENDING)

    sent = container.broker.lookup_job(first).result
    assert sent["status"] == "test_sent"
    assert sent["delivery_id"].startswith("sandbox-")
    assert container.broker.lookup_job(second).result == {
        "skipped": True,
        "application_id": sent["application_id"],
        "reason": "already sent",
    }

    outbox = sorted(container.settings.outbox_dir.glob("*.json"))
    assert len(outbox) == 1
    message = json.loads(outbox[0].read_text(encoding="utf-8"))
    assert message["to"] == "hiring@acme.example"
    assert message["subject"] == "Application for Senior Python Developer position - Jane Doe"
    assert message["attachments"] == [{"filename": "resume.txt", "size": len(resume_bytes)}]

    with container.session_factory() as db:
        applications = Repository(db).list_applications(profile_id=profile.id)
        assert [(item.status, item.delivery_id) for item in applications] == [("test_sent", sent["delivery_id"])]



def test_stalled_send_is_redelivered_without_second_delivery(
    container, resume_bytes: bytes, postings: list[PostingData]
) -> None:
    profile = container.ingestor.ingest(resume_bytes, "resume.txt").profile
    posting_id = store_postings(container, postings[:1])[0]
    clock = ShiftedClock()
    broker = SqlBroker(container.session_factory, clock=clock)
    job_id = broker.enqueue(EMAIL_SENDING, {"profile_id": profile.id, "posting_id": posting_id})

    # the handler delivers but the worker dies before acking
    job = broker.lease(EMAIL_SENDING, "w1", 1_000)
    delivered = asyncio.run(container.handlers.send_application(JobContext(job=job, broker=broker)))
    assert delivered["status"] == "test_sent"

    clock.offset = timedelta(seconds=5)
    assert broker.reclaim_stalled(EMAIL_SENDING) == [job_id]
    asyncio.run(QueueWorker(broker, EMAIL_SENDING, container.handlers.send_application).process_next())

    info = broker.get_job(EMAIL_SENDING, job_id)
    assert info.state == "completed"
    assert info.result == {"skipped": True, "application_id": delivered["application_id"], "reason": "already sent"}
    assert len(list(container.settings.outbox_dir.glob("*.json"))) == 1
    with container.session_factory() as db:
        applications = Repository(db).list_applications(profile_id=profile.id)
        assert [item.status for item in applications] == ["test_sent"]


def test_racing_delivery_loses_to_committed_send(
    monkeypatch, container, resume_bytes: bytes, postings: list[PostingData]
) -> None:
    profile = container.ingestor.ingest(resume_bytes, "resume.txt").profile
    posting_id = store_postings(container, postings[:1])[0]
    with container.session_factory() as db:
        repo = Repository(db)
        winner = repo.save_generated_application(
            profile_id=profile.id,
            posting_id=posting_id,
            cover_letter="Hello",
            letter_strategy="template",
            email_to="hiring@acme.example",
        )
        repo.update_application(winner.id, status="test_sent", delivery_id="sandbox-winner")
        loser = repo.save_generated_application(
            profile_id=profile.id,
            posting_id=posting_id,
            cover_letter="Hello again",
            letter_strategy="template",
            email_to="hiring@acme.example",
        )
    assert loser.id != winner.id

    # both deliveries passed the sent check before either committed
    monkeypatch.setattr(container.handlers, "_find_sent", lambda profile_id, posting_id: None)
    job_id = container.broker.enqueue(
        EMAIL_SENDING, {"profile_id": profile.id, "posting_id": posting_id, "application_id": loser.id}
    )

    run_once(container, EMAIL_SENDING)

    assert container.broker.lookup_job(job_id).result == {
        "skipped": True,
        "application_id": loser.id,
        "reason": "already sent",
    }
    with container.session_factory() as db:
        applications = Repository(db).list_applications(profile_id=profile.id)
    assert [item.id for item in applications if item.status == "test_sent"] == [winner.id]


def test_send_without_contact_fails_permanently(container, resume_bytes: bytes, postings: list[PostingData]) -> None:
    profile = container.ingestor.ingest(resume_bytes, "resume.txt").profile
    posting_id = store_postings(container, postings[2:])[0]
    job_id = container.broker.enqueue(
        EMAIL_SENDING, {"profile_id": profile.id, "posting_id": posting_id}, JobOptions(attempts=5)
    )

    run_once(container, EMAIL_SENDING)

    info = container.broker.lookup_job(job_id)
    assert info.state == "failed"
    assert info.attempts_made == 1
    with container.session_factory() as db:
        (application,) = Repository(db).list_applications(profile_id=profile.id)
        assert application.status == "failed"
        assert application.error_message == "no contact address"


def test_transient_send_failure_retries_then_fails(
    settings, session_factory, resume_bytes: bytes, postings: list[PostingData]
) -> None:
    mailer = FlakyMailer()
    container = build_container(settings, session_factory, sources=[StaticJobSource(postings)], mailer=mailer)
    profile = container.ingestor.ingest(resume_bytes, "resume.txt").profile
    posting_id = store_postings(container, postings[:1])[0]
    job_id = container.broker.enqueue(
        EMAIL_SENDING, {"profile_id": profile.id, "posting_id": posting_id}, JobOptions(attempts=2)
    )

    run_once(container, EMAIL_SENDING)

    assert container.broker.lookup_job(job_id).state == "waiting"
    with container.session_factory() as db:
        (application,) = Repository(db).list_applications(profile_id=profile.id)
        assert application.status == "retrying"

    run_once(container, EMAIL_SENDING)

    assert mailer.attempts == 2
    assert container.broker.lookup_job(job_id).state == "failed"
    with container.session_factory() as db:
        (application,) = Repository(db).list_applications(profile_id=profile.id)
        assert application.status == "failed"
        assert application.error_message == "SMTP unavailable"


@pytest.mark.parametrize("payload", [{}, {"profile_id": "abc", "posting_id": 1}])
def test_malformed_send_payload_fails(container, payload: dict) -> None:
    job_id = container.broker.enqueue(EMAIL_SENDING, payload, JobOptions(attempts=3))

    run_once(container, EMAIL_SENDING)

    info = container.broker.lookup_job(job_id)
    assert info.state == "failed"
    assert info.failed_reason.startswith("ValidationError")
