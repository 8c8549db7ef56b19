from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from jobflow.api.app import create_app
from jobflow.core import orchestrator as orchestrator_module
from jobflow.core.runtime import build_workers
from jobflow.db.repositories import Repository
from jobflow.queue.names import APPLICATION_PIPELINE, EMAIL_SENDING
from jobflow.queue.worker import WorkerRuntime


def run_workers_until_idle(container, timeout: float = 15.0) -> None:
    async def scenario() -> None:
        runtime = WorkerRuntime(build_workers(container, [APPLICATION_PIPELINE, EMAIL_SENDING]))
        task = asyncio.create_task(runtime.run(install_signals=False))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            pipeline = await asyncio.to_thread(container.broker.stats, APPLICATION_PIPELINE)
            emails = await asyncio.to_thread(container.broker.stats, EMAIL_SENDING)
            busy = pipeline.waiting + pipeline.active + emails.waiting + emails.active + emails.delayed
            if pipeline.completed and not busy:
                break
            await asyncio.sleep(0.05)
        runtime.request_stop()
        await task

    asyncio.run(scenario())


def test_upload_to_sent_applications(monkeypatch, container, resume_bytes: bytes, postings) -> None:
    monkeypatch.setattr(
        orchestrator_module,
        "EMAIL_JOB_OPTIONS",
        orchestrator_module.EMAIL_JOB_OPTIONS.model_copy(update={"delay_ms": 0}),
    )

    with TestClient(create_app(container)) as client:
        uploaded = client.post("/api/resumes", files={"file": ("resume.txt", resume_bytes, "text/plain")})
        profile_id = uploaded.json()["profile"]["id"]

        matches = client.post(f"/api/resumes/{profile_id}/match").json()
        posting_ids = [item["posting"]["id"] for item in matches if item["posting"]["contact_email"]]
        assert len(posting_ids) == 2

        created = client.post("/api/pipelines", json={"profile_id": profile_id, "posting_ids": posting_ids})
        run_id = created.json()["run_id"]

        run_workers_until_idle(container)

        run = client.get(f"/api/pipelines/{run_id}").json()
        applications = client.get("/api/applications", params={"profile_id": profile_id}).json()

    assert run["status"] == "completed"
    assert (run["matched"], run["generated"], run["sent"]) == (2, 2, 2)
    assert run["progress"] == 100
    assert sorted(item["status"] for item in applications) == ["test_sent", "test_sent"]
    assert len(list(container.settings.outbox_dir.glob("*.json"))) == 2

    job = container.broker.get_job(APPLICATION_PIPELINE, run["queue_job_id"])
    assert job.state == "completed"
    assert job.result["sent"] == 2


def test_rerunning_pipeline_skips_sent_pairs(monkeypatch, container, resume_bytes: bytes, postings) -> None:
    monkeypatch.setattr(
        orchestrator_module,
        "EMAIL_JOB_OPTIONS",
        orchestrator_module.EMAIL_JOB_OPTIONS.model_copy(update={"delay_ms": 0}),
    )
    profile = container.ingestor.ingest(resume_bytes, "resume.txt").profile

    with container.session_factory() as db:
        posting_id = Repository(db).upsert_posting(postings[0]).id

    first = container.orchestrator.create_run(profile.id, [posting_id])
    run_workers_until_idle(container)
    second = container.orchestrator.create_run(profile.id, [posting_id])
    run_workers_until_idle(container)

    assert container.orchestrator.get_run(first.run_id).sent == 1
    rerun = container.orchestrator.get_run(second.run_id)
    assert (rerun.status, rerun.skipped, rerun.generated, rerun.sent) == ("completed", 1, 0, 0)
    assert len(list(container.settings.outbox_dir.glob("*.json"))) == 1
