from __future__ import annotations

import asyncio
from typing import Any

import pytest

from jobflow.errors import TransientInfraError, ValidationError
from jobflow.queue.broker import SqlBroker
from jobflow.queue.names import JOB_SCRAPING, QueueConfig, RateLimit
from jobflow.queue.worker import JobContext, QueueWorker, WorkerRuntime
from jobflow.types import JobOptions


class RecordingEvents:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def publish(self, job_id: int, event: dict[str, Any]) -> None:
        self.events.append({"job_id": job_id, **event})

    def types(self) -> list[str]:
        return [event["type"] for event in self.events]


@pytest.fixture
def broker(session_factory) -> SqlBroker:
    return SqlBroker(session_factory)


def test_successful_job_is_completed_with_result(broker: SqlBroker) -> None:
    events = RecordingEvents()
    job_id = broker.enqueue(JOB_SCRAPING, {"keywords": ["python"]})

    async def handler(ctx: JobContext) -> dict[str, Any]:
        await ctx.report_progress(50, stage="halfway")
        return {"seen": ctx.payload["keywords"]}

    worker = QueueWorker(broker, JOB_SCRAPING, handler, events=events)

    assert asyncio.run(worker.process_next()) == job_id
    assert asyncio.run(worker.process_next()) is None

    info = broker.lookup_job(job_id)
    assert info.state == "completed"
    assert info.result == {"seen": ["python"]}
    assert events.types() == ["active", "progress", "completed"]
    assert events.events[1]["stage"] == "halfway"


def test_permanent_error_fails_without_retry(broker: SqlBroker) -> None:
    events = RecordingEvents()
    job_id = broker.enqueue(JOB_SCRAPING, {}, JobOptions(attempts=3))

    async def handler(ctx: JobContext) -> None:
        raise ValidationError("payload missing keywords")

    asyncio.run(QueueWorker(broker, JOB_SCRAPING, handler, events=events).process_next())

    info = broker.lookup_job(job_id)
    assert info.state == "failed"
    assert info.attempts_made == 1
    assert info.failed_reason == "ValidationError: payload missing keywords"
    assert events.types() == ["active", "failed"]


def test_transient_error_is_retried(broker: SqlBroker) -> None:
    events = RecordingEvents()
    job_id = broker.enqueue(JOB_SCRAPING, {}, JobOptions(attempts=2))
    calls: list[bool] = []

    async def handler(ctx: JobContext) -> dict[str, Any]:
        calls.append(ctx.final_attempt)
        if len(calls) == 1:
            raise TransientInfraError("feed timed out", retry_after_ms=0)
        return {"ok": True}

    worker = QueueWorker(broker, JOB_SCRAPING, handler, events=events)
    asyncio.run(worker.process_next())

    assert broker.lookup_job(job_id).state == "waiting"

    asyncio.run(worker.process_next())

    info = broker.lookup_job(job_id)
    assert info.state == "completed"
    assert info.attempts_made == 2
    assert calls == [False, True]
    assert events.types() == ["active", "retrying", "active", "completed"]


def test_rate_limit_header_delays_retry(broker: SqlBroker) -> None:
    job_id = broker.enqueue(JOB_SCRAPING, {}, JobOptions(attempts=3))

    async def handler(ctx: JobContext) -> None:
        raise TransientInfraError("429", retry_after_ms=60_000)

    asyncio.run(QueueWorker(broker, JOB_SCRAPING, handler).process_next())

    assert broker.lookup_job(job_id).state == "delayed"


def test_run_processes_jobs_concurrently_until_stopped(broker: SqlBroker) -> None:
    ids = broker.enqueue_bulk(JOB_SCRAPING, [{"n": n} for n in range(3)])
    done: list[int] = []

    async def scenario() -> None:
        stop = asyncio.Event()

        async def handler(ctx: JobContext) -> dict[str, Any]:
            await asyncio.sleep(0.01)
            done.append(ctx.job.id)
            if len(done) == len(ids):
                stop.set()
            return {}

        config = QueueConfig(concurrency=2, poll_interval_sec=0.01)
        worker = QueueWorker(broker, JOB_SCRAPING, handler, config)
        await asyncio.wait_for(worker.run(stop), timeout=10)

    asyncio.run(scenario())

    assert sorted(done) == ids
    assert broker.stats(JOB_SCRAPING).completed == 3


def test_rate_limiter_caps_job_starts(broker: SqlBroker) -> None:
    broker.enqueue_bulk(JOB_SCRAPING, [{}, {}])

    async def handler(ctx: JobContext) -> dict[str, Any]:
        return {}

    async def scenario() -> None:
        config = QueueConfig(concurrency=2, limiter=RateLimit(max_jobs=1, duration_ms=60_000), poll_interval_sec=0.01)
        runtime = WorkerRuntime([QueueWorker(broker, JOB_SCRAPING, handler, config)])
        asyncio.get_running_loop().call_later(0.5, runtime.request_stop)
        await asyncio.wait_for(runtime.run(install_signals=False), timeout=10)

    asyncio.run(scenario())

    stats = broker.stats(JOB_SCRAPING)
    assert (stats.completed, stats.waiting) == (1, 1)


def test_stop_drains_in_flight_jobs(broker: SqlBroker) -> None:
    job_id = broker.enqueue(JOB_SCRAPING, {})

    async def scenario() -> None:
        runtime: WorkerRuntime

        async def handler(ctx: JobContext) -> dict[str, Any]:
            runtime.request_stop()
            await asyncio.sleep(0.2)
            return {"drained": True}

        config = QueueConfig(poll_interval_sec=0.01)
        runtime = WorkerRuntime([QueueWorker(broker, JOB_SCRAPING, handler, config)])
        await asyncio.wait_for(runtime.run(install_signals=False), timeout=10)

    asyncio.run(scenario())

    assert broker.lookup_job(job_id).result == {"drained": True}


class AckFailingBroker(SqlBroker):
    def complete(self, job_id: int, token: str, result: dict[str, Any] | None = None) -> bool:
        raise RuntimeError("database gone")


def test_failed_ack_leaves_job_active_for_reclaim(session_factory) -> None:
    broker = AckFailingBroker(session_factory)
    events = RecordingEvents()
    job_id = broker.enqueue(JOB_SCRAPING, {"keywords": ["python"]})

    async def handler(ctx: JobContext) -> dict[str, Any]:
        return {"ok": True}

    worker = QueueWorker(broker, JOB_SCRAPING, handler, events=events)

    assert asyncio.run(worker.process_next()) == job_id
    assert broker.lookup_job(job_id).state == "active"
    assert events.types() == ["active"]
