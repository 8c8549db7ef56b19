from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import socket
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from jobflow.core.events import EventBus
from jobflow.errors import TransientInfraError, is_retryable
from jobflow.queue.broker import LeasedJob, SqlBroker
from jobflow.queue.limiter import RateLimiter
from jobflow.queue.names import QueueConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class JobContext:
    job: LeasedJob
    broker: SqlBroker
    events: EventBus | None = None

    @property
    def payload(self) -> dict[str, Any]:
        return self.job.payload

    @property
    def final_attempt(self) -> bool:
        return self.job.final_attempt

    async def report_progress(self, progress: int, **extra: Any) -> None:
        await asyncio.to_thread(self.broker.update_progress, self.job.id, progress)
        if self.events is not None:
            await self.events.publish(self.job.id, {"type": "progress", "progress": progress, **extra})


Handler = Callable[[JobContext], Awaitable[dict[str, Any] | None]]


def default_worker_id(queue: str) -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{queue}"


class QueueWorker:
    def __init__(
        self,
        broker: SqlBroker,
        queue: str,
        handler: Handler,
        config: QueueConfig | None = None,
        *,
        events: EventBus | None = None,
        worker_id: str | None = None,
    ):
        self.broker = broker
        self.queue = queue
        self.handler = handler
        self.config = config or QueueConfig()
        self.events = events
        self.worker_id = worker_id or default_worker_id(queue)
        self.limiter = (
            RateLimiter(self.config.limiter.max_jobs, self.config.limiter.duration_ms)
            if self.config.limiter
            else None
        )
        self._in_flight: set[asyncio.Task[None]] = set()

    async def process_next(self) -> int | None:
        """Lease and run a single job, ignoring concurrency and rate limits."""
        job = await asyncio.to_thread(self.broker.lease, self.queue, self.worker_id, self.config.lease_ms)
        if job is None:
            return None
        await self._execute(job)
        return job.id

    async def run(self, stop: asyncio.Event) -> None:
        semaphore = asyncio.Semaphore(self.config.concurrency)
        stall_checker = asyncio.create_task(self._check_stalled(stop))
        logger.info("Worker started queue=%s concurrency=%s", self.queue, self.config.concurrency)

        try:
            while not stop.is_set():
                await semaphore.acquire()
                if stop.is_set():
                    semaphore.release()
                    break

                if self.limiter is not None:
                    delay = self.limiter.wait_time()
                    if delay > 0:
                        semaphore.release()
                        await self._sleep(stop, delay)
                        continue

                try:
                    job = await asyncio.to_thread(
                        self.broker.lease, self.queue, self.worker_id, self.config.lease_ms
                    )
                except Exception:
                    semaphore.release()
                    logger.exception("Lease failed queue=%s", self.queue)
                    await self._sleep(stop, self.config.poll_interval_sec)
                    continue

                if job is None:
                    semaphore.release()
                    await self._sleep(stop, self.config.poll_interval_sec)
                    continue

                if self.limiter is not None:
                    self.limiter.try_acquire()

                task = asyncio.create_task(self._execute(job))
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
                task.add_done_callback(lambda _task: semaphore.release())
        finally:
            if self._in_flight:
                logger.info("Draining %d in-flight job(s) on %s", len(self._in_flight), self.queue)
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            stall_checker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stall_checker
            logger.info("Worker stopped queue=%s", self.queue)

    async def _execute(self, job: LeasedJob) -> None:
        context = JobContext(job=job, broker=self.broker, events=self.events)
        heartbeat = asyncio.create_task(self._heartbeat(job))
        await self._publish(job.id, {"type": "active", "attempt": job.attempts_made + 1})

        try:
            result = await self.handler(context)
        except Exception as exc:
            heartbeat.cancel()
            await self._handle_failure(job, exc)
            return
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

        try:
            acked = await asyncio.to_thread(self.broker.complete, job.id, job.token, result or {})
        except Exception:
            logger.exception("Ack failed queue=%s job_id=%s, left for stall reclaim", self.queue, job.id)
            return
        if acked:
            logger.info("Job completed queue=%s job_id=%s", self.queue, job.id)
            await self._publish(job.id, {"type": "completed", "result": result or {}})

    async def _handle_failure(self, job: LeasedJob, exc: Exception) -> None:
        retryable = is_retryable(exc)
        retry_after_ms = exc.retry_after_ms if isinstance(exc, TransientInfraError) else None
        if retryable:
            logger.warning("Job error queue=%s job_id=%s: %s", self.queue, job.id, exc)
        else:
            logger.error("Job failed permanently queue=%s job_id=%s: %s", self.queue, job.id, exc)

        state = await asyncio.to_thread(
            self.broker.fail,
            job.id,
            job.token,
            f"{type(exc).__name__}: {exc}",
            retryable=retryable,
            retry_after_ms=retry_after_ms,
        )
        if state == "failed":
            await self._publish(job.id, {"type": "failed", "error": str(exc)})
        elif state is not None:
            await self._publish(job.id, {"type": "retrying", "error": str(exc), "state": state})

    async def _heartbeat(self, job: LeasedJob) -> None:
        interval = max(self.config.lease_ms / 2000, 0.05)
        while True:
            await asyncio.sleep(interval)
            extended = await asyncio.to_thread(self.broker.extend_lease, job.id, job.token, self.config.lease_ms)
            if not extended:
                logger.warning("Lease lost while running queue=%s job_id=%s", self.queue, job.id)
                return

    async def _check_stalled(self, stop: asyncio.Event) -> None:
        interval = self.config.stalled_interval_ms / 1000
        while not stop.is_set():
            try:
                await asyncio.to_thread(self.broker.reclaim_stalled, self.queue)
            except Exception:
                logger.exception("Stall check failed queue=%s", self.queue)
            await self._sleep(stop, interval)

    async def _publish(self, job_id: int, event: dict[str, Any]) -> None:
        if self.events is not None:
            await self.events.publish(job_id, {"queue": self.queue, **event})

    @staticmethod
    async def _sleep(stop: asyncio.Event, seconds: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=seconds)


class WorkerRuntime:
    def __init__(self, workers: Sequence[QueueWorker]):
        self.workers = list(workers)
        self.stop_event = asyncio.Event()

    def request_stop(self) -> None:
        if not self.stop_event.is_set():
            logger.info("Shutdown requested; draining workers")
        self.stop_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # unavailable on Windows and outside the main thread
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_stop)

    async def run(self, *, install_signals: bool = True) -> None:
        if install_signals:
            self._install_signal_handlers()
        logger.info("Starting %d queue worker(s)", len(self.workers))
        await asyncio.gather(*(worker.run(self.stop_event) for worker in self.workers))
        logger.info("All workers stopped")
