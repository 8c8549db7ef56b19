from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from jobflow.db.base import utcnow
from jobflow.db.models import QueueJob, QueueState
from jobflow.errors import UnknownQueueError, ValidationError
from jobflow.queue.names import QUEUE_NAMES
from jobflow.types import BackoffPolicy, JobInfo, JobOptions, QueueStats, RemovalPolicy

logger = logging.getLogger(__name__)

FINISHED_STATES = ("completed", "failed")
CLEANABLE_STATES = ("completed", "failed", "waiting", "delayed")
LEASE_CANDIDATES = 5
STALLED_REASON = "job stalled more than allowable limit"


@dataclass(slots=True)
class LeasedJob:
    id: int
    queue: str
    name: str
    payload: dict[str, Any]
    token: str
    attempts_made: int
    max_attempts: int
    lease_expires_at: datetime
    progress: int = 0

    @property
    def final_attempt(self) -> bool:
        return self.attempts_made + 1 >= self.max_attempts


def _policy_to_json(policy: bool | RemovalPolicy) -> Any:
    if isinstance(policy, RemovalPolicy):
        return policy.model_dump()
    return bool(policy)


def _policy_from_json(value: Any) -> bool | RemovalPolicy:
    if isinstance(value, dict):
        return RemovalPolicy.model_validate(value)
    return bool(value)


class SqlBroker:
    """Durable named queues stored in ``queue_jobs``.

    Workers lease jobs with a token; only the holder of a live token can ack
    or fail a job. Expired leases are handed back by ``reclaim_stalled``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        queues: Iterable[str] = QUEUE_NAMES,
        clock: Callable[[], datetime] = utcnow,
        max_stalled_count: int = 1,
    ):
        self.session_factory = session_factory
        self.queues = tuple(queues)
        self.clock = clock
        self.max_stalled_count = max_stalled_count

    def check_queue(self, queue: str) -> None:
        if queue not in self.queues:
            raise UnknownQueueError(queue)

    # producers

    def enqueue(self, queue: str, payload: dict[str, Any], options: JobOptions | None = None) -> int:
        return self.enqueue_bulk(queue, [payload], options)[0]

    def enqueue_bulk(
        self,
        queue: str,
        payloads: Sequence[dict[str, Any]],
        options: JobOptions | None = None,
    ) -> list[int]:
        self.check_queue(queue)
        options = options or JobOptions()
        now = self.clock()
        run_at = now + timedelta(milliseconds=options.delay_ms)
        state = "delayed" if options.delay_ms > 0 else "waiting"

        ids: list[int] = []
        with self.session_factory() as db:
            for payload in payloads:
                if options.job_key:
                    existing = db.scalar(
                        select(QueueJob.id).where(
                            QueueJob.queue == queue,
                            QueueJob.job_key == options.job_key,
                            QueueJob.state.not_in(FINISHED_STATES),
                        )
                    )
                    if existing is not None:
                        logger.debug("Duplicate job_key=%s on %s; reusing job %s", options.job_key, queue, existing)
                        ids.append(existing)
                        continue

                job = QueueJob(
                    queue=queue,
                    name=options.name or queue,
                    job_key=options.job_key,
                    payload_json=dict(payload),
                    state=state,
                    priority=options.priority,
                    run_at=run_at,
                    max_attempts=options.attempts,
                    backoff_type=options.backoff.type,
                    backoff_delay_ms=options.backoff.delay_ms,
                    remove_on_complete_json=_policy_to_json(options.remove_on_complete),
                    remove_on_fail_json=_policy_to_json(options.remove_on_fail),
                    created_at=now,
                    updated_at=now,
                )
                db.add(job)
                db.flush()
                ids.append(job.id)
            db.commit()

        logger.debug("Enqueued %d job(s) on %s", len(ids), queue)
        return ids

    # lease protocol

    def lease(self, queue: str, worker_id: str, lease_ms: int) -> LeasedJob | None:
        self.check_queue(queue)
        now = self.clock()
        with self.session_factory() as db:
            if self._is_paused(db, queue):
                return None

            db.execute(
                update(QueueJob)
                .where(QueueJob.queue == queue, QueueJob.state == "delayed", QueueJob.run_at <= now)
                .values(state="waiting", updated_at=now)
            )
            db.commit()

            candidates = db.scalars(
                select(QueueJob.id)
                .where(QueueJob.queue == queue, QueueJob.state == "waiting", QueueJob.run_at <= now)
                .order_by(QueueJob.priority.asc(), QueueJob.id.asc())
                .limit(LEASE_CANDIDATES)
            ).all()

            expires = now + timedelta(milliseconds=lease_ms)
            for job_id in candidates:
                token = uuid.uuid4().hex
                result = db.execute(
                    update(QueueJob)
                    .where(QueueJob.id == job_id, QueueJob.state == "waiting")
                    .values(
                        state="active",
                        lease_token=token,
                        lease_owner=worker_id,
                        lease_expires_at=expires,
                        processed_at=now,
                        updated_at=now,
                    )
                )
                db.commit()
                if result.rowcount != 1:
                    continue

                job = db.get(QueueJob, job_id, populate_existing=True)
                return LeasedJob(
                    id=job.id,
                    queue=job.queue,
                    name=job.name,
                    payload=dict(job.payload_json or {}),
                    token=token,
                    attempts_made=job.attempts_made,
                    max_attempts=job.max_attempts,
                    lease_expires_at=expires,
                    progress=job.progress,
                )
        return None

    def extend_lease(self, job_id: int, token: str, lease_ms: int) -> bool:
        now = self.clock()
        with self.session_factory() as db:
            result = db.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id, QueueJob.lease_token == token, QueueJob.state == "active")
                .values(lease_expires_at=now + timedelta(milliseconds=lease_ms), updated_at=now)
            )
            db.commit()
            return result.rowcount == 1

    def complete(self, job_id: int, token: str, result: dict[str, Any] | None = None) -> bool:
        now = self.clock()
        with self.session_factory() as db:
            outcome = db.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id, QueueJob.lease_token == token, QueueJob.state == "active")
                .values(
                    state="completed",
                    attempts_made=QueueJob.attempts_made + 1,
                    result_json=result,
                    progress=100,
                    finished_at=now,
                    lease_token=None,
                    lease_owner=None,
                    lease_expires_at=None,
                    updated_at=now,
                )
            )
            db.commit()
            if outcome.rowcount != 1:
                logger.warning("Lost lease before ack job_id=%s", job_id)
                return False

            job = db.get(QueueJob, job_id, populate_existing=True)
            self._apply_removal(db, job, _policy_from_json(job.remove_on_complete_json))
        return True

    def fail(
        self,
        job_id: int,
        token: str,
        error: str,
        *,
        retryable: bool = True,
        retry_after_ms: int | None = None,
    ) -> str | None:
        now = self.clock()
        with self.session_factory() as db:
            job = db.scalar(
                select(QueueJob).where(
                    QueueJob.id == job_id, QueueJob.lease_token == token, QueueJob.state == "active"
                )
            )
            if job is None:
                logger.warning("Lost lease before fail job_id=%s", job_id)
                return None

            job.attempts_made += 1
            job.failed_reason = error
            job.lease_token = None
            job.lease_owner = None
            job.lease_expires_at = None
            job.updated_at = now

            if retryable and job.attempts_made < job.max_attempts:
                backoff = BackoffPolicy(type=job.backoff_type, delay_ms=job.backoff_delay_ms)
                delay_ms = retry_after_ms if retry_after_ms is not None else backoff.delay_for(job.attempts_made)
                job.run_at = now + timedelta(milliseconds=delay_ms)
                job.state = "delayed" if delay_ms > 0 else "waiting"
                db.commit()
                logger.info(
                    "Retrying job_id=%s queue=%s attempt=%s/%s in %sms",
                    job.id,
                    job.queue,
                    job.attempts_made,
                    job.max_attempts,
                    delay_ms,
                )
                return job.state

            job.state = "failed"
            job.finished_at = now
            db.commit()
            logger.warning("Job failed job_id=%s queue=%s reason=%s", job.id, job.queue, error)
            self._apply_removal(db, job, _policy_from_json(job.remove_on_fail_json))
            return "failed"

    def reclaim_stalled(self, queue: str) -> list[int]:
        self.check_queue(queue)
        now = self.clock()
        reclaimed: list[int] = []
        with self.session_factory() as db:
            stalled = db.scalars(
                select(QueueJob).where(
                    QueueJob.queue == queue,
                    QueueJob.state == "active",
                    QueueJob.lease_expires_at < now,
                )
            ).all()
            for job in stalled:
                job.stalled_count += 1
                job.lease_token = None
                job.lease_owner = None
                job.lease_expires_at = None
                job.updated_at = now
                if job.stalled_count > self.max_stalled_count:
                    job.state = "failed"
                    job.failed_reason = STALLED_REASON
                    job.finished_at = now
                    logger.warning("Job exceeded stall limit job_id=%s queue=%s", job.id, queue)
                else:
                    job.state = "waiting"
                    reclaimed.append(job.id)
                    logger.warning("Reclaimed stalled job job_id=%s queue=%s", job.id, queue)
            db.commit()
        return reclaimed

    def update_progress(self, job_id: int, progress: int) -> None:
        value = max(0, min(100, int(progress)))
        with self.session_factory() as db:
            db.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id, QueueJob.state == "active")
                .values(progress=value, updated_at=self.clock())
            )
            db.commit()

    # inspection and admin

    def get_job(self, queue: str, job_id: int) -> JobInfo | None:
        self.check_queue(queue)
        info = self.lookup_job(job_id)
        if info is None or info.queue != queue:
            return None
        return info

    def lookup_job(self, job_id: int) -> JobInfo | None:
        with self.session_factory() as db:
            job = db.get(QueueJob, job_id)
            if job is None:
                return None
            return JobInfo(
                id=job.id,
                queue=job.queue,
                name=job.name,
                state=job.state,
                data=dict(job.payload_json or {}),
                progress=job.progress,
                attempts_made=job.attempts_made,
                max_attempts=job.max_attempts,
                failed_reason=job.failed_reason,
                result=job.result_json,
                timestamp=job.created_at,
                processed_on=job.processed_at,
                finished_on=job.finished_at,
            )

    def stats(self, queue: str) -> QueueStats:
        self.check_queue(queue)
        with self.session_factory() as db:
            rows = db.execute(
                select(QueueJob.state, func.count(QueueJob.id)).where(QueueJob.queue == queue).group_by(QueueJob.state)
            ).all()
            counts = {state: count for state, count in rows}
            stats = QueueStats(
                active=counts.get("active", 0),
                waiting=counts.get("waiting", 0),
                completed=counts.get("completed", 0),
                failed=counts.get("failed", 0),
                delayed=counts.get("delayed", 0),
            )
            if self._is_paused(db, queue):
                stats.paused = stats.waiting
                stats.waiting = 0
            return stats

    def all_stats(self) -> dict[str, QueueStats]:
        return {queue: self.stats(queue) for queue in self.queues}

    def pause(self, queue: str) -> None:
        self._set_paused(queue, True)

    def resume(self, queue: str) -> None:
        self._set_paused(queue, False)

    def is_paused(self, queue: str) -> bool:
        self.check_queue(queue)
        with self.session_factory() as db:
            return self._is_paused(db, queue)

    def clean(self, queue: str, grace_ms: int = 0, limit: int = 100, state: str = "completed") -> int:
        self.check_queue(queue)
        if state not in CLEANABLE_STATES:
            raise ValidationError(f"cannot clean jobs in state {state!r}")

        cutoff = self.clock() - timedelta(milliseconds=grace_ms)
        stamp = QueueJob.finished_at if state in FINISHED_STATES else QueueJob.created_at
        with self.session_factory() as db:
            ids = db.scalars(
                select(QueueJob.id)
                .where(QueueJob.queue == queue, QueueJob.state == state, stamp <= cutoff)
                .order_by(QueueJob.id.asc())
                .limit(limit)
            ).all()
            if ids:
                db.execute(delete(QueueJob).where(QueueJob.id.in_(ids)))
                db.commit()
        logger.info("Cleaned %d %s job(s) from %s", len(ids), state, queue)
        return len(ids)

    def _is_paused(self, db: Session, queue: str) -> bool:
        return bool(db.scalar(select(QueueState.paused).where(QueueState.name == queue)))

    def _set_paused(self, queue: str, paused: bool) -> None:
        self.check_queue(queue)
        with self.session_factory() as db:
            state = db.scalar(select(QueueState).where(QueueState.name == queue))
            if state is None:
                state = QueueState(name=queue)
                db.add(state)
            state.paused = paused
            db.commit()
        logger.info("Queue %s %s", queue, "paused" if paused else "resumed")

    def _apply_removal(self, db: Session, job: QueueJob, policy: bool | RemovalPolicy) -> None:
        if policy is True:
            db.delete(job)
            db.commit()
            return
        if not isinstance(policy, RemovalPolicy):
            return

        scope = (QueueJob.queue == job.queue, QueueJob.state == job.state)
        if policy.age_sec is not None:
            cutoff = self.clock() - timedelta(seconds=policy.age_sec)
            db.execute(delete(QueueJob).where(*scope, QueueJob.finished_at < cutoff))
        if policy.count is not None:
            keep = db.scalars(
                select(QueueJob.id).where(*scope).order_by(QueueJob.finished_at.desc(), QueueJob.id.desc()).limit(
                    policy.count
                )
            ).all()
            db.execute(delete(QueueJob).where(*scope, QueueJob.id.not_in(keep)))
        db.commit()
