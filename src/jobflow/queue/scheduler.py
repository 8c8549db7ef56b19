from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from jobflow.errors import ValidationError
from jobflow.queue.broker import SqlBroker
from jobflow.types import JobOptions

logger = logging.getLogger(__name__)


def cron_trigger(expression: str) -> CronTrigger:
    try:
        return CronTrigger.from_crontab(expression, timezone=UTC)
    except ValueError as exc:
        raise ValidationError(f"invalid cron expression {expression!r}: {exc}") from exc


def next_fire_time(expression: str, now: datetime | None = None) -> datetime | None:
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return cron_trigger(expression).get_next_fire_time(None, now)


class RepeatScheduler:
    """Enqueues jobs on a cron schedule; the workers do the actual processing."""

    def __init__(self, broker: SqlBroker, scheduler: BackgroundScheduler | None = None):
        self.broker = broker
        self.scheduler = scheduler or BackgroundScheduler(timezone=UTC)

    def add_repeat(
        self,
        name: str,
        queue: str,
        payload: dict[str, Any],
        cron: str,
        options: JobOptions | None = None,
    ) -> str:
        self.broker.check_queue(queue)
        job_id = f"repeat:{queue}:{name}"
        self.scheduler.add_job(
            self.fire,
            cron_trigger(cron),
            args=[queue, payload, options],
            id=job_id,
            replace_existing=True,
        )
        logger.info("Scheduled %s on %s cron=%r", name, queue, cron)
        return job_id

    def fire(self, queue: str, payload: dict[str, Any], options: JobOptions | None = None) -> int:
        job_id = self.broker.enqueue(queue, payload, options)
        logger.info("Repeat fired queue=%s job_id=%s", queue, job_id)
        return job_id

    def remove(self, job_id: str) -> None:
        self.scheduler.remove_job(job_id)

    def start(self) -> None:
        self.scheduler.start()
        logger.info("Repeat scheduler started with %d job(s)", len(self.scheduler.get_jobs()))

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
