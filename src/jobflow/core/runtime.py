from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from jobflow.config import Settings, get_settings
from jobflow.core.events import EventBus
from jobflow.core.ingestion import ResumeIngestor
from jobflow.core.job_matcher import JobMatcher
from jobflow.core.letters import CoverLetterWriter
from jobflow.core.orchestrator import PipelineOrchestrator
from jobflow.core.relevance import RelevanceEngine
from jobflow.core.sources import JobSource, JsonFeedJobSource, StaticJobSource
from jobflow.llm.router import LLMRouter
from jobflow.mail.mailer import Mailer, build_mailer
from jobflow.queue.broker import SqlBroker
from jobflow.queue.handlers import QueueHandlers
from jobflow.queue.names import DEFAULT_CONFIGS, QUEUE_NAMES
from jobflow.queue.worker import QueueWorker

logger = logging.getLogger(__name__)

_EVENT_BUS: EventBus | None = None
_CONTAINER: ServiceContainer | None = None


def get_event_bus() -> EventBus:
    global _EVENT_BUS
    if _EVENT_BUS is None:
        _EVENT_BUS = EventBus()
    return _EVENT_BUS


@dataclass(slots=True)
class ServiceContainer:
    settings: Settings
    session_factory: sessionmaker[Session]
    events: EventBus
    llm: LLMRouter
    relevance: RelevanceEngine
    broker: SqlBroker
    ingestor: ResumeIngestor
    matcher: JobMatcher
    writer: CoverLetterWriter
    mailer: Mailer
    orchestrator: PipelineOrchestrator
    handlers: QueueHandlers


def build_sources(settings: Settings) -> list[JobSource]:
    sources: list[JobSource] = []
    if settings.job_source_file is not None:
        sources.append(StaticJobSource.from_file(settings.job_source_file))
    for url in settings.job_feed_url_list:
        sources.append(JsonFeedJobSource(url, timeout_sec=settings.job_feed_timeout_sec))
    if not sources:
        logger.warning("No job sources configured; matching will find nothing")
    return sources


def build_container(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    *,
    sources: Sequence[JobSource] | None = None,
    llm: LLMRouter | None = None,
    mailer: Mailer | None = None,
    events: EventBus | None = None,
) -> ServiceContainer:
    settings = settings or get_settings()
    if session_factory is None:
        from jobflow.db.session import SessionLocal as session_factory

    llm = llm or LLMRouter(settings)
    ai_scorer = llm if settings.ai_scoring_enabled and llm.available else None
    relevance = RelevanceEngine(ai_scorer=ai_scorer)
    broker = SqlBroker(session_factory, max_stalled_count=settings.queue_max_stalled_count)
    ingestor = ResumeIngestor(session_factory, llm)
    matcher = JobMatcher(
        session_factory,
        build_sources(settings) if sources is None else sources,
        relevance,
        location=settings.search_location,
        preferred_locations=settings.preferred_location_list,
    )
    writer = CoverLetterWriter(llm if llm.available else None)
    mailer = mailer or build_mailer(settings)
    orchestrator = PipelineOrchestrator(session_factory, broker, matcher, writer, settings=settings)
    handlers = QueueHandlers(
        session_factory,
        settings=settings,
        ingestor=ingestor,
        matcher=matcher,
        writer=writer,
        mailer=mailer,
        orchestrator=orchestrator,
    )
    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        events=events or get_event_bus(),
        llm=llm,
        relevance=relevance,
        broker=broker,
        ingestor=ingestor,
        matcher=matcher,
        writer=writer,
        mailer=mailer,
        orchestrator=orchestrator,
        handlers=handlers,
    )


def get_container() -> ServiceContainer:
    global _CONTAINER
    if _CONTAINER is None:
        _CONTAINER = build_container()
    return _CONTAINER


def build_workers(container: ServiceContainer, queues: Sequence[str] | None = None) -> list[QueueWorker]:
    settings = container.settings
    handlers = container.handlers.mapping()
    workers: list[QueueWorker] = []
    for queue in queues or QUEUE_NAMES:
        container.broker.check_queue(queue)
        config = dataclasses.replace(
            DEFAULT_CONFIGS[queue],
            lease_ms=settings.queue_lease_ms,
            stalled_interval_ms=settings.queue_stalled_interval_ms,
            poll_interval_sec=settings.queue_poll_interval_sec,
        )
        workers.append(QueueWorker(container.broker, queue, handlers[queue], config, events=container.events))
    return workers
