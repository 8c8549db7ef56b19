from __future__ import annotations

from pathlib import Path

import pytest

from jobflow.config import Settings
from jobflow.core.events import EventBus
from jobflow.core.runtime import ServiceContainer, build_container
from jobflow.core.sources import StaticJobSource
from jobflow.db import models  # noqa: F401
from jobflow.db.base import Base
from jobflow.db.session import make_engine, make_session_factory
from jobflow.mail.mailer import SandboxMailer
from jobflow.types import PostingData

RESUME_TEXT = (
    "Jane Doe\n"
    "jane.doe@example.com\n"
    "+1 555 123 4567\n"
    "Senior Python developer with 6 years of experience in Django, FastAPI, PostgreSQL, Docker and AWS.\n"
    "Bachelor of Science in Computer Science, State University\n"
)


def sample_postings() -> list[PostingData]:
    return [
        PostingData(
            title="Senior Python Developer",
            company="Acme",
            location="Remote",
            description="We need a Python developer with Django and PostgreSQL experience. 5+ years.",
            url="https://jobs.example.com/1",
            source="static",
            contact_email="hiring@acme.example",
        ),
        PostingData(
            title="Java Engineer",
            company="Initech",
            location="Berlin",
            description="Spring Boot, Hibernate and Maven. Java developer wanted.",
            url="https://jobs.example.com/2",
            source="static",
            contact_email="jobs@initech.example",
        ),
        PostingData(
            title="Backend Developer",
            company="Globex",
            location="Remote",
            description="Python and Flask backend developer.",
            url="https://jobs.example.com/3",
            source="static",
        ),
    ]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        app_env="test",
        database_url=f"sqlite:///{tmp_path / 'jobflow.db'}",
        data_dir=tmp_path / "data",
        upload_dir=tmp_path / "data" / "uploads",
        outbox_dir=tmp_path / "data" / "outbox",
        openai_api_key="",
        local_llm_enabled=False,
        mail_sandbox=True,
        fallback_contact_email="",
        pipeline_pacing_sec=0,
        queue_poll_interval_sec=0.05,
    )


@pytest.fixture
def engine(settings: Settings):
    engine = make_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def container(settings: Settings, session_factory) -> ServiceContainer:
    return build_container(
        settings,
        session_factory,
        sources=[StaticJobSource(sample_postings())],
        mailer=SandboxMailer(settings.outbox_dir),
        events=EventBus(),
    )


@pytest.fixture
def resume_bytes() -> bytes:
    return RESUME_TEXT.encode("utf-8")


@pytest.fixture
def postings() -> list[PostingData]:
    return sample_postings()
