from __future__ import annotations

from pathlib import Path

from sqlalchemy import Engine

from jobflow.config import Settings, get_settings
from jobflow.db.base import Base
from jobflow.db import models  # noqa: F401


def ensure_data_directories(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    paths: list[Path] = [
        settings.data_dir,
        settings.upload_dir,
        settings.outbox_dir,
    ]
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)


def init_database(settings: Settings | None = None, engine: Engine | None = None) -> dict[str, list[str]]:
    ensure_data_directories(settings)
    if engine is None:
        from jobflow.db.session import engine

    Base.metadata.create_all(bind=engine)
    return {"tables": sorted(Base.metadata.tables)}
