from __future__ import annotations

import logging

from jobflow.config import get_settings


_LOG_CONFIGURED = False


def configure_logging(level: str | None = None) -> None:
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    name = level or get_settings().log_level
    logging.basicConfig(
        level=getattr(logging, name.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # apscheduler logs every fire at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    _LOG_CONFIGURED = True
