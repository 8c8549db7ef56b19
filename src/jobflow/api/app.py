from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobflow.api.routes import router as api_router
from jobflow.core.runtime import ServiceContainer, build_workers, get_container
from jobflow.db.init import init_database
from jobflow.errors import ExtractionError, NotFoundError, ValidationError
from jobflow.queue.worker import WorkerRuntime

logger = logging.getLogger(__name__)


def create_app(container: ServiceContainer | None = None, *, run_workers: bool = False) -> FastAPI:
    container = container or get_container()
    settings = container.settings

    app = FastAPI(title=settings.app_name)
    app.state.container = container
    app.state.worker_task = None
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _startup() -> None:
        init_database(settings, engine=container.session_factory.kw.get("bind"))
        if run_workers:
            runtime = WorkerRuntime(build_workers(container))
            app.state.worker_runtime = runtime
            app.state.worker_task = asyncio.create_task(runtime.run(install_signals=False))

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        task = app.state.worker_task
        if task is not None:
            app.state.worker_runtime.request_stop()
            await task

    @app.exception_handler(NotFoundError)
    async def _not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _invalid(_request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ExtractionError)
    async def _unreadable(_request: Request, exc: ExtractionError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(api_router)
    return app
