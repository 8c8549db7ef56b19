from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, WebSocket, WebSocketDisconnect

from jobflow.api.deps import get_container
from jobflow.api.schemas import (
    ApplicationResponse,
    EnqueuedResponse,
    MatchItemResponse,
    PipelineCreateRequest,
    PipelineResponse,
    QueueCleanRequest,
    QueueCleanResponse,
    QueueStateResponse,
    ResumeQueuedResponse,
    ResumeResponse,
    SendApplicationRequest,
)
from jobflow.core.events import TERMINAL_EVENTS
from jobflow.core.orchestrator import EMAIL_JOB_OPTIONS
from jobflow.core.runtime import ServiceContainer
from jobflow.db.repositories import Repository, serialize_application
from jobflow.queue.names import EMAIL_SENDING, RESUME_PARSING
from jobflow.types import CandidateProfileData, JobInfo, JobOptions, QueueStats

router = APIRouter(prefix="/api", tags=["api"])


@router.post("/resumes", response_model=ResumeResponse | ResumeQueuedResponse)
async def upload_resume(
    file: UploadFile = File(...),
    queued: bool = Query(False),
    container: ServiceContainer = Depends(get_container),
) -> ResumeResponse | ResumeQueuedResponse:
    raw = await file.read()
    filename = file.filename or "resume.pdf"
    if not queued:
        result = await asyncio.to_thread(container.ingestor.ingest, raw, filename)
        return ResumeResponse(profile=result.profile, cached=result.cached)

    if not raw:
        raise HTTPException(status_code=400, detail="uploaded document is empty")
    upload_dir = container.settings.upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / f"{uuid.uuid4().hex}-{filename}"
    await asyncio.to_thread(path.write_bytes, raw)
    job_id = container.broker.enqueue(
        RESUME_PARSING,
        {"path": str(path), "filename": filename},
        JobOptions(name="parse-resume", attempts=3),
    )
    return ResumeQueuedResponse(job_id=job_id, queue=RESUME_PARSING)


@router.get("/resumes", response_model=list[CandidateProfileData])
def list_resumes(container: ServiceContainer = Depends(get_container)) -> list[CandidateProfileData]:
    return container.ingestor.list_profiles()


@router.get("/resumes/{profile_id}", response_model=CandidateProfileData)
def get_resume(profile_id: int, container: ServiceContainer = Depends(get_container)) -> CandidateProfileData:
    return container.ingestor.get_profile(profile_id)


@router.delete("/resumes/{profile_id}")
def delete_resume(profile_id: int, container: ServiceContainer = Depends(get_container)) -> dict:
    container.ingestor.delete_profile(profile_id)
    return {"deleted": profile_id}


@router.post("/resumes/{profile_id}/match", response_model=list[MatchItemResponse])
async def match_resume(
    profile_id: int,
    container: ServiceContainer = Depends(get_container),
) -> list[MatchItemResponse]:
    scored = await container.matcher.match(profile_id)
    return [MatchItemResponse(posting=item.posting, match=item.match) for item in scored]


@router.post("/pipelines", response_model=PipelineResponse)
def create_pipeline(
    payload: PipelineCreateRequest,
    container: ServiceContainer = Depends(get_container),
) -> PipelineResponse:
    orchestrator = container.orchestrator
    summary = orchestrator.create_run(payload.profile_id, payload.posting_ids, payload.timeout_sec)
    return PipelineResponse.model_validate(orchestrator.get_run_details(summary.run_id))


@router.get("/pipelines/{run_id}", response_model=PipelineResponse)
def get_pipeline(run_id: int, container: ServiceContainer = Depends(get_container)) -> PipelineResponse:
    return PipelineResponse.model_validate(container.orchestrator.get_run_details(run_id))


@router.get("/queues/stats", response_model=dict[str, QueueStats])
def queue_stats(container: ServiceContainer = Depends(get_container)) -> dict[str, QueueStats]:
    return container.broker.all_stats()


@router.post("/queues/{name}/pause", response_model=QueueStateResponse)
def pause_queue(name: str, container: ServiceContainer = Depends(get_container)) -> QueueStateResponse:
    container.broker.pause(name)
    return QueueStateResponse(queue=name, paused=True)


@router.post("/queues/{name}/resume", response_model=QueueStateResponse)
def resume_queue(name: str, container: ServiceContainer = Depends(get_container)) -> QueueStateResponse:
    container.broker.resume(name)
    return QueueStateResponse(queue=name, paused=False)


@router.post("/queues/{name}/clean", response_model=QueueCleanResponse)
def clean_queue(
    name: str,
    payload: QueueCleanRequest | None = None,
    container: ServiceContainer = Depends(get_container),
) -> QueueCleanResponse:
    payload = payload or QueueCleanRequest()
    removed = container.broker.clean(name, grace_ms=payload.grace_ms, limit=payload.limit, state=payload.state)
    return QueueCleanResponse(queue=name, removed=removed)


@router.get("/queues/{name}/jobs/{job_id}", response_model=JobInfo)
def get_queue_job(name: str, job_id: int, container: ServiceContainer = Depends(get_container)) -> JobInfo:
    job = container.broker.get_job(name, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"job {job_id} not found in {name}")
    return job


@router.get("/applications", response_model=list[ApplicationResponse])
def list_applications(
    profile_id: int | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    container: ServiceContainer = Depends(get_container),
) -> list[ApplicationResponse]:
    with container.session_factory() as db:
        rows = Repository(db).list_applications(profile_id=profile_id, limit=limit)
        return [ApplicationResponse.model_validate(serialize_application(row)) for row in rows]


@router.post("/applications/send", response_model=EnqueuedResponse)
def send_application(
    payload: SendApplicationRequest,
    container: ServiceContainer = Depends(get_container),
) -> EnqueuedResponse:
    with container.session_factory() as db:
        repo = Repository(db)
        repo.require_profile(payload.profile_id)
        repo.require_posting(payload.posting_id)

    data = payload.model_dump(exclude_none=True)
    options = EMAIL_JOB_OPTIONS.model_copy(
        update={"delay_ms": 0, "job_key": f"send:{payload.profile_id}:{payload.posting_id}"}
    )
    job_id = container.broker.enqueue(EMAIL_SENDING, data, options)
    return EnqueuedResponse(job_id=job_id, queue=EMAIL_SENDING, data=data)


@router.websocket("/ws/jobs/{job_id}")
async def stream_job_events(websocket: WebSocket, job_id: int) -> None:
    await websocket.accept()
    container: ServiceContainer = websocket.app.state.container

    snapshot = await asyncio.to_thread(container.broker.lookup_job, job_id)
    if snapshot is None:
        await websocket.send_json({"type": "error", "job_id": job_id, "error": "job not found"})
        await websocket.close()
        return

    await websocket.send_json({"type": "snapshot", "job_id": job_id, **snapshot.model_dump(mode="json")})
    if snapshot.state in TERMINAL_EVENTS:
        await websocket.close()
        return

    try:
        async for event in container.events.subscribe(job_id):
            await websocket.send_json(event)
    except WebSocketDisconnect:
        return
    await websocket.close()
