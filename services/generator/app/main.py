"""FastAPI entrypoint for the photobook generator."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import List
from uuid import UUID

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from photobook_observability import log_context, setup_fastapi_metrics, setup_logging
from photobook_providers import BackendError, QuotaExhaustedError, RateLimitedError
from photobook_schemas import BuildLogEntry, Illustration, Project, UploadFile

from .errors import (
    InvalidTransition,
    PageNotFoundError,
    PipelineBusyError,
    PipelineError,
    ProjectNotFoundError,
)
from .models import (
    GenerationStartRequest,
    GenerationStatusResponse,
    PhotoUploadRequest,
    ProjectCreateRequest,
    ProjectDetail,
    UploadStatusResponse,
)
from .registry import ProjectRegistry, get_registry
from .settings import SERVICE_NAME
from .uploads import UploadQueue

setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

app = FastAPI(title="Photobook Generator", version="0.1.0")
setup_fastapi_metrics(app, service_name=SERVICE_NAME)


@app.on_event("startup")
async def _on_startup() -> None:
    await get_registry().store.initialise()


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    await get_registry().aclose()


@app.exception_handler(PipelineError)
async def _pipeline_error_handler(_request: Request, exc: PipelineError) -> JSONResponse:
    if isinstance(exc, (ProjectNotFoundError, PageNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (InvalidTransition, PipelineBusyError)):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@app.exception_handler(BackendError)
async def _backend_error_handler(_request: Request, exc: BackendError) -> JSONResponse:
    if isinstance(exc, RateLimitedError):
        code = status.HTTP_429_TOO_MANY_REQUESTS
    elif isinstance(exc, QuotaExhaustedError):
        code = status.HTTP_402_PAYMENT_REQUIRED
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return JSONResponse(status_code=code, content={"detail": str(exc), "retryable": exc.retryable})


def _upload_status(queue: UploadQueue) -> UploadStatusResponse:
    summary = queue.summary
    return UploadStatusResponse(
        project_id=queue.project_id,
        draining=queue.is_draining,
        pending=queue.pending,
        progress=queue.progress,
        photo_ids=summary.photo_ids,
        failed_files=summary.failed_files,
    )


def _generation_status(registry: ProjectRegistry, project_id: UUID, message: str | None = None) -> GenerationStatusResponse:
    pipeline = registry.pipeline(project_id)
    last = pipeline.events.last
    return GenerationStatusResponse(
        snapshot=pipeline.snapshot(),
        running=pipeline.is_running,
        pending_variants=registry.variants.pending,
        message=message or (last.message if last else None),
    )


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED, tags=["projects"])
async def create_project(payload: ProjectCreateRequest) -> Project:
    project = Project(title=payload.title, status=payload.status)
    created = await get_registry().store.create_project(project)
    logger.info("Project created", extra={"project_id": str(created.id)})
    return created


@app.get("/projects/{project_id}", response_model=ProjectDetail, tags=["projects"])
async def get_project(project_id: UUID) -> ProjectDetail:
    store = get_registry().store
    project = await store.require_project(project_id)
    return ProjectDetail(
        project=project,
        photos=await store.list_photos(project_id),
        pages=await store.list_pages(project_id),
        illustrations=await store.list_illustrations(project_id),
    )


@app.post("/projects/{project_id}/photos", response_model=UploadStatusResponse, tags=["uploads"])
async def upload_photos(project_id: UUID, payload: PhotoUploadRequest) -> UploadStatusResponse:
    registry = get_registry()
    await registry.store.require_project(project_id)
    files: list[UploadFile] = []
    for item in payload.files:
        try:
            content = base64.b64decode(item.content_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"Invalid base64 payload for {item.filename}") from exc
        files.append(UploadFile(filename=item.filename, content=content, content_type=item.content_type))

    queue = registry.queue(project_id)
    with log_context(project_id=project_id):
        queue.enqueue(files)
        if payload.wait:
            await queue.wait_idle()
    return _upload_status(queue)


@app.get("/projects/{project_id}/uploads", response_model=UploadStatusResponse, tags=["uploads"])
async def upload_status(project_id: UUID) -> UploadStatusResponse:
    registry = get_registry()
    await registry.store.require_project(project_id)
    return _upload_status(registry.queue(project_id))


@app.post("/projects/{project_id}/generation", response_model=GenerationStatusResponse, tags=["generation"])
async def start_generation(project_id: UUID, payload: GenerationStartRequest) -> GenerationStatusResponse:
    registry = get_registry()
    await registry.store.require_project(project_id)
    pipeline = registry.pipeline(project_id, light=payload.light)
    pipeline.start()
    if payload.wait:
        await pipeline.wait(payload.timeout_seconds)
    return _generation_status(registry, project_id)


@app.get("/projects/{project_id}/generation", response_model=GenerationStatusResponse, tags=["generation"])
async def generation_status(project_id: UUID) -> GenerationStatusResponse:
    registry = get_registry()
    await registry.store.require_project(project_id)
    return _generation_status(registry, project_id)


@app.post("/projects/{project_id}/generation/stop", response_model=GenerationStatusResponse, tags=["generation"])
async def stop_generation(project_id: UUID) -> GenerationStatusResponse:
    registry = get_registry()
    await registry.store.require_project(project_id)
    registry.pipeline(project_id).stop()
    return _generation_status(registry, project_id)


@app.post("/projects/{project_id}/generation/skip", response_model=GenerationStatusResponse, tags=["generation"])
async def skip_generation(project_id: UUID) -> GenerationStatusResponse:
    registry = get_registry()
    await registry.store.require_project(project_id)
    await registry.pipeline(project_id).skip()
    return _generation_status(registry, project_id)


@app.post("/projects/{project_id}/generation/retry", response_model=GenerationStatusResponse, tags=["generation"])
async def retry_generation(project_id: UUID, payload: GenerationStartRequest) -> GenerationStatusResponse:
    registry = get_registry()
    await registry.store.require_project(project_id)
    pipeline = registry.pipeline(project_id, light=payload.light)
    pipeline.start_retry()
    if payload.wait:
        await pipeline.wait(payload.timeout_seconds)
    return _generation_status(registry, project_id)


@app.post(
    "/projects/{project_id}/generation/continue",
    response_model=GenerationStatusResponse,
    tags=["generation"],
)
async def continue_generation(project_id: UUID) -> GenerationStatusResponse:
    registry = get_registry()
    await registry.store.require_project(project_id)
    await registry.pipeline(project_id).continue_anyway()
    return _generation_status(registry, project_id)


@app.post(
    "/projects/{project_id}/pages/{page_id}/illustrations",
    response_model=Illustration,
    status_code=status.HTTP_201_CREATED,
    tags=["illustrations"],
)
async def regenerate_illustration(project_id: UUID, page_id: UUID) -> Illustration:
    registry = get_registry()
    await registry.store.require_project(project_id)
    with log_context(project_id=project_id, page_id=page_id):
        return await registry.illustrations.regenerate(project_id, page_id)


@app.put(
    "/projects/{project_id}/pages/{page_id}/illustrations/{illustration_id}/select",
    response_model=Illustration,
    tags=["illustrations"],
)
async def select_illustration(project_id: UUID, page_id: UUID, illustration_id: UUID) -> Illustration:
    registry = get_registry()
    await registry.store.require_project(project_id)
    return await registry.illustrations.select(project_id, page_id, illustration_id)


@app.get("/projects/{project_id}/build-log", response_model=List[BuildLogEntry], tags=["projects"])
async def build_log(project_id: UUID, limit: int = Query(200, ge=1, le=1000)) -> List[BuildLogEntry]:
    store = get_registry().store
    await store.require_project(project_id)
    return await store.list_build_log(project_id, limit=limit)
