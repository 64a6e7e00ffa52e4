"""Per-project photo upload queue with one retry pass and sequential captioning."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional
from uuid import UUID

from photobook_observability import log_context, observe_remote_call, track_active
from photobook_providers import CaptionRequest, GenerationBackend
from photobook_schemas import (
    BuildLogLevel,
    Photo,
    UploadFile,
    UploadProgress,
    UploadSummary,
    UploadTask,
)

from .batching import BatchedTaskRunner, BatchResult
from .build_log import BuildLog
from .settings import SERVICE_NAME, PipelineSettings
from .storage import PhotoStorage
from .store import ProjectStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[UploadProgress], None]


class UploadQueue:
    """Uploads photos for one project through a single drain loop.

    :meth:`enqueue` may be called at any time. Files added while a drain is
    active join the shared pending list and are handled by that same loop
    once its current pass (uploads, retry, captions) is over.
    """

    def __init__(
        self,
        project_id: UUID,
        *,
        store: ProjectStore,
        storage: PhotoStorage,
        backend: GenerationBackend,
        settings: PipelineSettings,
        build_log: BuildLog | None = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.project_id = project_id
        self._store = store
        self._storage = storage
        self._backend = backend
        self._settings = settings
        self._build_log = build_log or BuildLog(store)
        self._on_progress = on_progress

        self._pending: list[UploadFile] = []
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[UploadSummary] | None = None
        self._progress = UploadProgress()
        self._summary = UploadSummary()

    @property
    def is_draining(self) -> bool:
        return self._lock.locked()

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def progress(self) -> UploadProgress:
        return self._progress.model_copy()

    @property
    def summary(self) -> UploadSummary:
        return self._summary.model_copy(deep=True)

    def enqueue(self, files: Iterable[UploadFile]) -> asyncio.Task[UploadSummary]:
        """Append files to the pending list and make sure a drain is running."""

        files = list(files)
        if not self.is_draining and (self._task is None or self._task.done()):
            self._progress = UploadProgress()
            self._summary = UploadSummary()
        self._pending.extend(files)
        self._progress.total += len(files)
        self._publish()
        logger.info(
            "Files enqueued",
            extra={"project_id": str(self.project_id), "file_count": len(files), "pending": len(self._pending)},
        )
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.drain())
        return self._task

    async def wait_idle(self) -> UploadSummary:
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)
        return self.summary

    async def drain(self) -> UploadSummary:
        """Process pending files until none are left."""

        async with self._lock:
            track_active("upload_drain", service_name=SERVICE_NAME, delta=1)
            try:
                with log_context(project_id=self.project_id):
                    while self._pending:
                        batch, self._pending = self._pending, []
                        await self._drain_pass(batch)
            finally:
                track_active("upload_drain", service_name=SERVICE_NAME, delta=-1)
        return self.summary

    async def _drain_pass(self, files: list[UploadFile]) -> None:
        base_order = await self._store.next_sort_order(self.project_id)
        tasks = [
            UploadTask(file=upload, target_sort_order=base_order + offset)
            for offset, upload in enumerate(files)
        ]
        completed_before = self._progress.completed

        def on_chunk(_index: int, result: BatchResult[UploadTask]) -> None:
            self._progress.completed = completed_before + len(result.succeeded)
            self._publish()

        first = await BatchedTaskRunner(
            "uploads",
            self._settings.upload_concurrency,
            delay_seconds=self._settings.upload_delay_seconds,
            on_chunk=on_chunk,
        ).run(tasks, self._upload)
        photos: list[Photo] = list(first.values)

        permanent: list[UploadTask] = []
        if first.failed:
            logger.info("Retrying failed uploads", extra={"retry_count": len(first.failed)})
            completed_before = self._progress.completed
            second = await BatchedTaskRunner(
                "uploads_retry",
                self._settings.upload_concurrency,
                delay_seconds=self._settings.upload_retry_delay_seconds,
                on_chunk=on_chunk,
            ).run(first.failed_items, self._upload)
            photos.extend(second.values)
            permanent = second.failed_items
            for failure in second.failed:
                logger.warning(
                    "Upload failed permanently",
                    extra={"upload_name": failure.item.file.filename, "attempts": failure.item.attempts},
                    exc_info=failure.error,
                )

        self._progress.failed += len(permanent)
        self._summary.photo_ids.extend(photo.id for photo in photos)
        self._summary.failed_files.extend(task.file.filename for task in permanent)
        self._summary.progress = self._progress.model_copy()
        self._publish()
        await self._record_summary(len(photos), permanent)

        await self._caption(sorted(photos, key=lambda photo: photo.sort_order))

    async def _upload(self, task: UploadTask) -> Photo:
        task.attempts += 1
        path = await self._storage.put(
            self.project_id, task.file.filename, task.file.content, task.file.content_type
        )
        return await self._store.insert_photo(
            Photo(project_id=self.project_id, storage_path=path, sort_order=task.target_sort_order)
        )

    async def _caption(self, photos: list[Photo]) -> None:
        for index, photo in enumerate(photos):
            if index and self._settings.caption_delay_seconds:
                await asyncio.sleep(self._settings.caption_delay_seconds)
            try:
                response = await self._backend.describe_photo(
                    CaptionRequest(project_id=self.project_id, photo_id=photo.id, storage_path=photo.storage_path)
                )
                await self._store.update_photo_caption(photo.id, response.caption)
            except Exception as err:
                observe_remote_call(kind="caption", outcome=type(err).__name__, service_name=SERVICE_NAME)
                logger.warning("Caption failed", exc_info=True, extra={"photo_id": str(photo.id)})
                await self._build_log.record(
                    self.project_id,
                    "upload",
                    "A photo could not be described; it will still be used.",
                    level=BuildLogLevel.WARNING,
                    technical_message=str(err) or type(err).__name__,
                    photo_id=str(photo.id),
                )
                continue
            observe_remote_call(kind="caption", outcome="success", service_name=SERVICE_NAME)

    async def _record_summary(self, uploaded: int, permanent: list[UploadTask]) -> None:
        if uploaded:
            await self._build_log.milestone(
                self.project_id,
                "upload",
                f"{uploaded} photos uploaded.",
                uploaded=uploaded,
            )
        if permanent:
            await self._build_log.record(
                self.project_id,
                "upload",
                f"{len(permanent)} photos could not be uploaded.",
                level=BuildLogLevel.WARNING,
                technical_message=", ".join(task.file.filename for task in permanent),
                failed=len(permanent),
            )

    def _publish(self) -> None:
        if self._on_progress is not None:
            self._on_progress(self.progress)
