"""Tests for the per-project upload queue."""

import asyncio
from uuid import UUID

import pytest

from photobook_providers import BackendError, MockBackend
from photobook_schemas import BuildLogLevel, Photo, UploadFile

from services.generator.app.storage import LocalPhotoStorage, PhotoStorage
from services.generator.app.uploads import UploadQueue


pytestmark = pytest.mark.anyio("asyncio")


class _FlakyStorage(PhotoStorage):
    """Fails the first ``failures[name]`` attempts for a file name."""

    def __init__(self, failures: dict[str, int] | None = None, gate: asyncio.Event | None = None) -> None:
        self.failures = dict(failures or {})
        self.gate = gate
        self.calls: list[str] = []
        self.in_flight = 0
        self.peak = 0

    async def put(self, project_id: UUID, filename: str, content: bytes, content_type: str) -> str:
        self.calls.append(filename)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)
            remaining = self.failures.get(filename, 0)
            if remaining:
                self.failures[filename] = remaining - 1
                raise OSError(f"storage throttled {filename}")
            return f"{project_id}/{filename}"
        finally:
            self.in_flight -= 1


def _files(count: int, start: int = 1) -> list[UploadFile]:
    return [
        UploadFile(filename=f"photo-{number}.jpg", content=b"jpeg-bytes")
        for number in range(start, start + count)
    ]


def _queue(store, project, backend, settings, storage, **kwargs) -> UploadQueue:
    return UploadQueue(
        project.id,
        store=store,
        storage=storage,
        backend=backend,
        settings=settings,
        **kwargs,
    )


async def test_all_uploads_succeed_with_gap_free_sort_order(store, project, backend, fast_settings) -> None:
    await store.create_project(project)
    for order in range(2):
        await store.insert_photo(Photo(project_id=project.id, storage_path=f"existing-{order}", sort_order=order))

    storage = _FlakyStorage()
    queue = _queue(store, project, backend, fast_settings, storage)
    queue.enqueue(_files(5))
    summary = await queue.wait_idle()

    assert summary.progress.total == 5
    assert summary.progress.completed == 5
    assert summary.progress.failed == 0
    photos = await store.list_photos(project.id)
    assert [photo.sort_order for photo in photos] == list(range(7))
    assert storage.peak <= 3


async def test_seven_files_with_two_transient_failures_recover_on_retry(
    store, project, backend, fast_settings
) -> None:
    await store.create_project(project)
    storage = _FlakyStorage({"photo-3.jpg": 1, "photo-5.jpg": 1})
    queue = _queue(store, project, backend, fast_settings, storage)

    queue.enqueue(_files(7))
    summary = await queue.wait_idle()

    assert summary.progress.model_dump() == {"total": 7, "completed": 7, "failed": 0}
    assert not summary.failed_files
    photos = await store.list_photos(project.id)
    assert len(photos) == 7
    assert [photo.sort_order for photo in photos] == list(range(7))
    assert storage.calls.count("photo-3.jpg") == 2
    assert storage.calls.count("photo-5.jpg") == 2


async def test_permanent_failure_is_reported_without_aborting_batch(
    store, project, backend, fast_settings
) -> None:
    await store.create_project(project)
    storage = _FlakyStorage({"photo-2.jpg": 5})
    queue = _queue(store, project, backend, fast_settings, storage)

    queue.enqueue(_files(4))
    summary = await queue.wait_idle()

    assert summary.progress.model_dump() == {"total": 4, "completed": 3, "failed": 1}
    assert summary.failed_files == ["photo-2.jpg"]
    assert summary.partial
    # primary attempt plus exactly one retry
    assert storage.calls.count("photo-2.jpg") == 2
    entries = await store.list_build_log(project.id)
    assert any(entry.level == BuildLogLevel.WARNING and "could not be uploaded" in entry.message for entry in entries)


async def test_next_batch_after_permanent_failure_does_not_reuse_sort_order(
    store, project, backend, fast_settings
) -> None:
    await store.create_project(project)
    storage = _FlakyStorage({"photo-2.jpg": 2})
    queue = _queue(store, project, backend, fast_settings, storage)

    queue.enqueue(_files(3))
    await queue.wait_idle()
    queue.enqueue(_files(1, start=4))
    await queue.wait_idle()

    orders = sorted(photo.sort_order for photo in await store.list_photos(project.id))
    assert orders == [0, 2, 3]
    assert await store.next_sort_order(project.id) == 4


async def test_enqueue_during_drain_is_picked_up_by_same_loop(store, project, backend, fast_settings) -> None:
    await store.create_project(project)
    gate = asyncio.Event()
    storage = _FlakyStorage(gate=gate)
    queue = _queue(store, project, backend, fast_settings, storage)

    first_task = queue.enqueue(_files(3))
    await asyncio.sleep(0)
    assert queue.is_draining
    second_task = queue.enqueue(_files(2, start=4))
    assert second_task is first_task

    gate.set()
    summary = await queue.wait_idle()

    assert summary.progress.total == 5
    assert summary.progress.completed == 5
    photos = await store.list_photos(project.id)
    assert [photo.sort_order for photo in photos] == list(range(5))
    assert storage.peak <= 3


async def test_captions_run_after_uploads_and_failures_are_swallowed(store, project, fast_settings) -> None:
    await store.create_project(project)
    backend = MockBackend(caption_error=BackendError("caption model unavailable"))
    queue = _queue(store, project, backend, fast_settings, _FlakyStorage())

    queue.enqueue(_files(2))
    summary = await queue.wait_idle()

    assert summary.progress.completed == 2
    assert len(backend.caption_calls) == 2
    photos = await store.list_photos(project.id)
    assert all(photo.caption is None for photo in photos)
    entries = await store.list_build_log(project.id)
    assert sum(1 for entry in entries if entry.level == BuildLogLevel.WARNING) == 2


async def test_successful_captions_are_stored_in_sort_order(store, project, backend, fast_settings) -> None:
    await store.create_project(project)
    queue = _queue(store, project, backend, fast_settings, _FlakyStorage({"photo-1.jpg": 1}))

    queue.enqueue(_files(3))
    await queue.wait_idle()

    photos = await store.list_photos(project.id)
    assert all(photo.caption for photo in photos)
    captioned = [request.photo_id for request in backend.caption_calls]
    assert captioned == [photo.id for photo in photos]


async def test_progress_callback_receives_snapshots(store, project, backend, fast_settings) -> None:
    await store.create_project(project)
    snapshots = []
    queue = _queue(
        store,
        project,
        backend,
        fast_settings,
        _FlakyStorage(),
        on_progress=snapshots.append,
    )

    queue.enqueue(_files(4))
    await queue.wait_idle()

    assert snapshots[0].total == 4 and snapshots[0].completed == 0
    assert [snap.completed for snap in snapshots if snap.completed] == [3, 4, 4]


async def test_local_storage_writes_files(tmp_path, store, project, backend, fast_settings) -> None:
    await store.create_project(project)
    storage = LocalPhotoStorage(str(tmp_path))
    queue = _queue(store, project, backend, fast_settings, storage)

    queue.enqueue(_files(1) + [UploadFile(filename="empty.jpg", content=b"")])
    summary = await queue.wait_idle()

    assert summary.progress.completed == 1
    assert summary.failed_files == ["empty.jpg"]
    photo = (await store.list_photos(project.id))[0]
    assert (tmp_path / photo.storage_path).read_bytes() == b"jpeg-bytes"
