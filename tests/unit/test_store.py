"""Tests for the in-memory project store, change feed and progress tracking."""

import asyncio

import pytest

from photobook_schemas import (
    BuildLogEntry,
    ChangeKind,
    GenerationPhase,
    GenerationSnapshot,
    Illustration,
    Page,
    PhaseEvent,
    ProjectStatus,
    StoreTable,
)

from services.generator.app.errors import InvalidTransition, PageNotFoundError, ProjectNotFoundError
from services.generator.app.events import EventChannel
from services.generator.app.progress import IllustrationProgressTracker


pytestmark = pytest.mark.anyio("asyncio")


async def test_status_only_moves_forward_without_force(store, project) -> None:
    await store.create_project(project)
    await store.update_project_status(project.id, ProjectStatus.REVIEW)

    with pytest.raises(InvalidTransition):
        await store.update_project_status(project.id, ProjectStatus.GENERATING)

    updated = await store.update_project_status(project.id, ProjectStatus.UPLOAD, force=True)
    assert updated.status == ProjectStatus.UPLOAD


async def test_missing_project_raises(store, project) -> None:
    with pytest.raises(ProjectNotFoundError):
        await store.require_project(project.id)


async def test_replace_pages_drops_previous_pages_and_illustrations(store, project) -> None:
    await store.create_project(project)
    (old,) = await store.replace_pages(project.id, [Page(project_id=project.id, page_number=1)])
    await store.add_illustration(
        Illustration(project_id=project.id, page_id=old.id, storage_path="old.png"),
        replace_selection=True,
    )

    pages = await store.replace_pages(
        project.id,
        [Page(project_id=project.id, page_number=2), Page(project_id=project.id, page_number=1)],
    )

    assert [page.page_number for page in pages] == [1, 2]
    assert await store.get_page(old.id) is None
    assert await store.list_illustrations(project.id) == []


async def test_one_selected_illustration_per_page(store, project) -> None:
    await store.create_project(project)
    (page,) = await store.replace_pages(project.id, [Page(project_id=project.id, page_number=1)])

    first = await store.add_illustration(
        Illustration(project_id=project.id, page_id=page.id, storage_path="a.png"), replace_selection=False
    )
    variant = await store.add_illustration(
        Illustration(project_id=project.id, page_id=page.id, storage_path="b.png"), replace_selection=False
    )
    replacement = await store.add_illustration(
        Illustration(project_id=project.id, page_id=page.id, storage_path="c.png"), replace_selection=True
    )

    assert first.is_selected
    assert not variant.is_selected
    selected = [ill.id for ill in await store.list_illustrations(project.id) if ill.is_selected]
    assert selected == [replacement.id]

    with pytest.raises(PageNotFoundError):
        await store.select_illustration(page.id, page.id)


async def test_subscription_filters_by_project_and_table(store, project) -> None:
    await store.create_project(project)
    subscription = store.subscribe(project.id, [StoreTable.PAGES])

    await store.append_build_log(BuildLogEntry(project_id=project.id, phase="system", message="hello"))
    await store.replace_pages(project.id, [Page(project_id=project.id, page_number=1)])
    event = await asyncio.wait_for(subscription.get(), 1)
    subscription.close()

    assert event.table == StoreTable.PAGES
    assert event.kind == ChangeKind.INSERT
    assert event.project_id == project.id


async def test_build_log_is_listed_oldest_first_and_limited(store, project) -> None:
    await store.create_project(project)
    for index in range(5):
        await store.append_build_log(BuildLogEntry(project_id=project.id, phase="system", message=f"entry {index}"))

    entries = await store.list_build_log(project.id, limit=2)

    assert [entry.message for entry in entries] == ["entry 3", "entry 4"]


async def test_progress_tracker_recomputes_on_duplicate_notifications(store, project) -> None:
    await store.create_project(project)
    pages = await store.replace_pages(
        project.id, [Page(project_id=project.id, page_number=number) for number in (1, 2)]
    )
    updates = []
    tracker = IllustrationProgressTracker(store, project.id, on_update=updates.append)
    tracker.start()

    await store.add_illustration(
        Illustration(project_id=project.id, page_id=pages[1].id, storage_path="two.png"), replace_selection=True
    )
    await store.add_illustration(
        Illustration(project_id=project.id, page_id=pages[1].id, storage_path="two-b.png"), replace_selection=False
    )
    # replayed notification for the same row
    store._emit(StoreTable.ILLUSTRATIONS, ChangeKind.INSERT, project.id)
    for _ in range(10):
        await asyncio.sleep(0)
    await tracker.stop()

    assert updates
    assert tracker.latest.total_pages == 2
    assert tracker.latest.illustrated_count == 1
    assert all(update.illustrated_count == 1 for update in updates)


async def test_event_channel_replays_last_event_to_late_subscribers(project) -> None:
    channel = EventChannel()
    for phase in (GenerationPhase.STORY, GenerationPhase.ILLUSTRATIONS, GenerationPhase.DONE):
        channel.publish(
            PhaseEvent(
                project_id=project.id,
                phase=phase,
                snapshot=GenerationSnapshot(project_id=project.id, phase=phase),
            )
        )

    received = [event.phase async for event in channel.stream()]

    assert received == [GenerationPhase.DONE]
    assert len(channel.history) == 3
