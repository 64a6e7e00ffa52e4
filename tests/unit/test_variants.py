"""Tests for background variant scheduling and manual illustration changes."""

import asyncio

import pytest

from photobook_providers import BackendError, MockBackend
from photobook_schemas import Illustration, Page, Photo

from services.generator.app.errors import PageNotFoundError
from services.generator.app.illustrations import IllustrationService
from services.generator.app.variants import BackgroundVariantScheduler


pytestmark = pytest.mark.anyio("asyncio")


async def _page_with_selection(store, project) -> Page:
    await store.create_project(project)
    (page,) = await store.replace_pages(project.id, [Page(project_id=project.id, page_number=2)])
    await store.add_illustration(
        Illustration(project_id=project.id, page_id=page.id, storage_path="first.png"),
        replace_selection=True,
    )
    return page


async def test_variants_are_staggered_and_never_selected(store, project, fast_settings, monkeypatch) -> None:
    page = await _page_with_selection(store, project)
    backend = MockBackend()
    service = IllustrationService(store, backend, fast_settings)
    delays: list[float] = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr("services.generator.app.variants.asyncio.sleep", fake_sleep)
    scheduler = BackgroundVariantScheduler(service, stagger_seconds=2.5)

    tasks = scheduler.schedule(project.id, [page, page])
    assert len(tasks) == 2
    await scheduler.drain()

    assert 2.5 in delays
    assert [call.variant for call in backend.illustration_calls] == [True, True]
    illustrations = await store.list_illustrations(project.id, page.id)
    assert len(illustrations) == 3
    assert [ill.storage_path for ill in illustrations if ill.is_selected] == ["first.png"]
    assert scheduler.pending == 0


async def test_schedule_skips_requests_already_in_flight(store, project, fast_settings) -> None:
    page = await _page_with_selection(store, project)
    other = Page(id=page.id, project_id=project.id, page_number=page.page_number)
    backend = MockBackend()
    scheduler = BackgroundVariantScheduler(IllustrationService(store, backend, fast_settings), stagger_seconds=60)

    assert len(scheduler.schedule(project.id, [page, page])) == 2
    assert scheduler.schedule(project.id, [other, other]) == []
    assert len(scheduler.schedule(project.id, [page, page, page])) == 1
    assert scheduler.in_flight(page.id) == 3

    await scheduler.shutdown()

    assert scheduler.in_flight(page.id) == 0
    assert scheduler.pending == 0


async def test_variant_failures_are_swallowed(store, project, fast_settings) -> None:
    page = await _page_with_selection(store, project)
    backend = MockBackend(illustration_failures=lambda request: BackendError("quota"))
    scheduler = BackgroundVariantScheduler(IllustrationService(store, backend, fast_settings), stagger_seconds=0)

    scheduler.schedule(project.id, [page])
    await scheduler.drain()

    assert len(backend.illustration_calls) == 1
    assert len(await store.list_illustrations(project.id)) == 1


async def test_shutdown_cancels_outstanding_variants(store, project, fast_settings) -> None:
    page = await _page_with_selection(store, project)
    backend = MockBackend()
    scheduler = BackgroundVariantScheduler(IllustrationService(store, backend, fast_settings), stagger_seconds=60)

    scheduler.schedule(project.id, [page, page])
    while not backend.illustration_calls:
        await asyncio.sleep(0)
    await scheduler.shutdown()

    assert len(backend.illustration_calls) == 1
    assert scheduler.pending == 0


async def test_regenerate_replaces_selection(store, project, fast_settings) -> None:
    page = await _page_with_selection(store, project)
    service = IllustrationService(store, MockBackend(), fast_settings)

    fresh = await service.regenerate(project.id, page.id)

    illustrations = await store.list_illustrations(project.id, page.id)
    assert [ill.id for ill in illustrations if ill.is_selected] == [fresh.id]
    assert len(illustrations) == 2


async def test_select_moves_selection_to_chosen_illustration(store, project, fast_settings) -> None:
    page = await _page_with_selection(store, project)
    service = IllustrationService(store, MockBackend(), fast_settings)
    variant = await service.request(page, variant=True)
    assert not variant.is_selected

    chosen = await service.select(project.id, page.id, variant.id)

    assert chosen.is_selected
    selected = [ill.id for ill in await store.list_illustrations(project.id) if ill.is_selected]
    assert selected == [variant.id]


async def test_page_from_other_project_is_rejected(store, project, fast_settings) -> None:
    page = await _page_with_selection(store, project)
    service = IllustrationService(store, MockBackend(), fast_settings)
    with pytest.raises(PageNotFoundError):
        await service.regenerate(page.id, page.id)


async def test_reference_photos_prefer_favorites(store, project, fast_settings) -> None:
    await store.create_project(project)
    for order in range(5):
        await store.insert_photo(
            Photo(
                project_id=project.id,
                storage_path=f"photo-{order}.jpg",
                sort_order=order,
                is_favorite=order in {3, 4},
            )
        )
    service = IllustrationService(store, MockBackend(), fast_settings)

    assert await service.reference_paths(project.id) == ["photo-3.jpg", "photo-4.jpg", "photo-0.jpg"]
