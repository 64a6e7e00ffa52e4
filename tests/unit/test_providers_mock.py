"""Tests for the mock backend and factory."""

import asyncio
from uuid import uuid4

import pytest

from photobook_providers import (
    BackendConfig,
    BackendConfigError,
    BackendFactory,
    HttpFunctionsBackend,
    IllustrationRequest,
    MockBackend,
    RateLimitedError,
    StoryRequest,
)
from photobook_schemas import PageType


def test_mock_story_sync() -> None:
    backend = MockBackend(page_count=5)
    response = asyncio.run(backend.generate_story(StoryRequest(project_id=uuid4())))
    assert [page.page_number for page in response.pages] == [1, 2, 3, 4, 5]
    assert response.pages[0].page_type == PageType.COVER
    assert response.pages[-1].page_type == PageType.CLOSING
    assert len(backend.story_calls) == 1


def test_mock_illustration_failure_plan() -> None:
    backend = MockBackend(
        illustration_failures=lambda request: RateLimitedError("busy") if request.page_number == 2 else None
    )
    project_id = uuid4()
    ok = asyncio.run(
        backend.generate_illustration(IllustrationRequest(project_id=project_id, page_id=uuid4(), page_number=1))
    )
    assert ok.storage_path.startswith(f"illustrations/{project_id}/")
    with pytest.raises(RateLimitedError):
        asyncio.run(
            backend.generate_illustration(IllustrationRequest(project_id=project_id, page_id=uuid4(), page_number=2))
        )
    assert len(backend.illustration_calls) == 2


def test_factory_creates_mock_when_config_provided() -> None:
    backend = BackendFactory.create(BackendConfig(name="mock"))
    assert isinstance(backend, MockBackend)


def test_factory_creates_http_backend() -> None:
    backend = BackendFactory.create(BackendConfig(name="functions", base_url="https://example.test", api_key="k"))
    assert isinstance(backend, HttpFunctionsBackend)
    asyncio.run(backend.aclose())


def test_factory_rejects_unknown_backend() -> None:
    with pytest.raises(BackendConfigError):
        BackendFactory.create(BackendConfig(name="carrier-pigeon"))
