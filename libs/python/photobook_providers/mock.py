"""Deterministic mock backend for tests and offline development."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from photobook_schemas import GeneratedPage, PageType

from .base import (
    CaptionRequest,
    CaptionResponse,
    GenerationBackend,
    IllustrationRequest,
    IllustrationResponse,
    StoryRequest,
    StoryResponse,
)
from .config import BackendConfig, mock_backend_config

FailurePlan = Callable[[IllustrationRequest], Optional[Exception]]

DEFAULT_PAGE_COUNT = 12


def default_page_types(page_count: int) -> list[PageType]:
    if page_count < 3:
        return [PageType.STORY] * page_count
    middle = [PageType.STORY] * (page_count - 3)
    return [PageType.COVER, PageType.DEDICATION, *middle, PageType.CLOSING]


class MockBackend(GenerationBackend):
    """Records every call and answers without touching the network.

    ``story_error`` is raised by the next story call; ``illustration_failures``
    decides per request whether an illustration call fails.
    """

    name = "mock"

    def __init__(
        self,
        config: BackendConfig | None = None,
        *,
        page_count: int = DEFAULT_PAGE_COUNT,
        story_error: Exception | None = None,
        illustration_failures: FailurePlan | None = None,
        caption_error: Exception | None = None,
        latency_seconds: float = 0.0,
    ) -> None:
        self._config = config or mock_backend_config()
        self.page_count = page_count
        self.story_error = story_error
        self.illustration_failures = illustration_failures
        self.caption_error = caption_error
        self.latency_seconds = latency_seconds
        self.story_calls: list[StoryRequest] = []
        self.illustration_calls: list[IllustrationRequest] = []
        self.caption_calls: list[CaptionRequest] = []

    async def generate_story(self, request: StoryRequest) -> StoryResponse:
        self.story_calls.append(request)
        await self._pause()
        if self.story_error is not None:
            raise self.story_error
        pages = [
            GeneratedPage(
                page_number=number,
                page_type=page_type,
                text_content=f"Page {number} of the story.",
                illustration_prompt=f"Watercolor scene for page {number}",
                scene_description=f"Scene {number}",
            )
            for number, page_type in enumerate(default_page_types(self.page_count), start=1)
        ]
        return StoryResponse(pages=pages, model="mock", latency_ms=1.0)

    async def generate_illustration(self, request: IllustrationRequest) -> IllustrationResponse:
        self.illustration_calls.append(request)
        await self._pause()
        if self.illustration_failures is not None:
            error = self.illustration_failures(request)
            if error is not None:
                raise error
        attempt = len(self.illustration_calls)
        suffix = f"-{attempt}" if request.variant else ""
        return IllustrationResponse(
            storage_path=f"illustrations/{request.project_id}/{request.page_id}{suffix}.png",
            generation_prompt=request.prompt,
            model="mock",
            latency_ms=1.0,
        )

    async def describe_photo(self, request: CaptionRequest) -> CaptionResponse:
        self.caption_calls.append(request)
        await self._pause()
        if self.caption_error is not None:
            raise self.caption_error
        return CaptionResponse(caption=f"A photo stored at {request.storage_path}")

    async def _pause(self) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        else:
            await asyncio.sleep(0)
