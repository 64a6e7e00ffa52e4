"""Core interfaces and dataclasses for remote generation calls."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, MutableMapping, Sequence
from uuid import UUID

from photobook_schemas import GeneratedPage


@dataclass(slots=True)
class StoryRequest:
    """Text generation input; the server resolves transcript and photos."""

    project_id: UUID
    metadata: MutableMapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class StoryResponse:
    pages: list[GeneratedPage]
    model: str = "unknown"
    latency_ms: float | None = None
    received_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(slots=True)
class IllustrationRequest:
    """Image generation input for a single page."""

    project_id: UUID
    page_id: UUID
    variant: bool = False
    prompt: str | None = None
    page_number: int | None = None
    reference_paths: Sequence[str] = ()


@dataclass(slots=True)
class IllustrationResponse:
    storage_path: str
    generation_prompt: str | None = None
    model: str = "unknown"
    latency_ms: float | None = None


@dataclass(slots=True)
class CaptionRequest:
    project_id: UUID
    photo_id: UUID
    storage_path: str


@dataclass(slots=True)
class CaptionResponse:
    caption: str


class GenerationBackend(ABC):
    """Abstract base class implemented by concrete backends."""

    name: str

    @abstractmethod
    async def generate_story(self, request: StoryRequest) -> StoryResponse:
        """Return the full ordered page set for a project."""

    @abstractmethod
    async def generate_illustration(self, request: IllustrationRequest) -> IllustrationResponse:
        """Produce one illustration for a page and return where it was stored."""

    @abstractmethod
    async def describe_photo(self, request: CaptionRequest) -> CaptionResponse:
        """Caption an uploaded photo."""

    async def aclose(self) -> None:
        """Release network resources held by the backend."""
