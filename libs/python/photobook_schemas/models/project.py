"""Domain models describing projects, photos, pages and illustrations."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from ..enums import BuildLogLevel, PageType, ProjectStatus
from ..utils.validators import ensure_unique_page_numbers


class Project(BaseModel):
    """A single book in progress."""

    id: UUID = Field(default_factory=uuid4)
    title: str = Field("Untitled book", max_length=200)
    status: ProjectStatus = ProjectStatus.UPLOAD
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Photo(BaseModel):
    """An uploaded photo; created only after the binary upload succeeded."""

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    storage_path: str = Field(..., min_length=1)
    sort_order: int = Field(..., ge=0)
    caption: Optional[str] = None
    is_favorite: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Page(BaseModel):
    """One page of the book. ``page_number`` defines order within a project."""

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    page_number: int = Field(..., ge=1)
    page_type: PageType = PageType.STORY
    text_content: str = ""
    illustration_prompt: Optional[str] = None
    scene_description: Optional[str] = None
    is_approved: bool = False


class Illustration(BaseModel):
    """A generated image for a page. Several may exist; at most one is selected."""

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    page_id: UUID
    storage_path: str = Field(..., min_length=1)
    generation_prompt: Optional[str] = None
    is_selected: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class BuildLogEntry(BaseModel):
    """Human-readable milestone written while a project is being built."""

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    phase: str = Field(..., min_length=1, max_length=40)
    level: BuildLogLevel = BuildLogLevel.INFO
    message: str = Field(..., min_length=1)
    technical_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class GeneratedPage(BaseModel):
    """Page content returned by the text-generation call."""

    page_number: int = Field(..., ge=1)
    page_type: PageType = PageType.STORY
    text_content: str = ""
    illustration_prompt: Optional[str] = None
    scene_description: Optional[str] = None

    def to_page(self, project_id: UUID) -> Page:
        return Page(
            project_id=project_id,
            page_number=self.page_number,
            page_type=self.page_type,
            text_content=self.text_content,
            illustration_prompt=self.illustration_prompt,
            scene_description=self.scene_description,
        )


class GeneratedPageSet(BaseModel):
    """Complete ordered page set; replaces every prior page of the project."""

    pages: list[GeneratedPage]

    @field_validator("pages")
    @classmethod
    def validate_page_numbers(cls, pages: list[GeneratedPage]) -> list[GeneratedPage]:
        ensure_unique_page_numbers(page.page_number for page in pages)
        return sorted(pages, key=lambda page: page.page_number)
