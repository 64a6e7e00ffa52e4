"""Pydantic models for the generator API."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from photobook_schemas import (
    GenerationSnapshot,
    Illustration,
    Page,
    Photo,
    Project,
    ProjectStatus,
    UploadProgress,
)


class ProjectCreateRequest(BaseModel):
    title: str = Field("Untitled book", min_length=1, max_length=200)
    status: ProjectStatus = ProjectStatus.UPLOAD


class ProjectDetail(BaseModel):
    project: Project
    photos: List[Photo] = Field(default_factory=list)
    pages: List[Page] = Field(default_factory=list)
    illustrations: List[Illustration] = Field(default_factory=list)


class PhotoUploadItem(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    content_base64: str = Field(..., min_length=1)
    content_type: str = "image/jpeg"


class PhotoUploadRequest(BaseModel):
    files: List[PhotoUploadItem] = Field(..., min_length=1)
    wait: bool = Field(False, description="Block until the queue has drained")


class UploadStatusResponse(BaseModel):
    project_id: UUID
    draining: bool
    pending: int
    progress: UploadProgress
    photo_ids: List[UUID] = Field(default_factory=list)
    failed_files: List[str] = Field(default_factory=list)


class GenerationStartRequest(BaseModel):
    light: bool = Field(False, description="Use the lighter illustration concurrency")
    wait: bool = Field(False, description="Block until the run settles or is skipped")
    timeout_seconds: Optional[float] = Field(None, gt=0)


class GenerationStatusResponse(BaseModel):
    snapshot: GenerationSnapshot
    running: bool
    pending_variants: int = 0
    message: Optional[str] = None
