"""Transient models describing uploads and generation runs.

None of these are persisted; generation state is always reconstructed from
page and illustration rows.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..enums import GenerationPhase


class UploadFile(BaseModel):
    """A file handed to the upload queue."""

    filename: str = Field(..., min_length=1, max_length=255)
    content: bytes
    content_type: str = "image/jpeg"


class UploadTask(BaseModel):
    """An upload with the sort order it will be stored under."""

    file: UploadFile
    target_sort_order: int = Field(..., ge=0)
    attempts: int = 0


class UploadProgress(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0


class UploadSummary(BaseModel):
    """Outcome of one drain pass once the retry pass has settled."""

    progress: UploadProgress = Field(default_factory=UploadProgress)
    photo_ids: list[UUID] = Field(default_factory=list)
    failed_files: list[str] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.progress.failed > 0 and self.progress.completed > 0


class GenerationSnapshot(BaseModel):
    """Derived view of a generation run (phase plus counters)."""

    project_id: UUID
    phase: GenerationPhase = GenerationPhase.LOADING
    total_pages: int = 0
    illustrated_count: int = 0
    failed_count: int = 0
    retryable: Optional[bool] = None
    failure_step: Optional[GenerationPhase] = None
    error: Optional[str] = None
    detached: bool = False
    cancelled: bool = False


class PhaseEvent(BaseModel):
    """Published on every phase transition and counter change."""

    project_id: UUID
    previous: Optional[GenerationPhase] = None
    phase: GenerationPhase
    snapshot: GenerationSnapshot
    message: Optional[str] = None
    emitted_at: datetime = Field(default_factory=datetime.utcnow)
