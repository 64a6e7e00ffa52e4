"""Shared schemas for the photobook generator."""

from .enums import (
    BuildLogLevel,
    ChangeKind,
    GenerationPhase,
    PageType,
    ProjectStatus,
    ResumeState,
    StoreTable,
)
from .models.generation import (
    GenerationSnapshot,
    PhaseEvent,
    UploadFile,
    UploadProgress,
    UploadSummary,
    UploadTask,
)
from .models.project import (
    BuildLogEntry,
    GeneratedPage,
    GeneratedPageSet,
    Illustration,
    Page,
    Photo,
    Project,
)

__all__ = [
    "BuildLogEntry",
    "BuildLogLevel",
    "ChangeKind",
    "GeneratedPage",
    "GeneratedPageSet",
    "GenerationPhase",
    "GenerationSnapshot",
    "Illustration",
    "Page",
    "PageType",
    "PhaseEvent",
    "Photo",
    "Project",
    "ProjectStatus",
    "ResumeState",
    "StoreTable",
    "UploadFile",
    "UploadProgress",
    "UploadSummary",
    "UploadTask",
]
