"""Enum definitions shared across the generation workflow."""

from __future__ import annotations

from enum import Enum


class ProjectStatus(str, Enum):
    UPLOAD = "upload"
    INTERVIEW = "interview"
    GENERATING = "generating"
    REVIEW = "review"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    ProjectStatus.UPLOAD,
    ProjectStatus.INTERVIEW,
    ProjectStatus.GENERATING,
    ProjectStatus.REVIEW,
]


class GenerationPhase(str, Enum):
    LOADING = "loading"
    STORY = "story"
    ILLUSTRATIONS = "illustrations"
    DONE = "done"
    FAILED = "failed"


class PageType(str, Enum):
    COVER = "cover"
    DEDICATION = "dedication"
    STORY = "story"
    CLOSING = "closing"
    BACK_COVER = "back_cover"
    PHOTO_GALLERY = "photo_gallery"
    GALLERY_COLLAGE = "gallery_collage"


class ResumeState(str, Enum):
    FRESH = "fresh"
    ILLUSTRATIONS_INCOMPLETE = "illustrations_incomplete"
    COMPLETE = "complete"


class BuildLogLevel(str, Enum):
    INFO = "info"
    MILESTONE = "milestone"
    WARNING = "warning"
    ERROR = "error"


class StoreTable(str, Enum):
    PROJECTS = "projects"
    PHOTOS = "project_photos"
    PAGES = "project_pages"
    ILLUSTRATIONS = "project_illustrations"
    BUILD_LOG = "build_log"


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
