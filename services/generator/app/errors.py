"""Errors raised by the generation service."""

from __future__ import annotations

from uuid import UUID


class PipelineError(RuntimeError):
    """Base class for generation pipeline failures."""


class ProjectNotFoundError(PipelineError):
    def __init__(self, project_id: UUID) -> None:
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class PageNotFoundError(PipelineError):
    def __init__(self, page_id: UUID) -> None:
        super().__init__(f"Page {page_id} not found")
        self.page_id = page_id


class InvalidTransition(PipelineError):
    """A phase or status change that the transition table does not allow."""


class PipelineBusyError(PipelineError):
    """A second run was requested while one is already active for the project."""
