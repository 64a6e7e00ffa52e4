"""Persistence and change-notification substrate.

The pipeline relies on read-after-write consistency for its own writes and on
an at-least-once change stream. Consumers of the stream must re-read instead
of trusting event payloads; events carry identifiers only.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

from photobook_schemas import (
    BuildLogEntry,
    ChangeKind,
    Illustration,
    Page,
    Photo,
    Project,
    ProjectStatus,
    StoreTable,
)

from .errors import InvalidTransition, PageNotFoundError, ProjectNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    table: StoreTable
    kind: ChangeKind
    project_id: UUID
    row_id: Optional[UUID] = None
    emitted_at: datetime = field(default_factory=datetime.utcnow)


class Subscription:
    """Async iterator over change events for one project."""

    def __init__(self, tables: frozenset[StoreTable] | None, on_close) -> None:
        self.tables = tables
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()
        self._on_close = on_close
        self._closed = False

    def accepts(self, event: ChangeEvent) -> bool:
        return self.tables is None or event.table in self.tables

    def push(self, event: ChangeEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def get(self) -> ChangeEvent | None:
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        self._on_close(self)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class ChangeFeed:
    """Fan-out of change events to per-project subscriptions."""

    def __init__(self) -> None:
        self._subscribers: dict[UUID, list[Subscription]] = defaultdict(list)

    def subscribe(self, project_id: UUID, tables: Iterable[StoreTable] | None = None) -> Subscription:
        table_set = frozenset(tables) if tables is not None else None

        def _remove(subscription: Subscription) -> None:
            listeners = self._subscribers.get(project_id, [])
            if subscription in listeners:
                listeners.remove(subscription)

        subscription = Subscription(table_set, _remove)
        self._subscribers[project_id].append(subscription)
        return subscription

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscribers.get(event.project_id, [])):
            if subscription.accepts(event):
                subscription.push(event)


class ProjectStore(ABC):
    """Row store keyed by project, plus a change feed."""

    def __init__(self) -> None:
        self.feed = ChangeFeed()

    def subscribe(self, project_id: UUID, tables: Iterable[StoreTable] | None = None) -> Subscription:
        return self.feed.subscribe(project_id, tables)

    def _emit(self, table: StoreTable, kind: ChangeKind, project_id: UUID, row_id: UUID | None = None) -> None:
        self.feed.publish(ChangeEvent(table=table, kind=kind, project_id=project_id, row_id=row_id))

    # projects
    @abstractmethod
    async def create_project(self, project: Project) -> Project: ...

    @abstractmethod
    async def get_project(self, project_id: UUID) -> Project | None: ...

    @abstractmethod
    async def _set_project_status(self, project_id: UUID, status: ProjectStatus) -> Project: ...

    async def require_project(self, project_id: UUID) -> Project:
        project = await self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    async def update_project_status(
        self, project_id: UUID, status: ProjectStatus, *, force: bool = False
    ) -> Project:
        """Move a project forward; moving backward needs ``force`` (user action)."""

        project = await self.require_project(project_id)
        if project.status == status:
            return project
        if status.rank < project.status.rank and not force:
            raise InvalidTransition(
                f"Project status cannot move back from {project.status.value} to {status.value}"
            )
        return await self._set_project_status(project_id, status)

    # photos
    @abstractmethod
    async def next_sort_order(self, project_id: UUID) -> int:
        """Order for the next photo: one past the highest stored order, 0 when empty."""

    @abstractmethod
    async def insert_photo(self, photo: Photo) -> Photo: ...

    @abstractmethod
    async def list_photos(self, project_id: UUID) -> list[Photo]: ...

    @abstractmethod
    async def update_photo_caption(self, photo_id: UUID, caption: str) -> None: ...

    # pages
    @abstractmethod
    async def list_pages(self, project_id: UUID) -> list[Page]: ...

    @abstractmethod
    async def get_page(self, page_id: UUID) -> Page | None: ...

    @abstractmethod
    async def replace_pages(self, project_id: UUID, pages: list[Page]) -> list[Page]:
        """Delete every page (and illustration) of the project, then write ``pages``."""

    async def require_page(self, page_id: UUID) -> Page:
        page = await self.get_page(page_id)
        if page is None:
            raise PageNotFoundError(page_id)
        return page

    # illustrations
    @abstractmethod
    async def list_illustrations(self, project_id: UUID, page_id: UUID | None = None) -> list[Illustration]: ...

    @abstractmethod
    async def add_illustration(self, illustration: Illustration, *, replace_selection: bool) -> Illustration:
        """Insert an illustration and apply the one-selected-per-page rule.

        With ``replace_selection`` the new row becomes the selected one and any
        other selected row on the page is cleared. Without it, the new row is
        selected only when the page has no selected illustration yet.
        """

    @abstractmethod
    async def select_illustration(self, page_id: UUID, illustration_id: UUID) -> Illustration: ...

    # build log
    @abstractmethod
    async def append_build_log(self, entry: BuildLogEntry) -> BuildLogEntry: ...

    @abstractmethod
    async def list_build_log(self, project_id: UUID, limit: int = 200) -> list[BuildLogEntry]: ...

    async def initialise(self) -> None:
        """Create tables if the backing database needs them."""

    async def aclose(self) -> None:
        """Release connections held by the store."""


class InMemoryProjectStore(ProjectStore):
    """Process-local store used by tests and single-node development."""

    def __init__(self) -> None:
        super().__init__()
        self._projects: dict[UUID, Project] = {}
        self._photos: dict[UUID, Photo] = {}
        self._pages: dict[UUID, Page] = {}
        self._illustrations: dict[UUID, Illustration] = {}
        self._build_log: list[BuildLogEntry] = []

    async def create_project(self, project: Project) -> Project:
        self._projects[project.id] = project.model_copy()
        self._emit(StoreTable.PROJECTS, ChangeKind.INSERT, project.id, project.id)
        return project

    async def get_project(self, project_id: UUID) -> Project | None:
        project = self._projects.get(project_id)
        return project.model_copy() if project else None

    async def _set_project_status(self, project_id: UUID, status: ProjectStatus) -> Project:
        project = self._projects[project_id]
        updated = project.model_copy(update={"status": status, "updated_at": datetime.utcnow()})
        self._projects[project_id] = updated
        self._emit(StoreTable.PROJECTS, ChangeKind.UPDATE, project_id, project_id)
        return updated.model_copy()

    async def next_sort_order(self, project_id: UUID) -> int:
        orders = [photo.sort_order for photo in self._photos.values() if photo.project_id == project_id]
        return max(orders) + 1 if orders else 0

    async def insert_photo(self, photo: Photo) -> Photo:
        self._photos[photo.id] = photo.model_copy()
        self._emit(StoreTable.PHOTOS, ChangeKind.INSERT, photo.project_id, photo.id)
        return photo

    async def list_photos(self, project_id: UUID) -> list[Photo]:
        photos = [photo.model_copy() for photo in self._photos.values() if photo.project_id == project_id]
        return sorted(photos, key=lambda photo: (photo.sort_order, photo.created_at))

    async def update_photo_caption(self, photo_id: UUID, caption: str) -> None:
        photo = self._photos.get(photo_id)
        if photo is None:
            return
        self._photos[photo_id] = photo.model_copy(update={"caption": caption})
        self._emit(StoreTable.PHOTOS, ChangeKind.UPDATE, photo.project_id, photo_id)

    async def list_pages(self, project_id: UUID) -> list[Page]:
        pages = [page.model_copy() for page in self._pages.values() if page.project_id == project_id]
        return sorted(pages, key=lambda page: page.page_number)

    async def get_page(self, page_id: UUID) -> Page | None:
        page = self._pages.get(page_id)
        return page.model_copy() if page else None

    async def replace_pages(self, project_id: UUID, pages: list[Page]) -> list[Page]:
        stale_pages = [page_id for page_id, page in self._pages.items() if page.project_id == project_id]
        for page_id in stale_pages:
            del self._pages[page_id]
        stale_illustrations = [
            ill_id for ill_id, ill in self._illustrations.items() if ill.project_id == project_id
        ]
        for ill_id in stale_illustrations:
            del self._illustrations[ill_id]
        if stale_pages:
            self._emit(StoreTable.PAGES, ChangeKind.DELETE, project_id)
        for page in pages:
            self._pages[page.id] = page.model_copy()
            self._emit(StoreTable.PAGES, ChangeKind.INSERT, project_id, page.id)
        return await self.list_pages(project_id)

    async def list_illustrations(self, project_id: UUID, page_id: UUID | None = None) -> list[Illustration]:
        # insertion order doubles as creation order
        return [
            ill.model_copy()
            for ill in self._illustrations.values()
            if ill.project_id == project_id and (page_id is None or ill.page_id == page_id)
        ]

    async def add_illustration(self, illustration: Illustration, *, replace_selection: bool) -> Illustration:
        if illustration.page_id not in self._pages:
            raise PageNotFoundError(illustration.page_id)
        siblings = [ill for ill in self._illustrations.values() if ill.page_id == illustration.page_id]
        if replace_selection:
            for sibling in siblings:
                if sibling.is_selected:
                    self._illustrations[sibling.id] = sibling.model_copy(update={"is_selected": False})
            selected = True
        else:
            selected = not any(sibling.is_selected for sibling in siblings)
        stored = illustration.model_copy(update={"is_selected": selected})
        self._illustrations[stored.id] = stored
        self._emit(StoreTable.ILLUSTRATIONS, ChangeKind.INSERT, stored.project_id, stored.id)
        return stored.model_copy()

    async def select_illustration(self, page_id: UUID, illustration_id: UUID) -> Illustration:
        target = self._illustrations.get(illustration_id)
        if target is None or target.page_id != page_id:
            raise PageNotFoundError(page_id)
        for ill in list(self._illustrations.values()):
            if ill.page_id == page_id:
                self._illustrations[ill.id] = ill.model_copy(update={"is_selected": ill.id == illustration_id})
        self._emit(StoreTable.ILLUSTRATIONS, ChangeKind.UPDATE, target.project_id, illustration_id)
        return self._illustrations[illustration_id].model_copy()

    async def append_build_log(self, entry: BuildLogEntry) -> BuildLogEntry:
        self._build_log.append(entry.model_copy())
        self._emit(StoreTable.BUILD_LOG, ChangeKind.INSERT, entry.project_id, entry.id)
        return entry

    async def list_build_log(self, project_id: UUID, limit: int = 200) -> list[BuildLogEntry]:
        entries = [entry.model_copy() for entry in self._build_log if entry.project_id == project_id]
        return entries[-limit:]
