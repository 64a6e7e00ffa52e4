"""Illustration progress recomputed from the change feed.

Change notifications may arrive late, twice or out of order, so every event
triggers a fresh read; the payload is only a wake-up signal.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from photobook_schemas import StoreTable

from .store import ProjectStore, Subscription

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IllustrationProgress:
    total_pages: int = 0
    illustrated_count: int = 0


class IllustrationProgressTracker:
    def __init__(
        self,
        store: ProjectStore,
        project_id: UUID,
        *,
        on_update: Optional[Callable[[IllustrationProgress], None]] = None,
    ) -> None:
        self._store = store
        self._project_id = project_id
        self._on_update = on_update
        self._subscription: Subscription | None = None
        self._task: asyncio.Task[None] | None = None
        self.latest = IllustrationProgress()

    async def recompute(self) -> IllustrationProgress:
        pages = await self._store.list_pages(self._project_id)
        illustrations = await self._store.list_illustrations(self._project_id)
        page_ids = {page.id for page in pages}
        progress = IllustrationProgress(
            total_pages=len(pages),
            illustrated_count=len({ill.page_id for ill in illustrations if ill.is_selected and ill.page_id in page_ids}),
        )
        self.latest = progress
        if self._on_update is not None:
            self._on_update(progress)
        return progress

    def start(self) -> None:
        if self._task is not None:
            return
        self._subscription = self._store.subscribe(
            self._project_id, (StoreTable.ILLUSTRATIONS, StoreTable.PAGES)
        )
        self._task = asyncio.get_running_loop().create_task(self._consume(self._subscription))

    async def _consume(self, subscription: Subscription) -> None:
        async for _event in subscription:
            await self.recompute()

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._task is not None:
            task, self._task = self._task, None
            (outcome,) = await asyncio.gather(task, return_exceptions=True)
            if isinstance(outcome, Exception):
                logger.warning("Progress tracker stopped with an error", exc_info=outcome)
