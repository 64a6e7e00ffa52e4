"""Best-effort background variant generation.

Work is submitted to a long-lived executor owned by the application, not to
the pipeline or the HTTP request that triggered it, and it ignores the
pipeline's stop flag. Failures are logged and dropped: every page handed over
here already has a usable illustration.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from functools import partial
from typing import Sequence
from uuid import UUID

from photobook_observability import log_context
from photobook_schemas import Page

from .illustrations import IllustrationService

logger = logging.getLogger(__name__)


class BackgroundVariantScheduler:
    def __init__(self, illustrations: IllustrationService, *, stagger_seconds: float = 2.5) -> None:
        self._illustrations = illustrations
        self._stagger_seconds = stagger_seconds
        self._tasks: set[asyncio.Task[None]] = set()
        self._in_flight: Counter[UUID] = Counter()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def in_flight(self, page_id: UUID) -> int:
        return self._in_flight[page_id]

    def schedule(self, project_id: UUID, pages: Sequence[Page]) -> list[asyncio.Task[None]]:
        """Fire one variant request per entry, the n-th delayed by n * stagger.

        Entries already covered by an outstanding request for the same page
        are dropped.
        """

        already_queued = Counter(self._in_flight)
        fresh: list[Page] = []
        for page in pages:
            if already_queued[page.id]:
                already_queued[page.id] -= 1
                continue
            fresh.append(page)
        if len(fresh) < len(pages):
            logger.info(
                "Skipping variants already in flight",
                extra={"project_id": str(project_id), "skipped": len(pages) - len(fresh)},
            )
        if not fresh:
            return []
        logger.info(
            "Scheduling background variants",
            extra={"project_id": str(project_id), "variant_count": len(fresh)},
        )
        scheduled = []
        for index, page in enumerate(fresh):
            task = asyncio.get_running_loop().create_task(
                self._run_one(page, delay=index * self._stagger_seconds),
                name=f"variant-{page.id}-{index}",
            )
            self._in_flight[page.id] += 1
            self._tasks.add(task)
            task.add_done_callback(partial(self._settle, page.id))
            scheduled.append(task)
        return scheduled

    def _settle(self, page_id: UUID, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        self._in_flight[page_id] -= 1
        if self._in_flight[page_id] <= 0:
            del self._in_flight[page_id]

    async def _run_one(self, page: Page, *, delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
        with log_context(project_id=page.project_id):
            try:
                await self._illustrations.request(page, variant=True)
            except Exception:
                logger.debug("Variant generation failed", exc_info=True, extra={"page_id": str(page.id)})

    async def drain(self) -> None:
        """Wait for every outstanding variant request to settle."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
