"""Decide where a generation run starts from persisted state alone."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from uuid import UUID

from photobook_schemas import Page, ResumeState

from .store import ProjectStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResumePlan:
    state: ResumeState
    pages: list[Page] = field(default_factory=list)
    counts_by_page: dict[UUID, int] = field(default_factory=dict)
    satisfied_page_ids: set[UUID] = field(default_factory=set)
    initial_work: list[Page] = field(default_factory=list)
    variant_work: list[Page] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return len(self.pages)

    @property
    def illustrated_count(self) -> int:
        return len(self.satisfied_page_ids)


class ResumeInspector:
    """Classifies a project as fresh, illustrations-incomplete or complete.

    Nothing is cached; every call re-reads pages and illustrations.

    ``variant_work`` lists one entry per missing variant, so a page with one
    illustration and a target of three appears twice.
    """

    def __init__(self, store: ProjectStore, *, variant_target: int = 3) -> None:
        self._store = store
        self._variant_target = variant_target

    async def inspect(self, project_id: UUID) -> ResumePlan:
        pages = await self._store.list_pages(project_id)
        if not pages:
            return ResumePlan(state=ResumeState.FRESH)

        illustrations = await self._store.list_illustrations(project_id)
        counts = Counter(ill.page_id for ill in illustrations)
        satisfied = {ill.page_id for ill in illustrations if ill.is_selected}

        initial_work: list[Page] = []
        variant_work: list[Page] = []
        for page in pages:
            existing = counts.get(page.id, 0)
            # a page whose rows were all deselected externally still blocks completion
            if existing == 0 or page.id not in satisfied:
                initial_work.append(page)
            else:
                variant_work.extend([page] * max(0, self._variant_target - existing))

        page_ids = {page.id for page in pages}
        state = (
            ResumeState.COMPLETE
            if page_ids <= satisfied
            else ResumeState.ILLUSTRATIONS_INCOMPLETE
        )
        plan = ResumePlan(
            state=state,
            pages=pages,
            counts_by_page={page.id: counts.get(page.id, 0) for page in pages},
            satisfied_page_ids=satisfied & page_ids,
            initial_work=initial_work,
            variant_work=variant_work,
        )
        logger.info(
            "Resume plan computed",
            extra={
                "resume_state": state.value,
                "total_pages": plan.total_pages,
                "initial_work": len(initial_work),
                "variant_work": len(variant_work),
            },
        )
        return plan
