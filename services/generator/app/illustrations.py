"""Single illustration requests and the one-selected-per-page rule."""

from __future__ import annotations

import logging
from time import perf_counter
from typing import Sequence
from uuid import UUID

from photobook_observability import log_context, observe_remote_call
from photobook_providers import BackendError, GenerationBackend, IllustrationRequest
from photobook_schemas import Illustration, Page

from .build_log import BuildLog
from .errors import PageNotFoundError
from .settings import SERVICE_NAME, PipelineSettings
from .store import ProjectStore

logger = logging.getLogger(__name__)


def describe_page(page: Page) -> str:
    if page.page_type.value == "cover":
        return "the cover"
    if page.page_type.value == "dedication":
        return "the dedication"
    return f"page {page.page_number}"


class IllustrationService:
    def __init__(
        self,
        store: ProjectStore,
        backend: GenerationBackend,
        settings: PipelineSettings,
        build_log: BuildLog | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._settings = settings
        self._build_log = build_log or BuildLog(store)

    async def reference_paths(self, project_id: UUID) -> list[str]:
        """Up to ``reference_photo_limit`` photos, favorites first, then by sort order."""

        photos = await self._store.list_photos(project_id)
        ranked = sorted(photos, key=lambda photo: (not photo.is_favorite, photo.sort_order))
        return [photo.storage_path for photo in ranked[: self._settings.reference_photo_limit]]

    async def request(
        self,
        page: Page,
        *,
        variant: bool,
        reference_paths: Sequence[str] | None = None,
    ) -> Illustration:
        """Generate, persist and (for non-variants) select one illustration."""

        kind = "variant" if variant else "illustration"
        if reference_paths is None:
            reference_paths = await self.reference_paths(page.project_id)
        request = IllustrationRequest(
            project_id=page.project_id,
            page_id=page.id,
            variant=variant,
            prompt=page.illustration_prompt or page.scene_description,
            page_number=page.page_number,
            reference_paths=tuple(reference_paths),
        )

        with log_context(page_id=page.id):
            start = perf_counter()
            try:
                response = await self._backend.generate_illustration(request)
            except BackendError as err:
                observe_remote_call(
                    kind=kind,
                    outcome=type(err).__name__,
                    service_name=SERVICE_NAME,
                    latency_seconds=perf_counter() - start,
                )
                logger.warning(
                    "Illustration request failed",
                    extra={"variant": variant, "page_number": page.page_number, "retryable": err.retryable},
                )
                raise
            observe_remote_call(
                kind=kind,
                outcome="success",
                service_name=SERVICE_NAME,
                latency_seconds=perf_counter() - start,
            )

            stored = await self._store.add_illustration(
                Illustration(
                    project_id=page.project_id,
                    page_id=page.id,
                    storage_path=response.storage_path,
                    generation_prompt=response.generation_prompt,
                ),
                replace_selection=not variant,
            )
            logger.info(
                "Illustration saved",
                extra={
                    "variant": variant,
                    "page_number": page.page_number,
                    "is_selected": stored.is_selected,
                    "latency_ms": response.latency_ms,
                },
            )

        if not variant:
            await self._build_log.milestone(
                page.project_id,
                "illustration",
                f"{describe_page(page).capitalize()} illustrated!",
                technical_message=f"{response.storage_path} | model: {response.model}",
                page_number=page.page_number,
                page_type=page.page_type.value,
            )
        return stored

    async def regenerate(self, project_id: UUID, page_id: UUID) -> Illustration:
        """Replace the selected illustration of one page with a fresh one."""

        page = await self._store.require_page(page_id)
        if page.project_id != project_id:
            raise PageNotFoundError(page_id)
        return await self.request(page, variant=False)

    async def select(self, project_id: UUID, page_id: UUID, illustration_id: UUID) -> Illustration:
        page = await self._store.require_page(page_id)
        if page.project_id != project_id:
            raise PageNotFoundError(page_id)
        return await self._store.select_illustration(page_id, illustration_id)
