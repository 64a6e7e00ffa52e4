"""One pipeline and one upload queue per project, sharing process-wide services."""

from __future__ import annotations

import logging
from uuid import UUID

from photobook_providers import BackendConfig, BackendFactory, GenerationBackend

from .build_log import BuildLog
from .errors import PipelineError
from .illustrations import IllustrationService
from .pipeline import GenerationPipeline
from .settings import PipelineSettings, load_pipeline_settings
from .storage import LocalPhotoStorage, PhotoStorage
from .store import InMemoryProjectStore, ProjectStore
from .uploads import UploadQueue
from .variants import BackgroundVariantScheduler

logger = logging.getLogger(__name__)


class ProjectRegistry:
    """Hands out the single pipeline and upload queue owned by each project.

    Coordination is in-process only. Two processes driving the same project
    are not prevented from racing; deployments run one writer per project.
    """

    def __init__(
        self,
        *,
        store: ProjectStore,
        backend: GenerationBackend,
        storage: PhotoStorage,
        settings: PipelineSettings,
    ) -> None:
        self.store = store
        self.backend = backend
        self.storage = storage
        self.settings = settings
        self.build_log = BuildLog(store)
        self.illustrations = IllustrationService(store, backend, settings, self.build_log)
        self.variants = BackgroundVariantScheduler(
            self.illustrations, stagger_seconds=settings.variant_stagger_seconds
        )
        self._pipelines: dict[UUID, GenerationPipeline] = {}
        self._queues: dict[UUID, UploadQueue] = {}

    def pipeline(self, project_id: UUID, *, light: bool | None = None) -> GenerationPipeline:
        pipeline = self._pipelines.get(project_id)
        if pipeline is None:
            pipeline = GenerationPipeline(
                project_id,
                store=self.store,
                backend=self.backend,
                illustrations=self.illustrations,
                variants=self.variants,
                settings=self.settings,
                build_log=self.build_log,
                light=bool(light),
            )
            self._pipelines[project_id] = pipeline
        elif light is not None and not pipeline.is_running:
            pipeline.light = light
        return pipeline

    def queue(self, project_id: UUID) -> UploadQueue:
        queue = self._queues.get(project_id)
        if queue is None:
            queue = UploadQueue(
                project_id,
                store=self.store,
                storage=self.storage,
                backend=self.backend,
                settings=self.settings,
                build_log=self.build_log,
            )
            self._queues[project_id] = queue
        return queue

    async def aclose(self) -> None:
        await self.variants.shutdown()
        await self.backend.aclose()
        await self.store.aclose()


def build_store(settings: PipelineSettings) -> ProjectStore:
    if settings.store_backend == "postgres":
        if not settings.database_url:
            raise PipelineError("DATABASE_URL environment variable is required for the postgres store")
        from .postgres import PostgresProjectStore

        return PostgresProjectStore.from_url(settings.database_url)
    return InMemoryProjectStore()


def build_registry(
    settings: PipelineSettings | None = None,
    backend_config: BackendConfig | None = None,
) -> ProjectRegistry:
    settings = settings or load_pipeline_settings()
    registry = ProjectRegistry(
        store=build_store(settings),
        backend=BackendFactory.create(backend_config),
        storage=LocalPhotoStorage(settings.storage_root),
        settings=settings,
    )
    logger.info(
        "Registry ready",
        extra={"store": settings.store_backend, "backend": registry.backend.name},
    )
    return registry


_registry: ProjectRegistry | None = None


def get_registry() -> ProjectRegistry:
    """Process-wide registry, built from the environment on first use."""

    global _registry
    if _registry is None:
        _registry = build_registry()
    return _registry


def set_registry(registry: ProjectRegistry | None) -> None:
    global _registry
    _registry = registry
