"""Prefect flow driving one generation run to completion."""

from __future__ import annotations

import logging
from uuid import UUID

from prefect import flow

from photobook_observability import log_context
from photobook_schemas import GenerationSnapshot

from .registry import ProjectRegistry, get_registry

logger = logging.getLogger(__name__)


@flow(name="photobook-generation-flow", version="0.1.0", validate_parameters=False)
async def run_generation_flow(
    project_id: UUID,
    light: bool = False,
    wait_for_variants: bool = False,
    registry: ProjectRegistry | None = None,
) -> GenerationSnapshot:
    registry = registry or get_registry()
    pipeline = registry.pipeline(project_id, light=light)

    with log_context(project_id=project_id):
        logger.info("Starting generation flow", extra={"light": light})
        snapshot = await pipeline.run()
        if wait_for_variants:
            await registry.variants.drain()
        logger.info(
            "Generation flow finished",
            extra={
                "phase": snapshot.phase.value,
                "illustrated_count": snapshot.illustrated_count,
                "failed_count": snapshot.failed_count,
            },
        )
    return snapshot
