"""Per-project build journal shown alongside generation progress."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from photobook_schemas import BuildLogEntry, BuildLogLevel

from .store import ProjectStore

logger = logging.getLogger(__name__)


class BuildLog:
    def __init__(self, store: ProjectStore) -> None:
        self._store = store

    async def record(
        self,
        project_id: UUID,
        phase: str,
        message: str,
        *,
        level: BuildLogLevel = BuildLogLevel.INFO,
        technical_message: str | None = None,
        **metadata: Any,
    ) -> None:
        """Append an entry; a failed write is logged and never interrupts the caller."""

        entry = BuildLogEntry(
            project_id=project_id,
            phase=phase,
            level=level,
            message=message,
            technical_message=technical_message,
            metadata=metadata,
        )
        try:
            await self._store.append_build_log(entry)
        except Exception:
            logger.warning("Failed to append build log entry", exc_info=True, extra={"phase": phase})

    async def milestone(self, project_id: UUID, phase: str, message: str, **kwargs: Any) -> None:
        await self.record(project_id, phase, message, level=BuildLogLevel.MILESTONE, **kwargs)
