"""Binary storage for uploaded photos."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from uuid import UUID, uuid4

from fastapi.concurrency import run_in_threadpool

from photobook_schemas.utils.validators import sanitise_filename


class PhotoStorage(ABC):
    @abstractmethod
    async def put(self, project_id: UUID, filename: str, content: bytes, content_type: str) -> str:
        """Store ``content`` and return its storage path."""


class LocalPhotoStorage(PhotoStorage):
    """Writes photos under ``<root>/<project_id>/<uuid>.<ext>``."""

    def __init__(self, root: str) -> None:
        self.root = root

    async def put(self, project_id: UUID, filename: str, content: bytes, content_type: str) -> str:
        return await run_in_threadpool(self._write, project_id, filename, content)

    def _write(self, project_id: UUID, filename: str, content: bytes) -> str:
        if not content:
            raise ValueError(f"Refusing to store empty file {filename!r}")
        safe_name = sanitise_filename(filename)
        _, ext = os.path.splitext(safe_name)
        relative_path = f"{project_id}/{uuid4()}{ext.lower() or '.jpg'}"
        target = os.path.join(self.root, relative_path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "wb") as handle:
            handle.write(content)
        return relative_path
