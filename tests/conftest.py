"""Shared pytest configuration for the photobook generator."""

from __future__ import annotations

import sys
from pathlib import Path
import sysconfig

import pytest

ROOT = Path(__file__).resolve().parent.parent
EXTRA_PATHS = [ROOT, ROOT / "libs/python"]
for extra in EXTRA_PATHS:
    sys.path.insert(0, str(extra))

SITE_PACKAGES = Path(sysconfig.get_paths().get("purelib", ""))
if SITE_PACKAGES and str(SITE_PACKAGES) not in sys.path:
    sys.path.append(str(SITE_PACKAGES))

from photobook_providers import MockBackend  # noqa: E402
from photobook_schemas import Project, ProjectStatus  # noqa: E402

from services.generator.app.settings import PipelineSettings  # noqa: E402
from services.generator.app.store import InMemoryProjectStore  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fast_settings(tmp_path) -> PipelineSettings:
    return PipelineSettings(
        upload_delay_seconds=0,
        upload_retry_delay_seconds=0,
        caption_delay_seconds=0,
        illustration_delay_seconds=0,
        variant_stagger_seconds=0,
        storage_root=str(tmp_path / "storage"),
    )


@pytest.fixture
def store() -> InMemoryProjectStore:
    return InMemoryProjectStore()


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def project() -> Project:
    return Project(title="Summer at the lake", status=ProjectStatus.INTERVIEW)
