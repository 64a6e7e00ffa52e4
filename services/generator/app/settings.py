"""Pipeline tuning and deployment settings loaded from the environment."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SERVICE_NAME = "generator"
ENV_PREFIX = "PHOTOBOOK_"


class PipelineSettings(BaseModel):
    """Concurrency limits and pacing delays.

    Limits are fixed per process; nothing here adapts at runtime.
    """

    model_config = ConfigDict(frozen=True)

    upload_concurrency: int = Field(3, ge=1)
    upload_delay_seconds: float = Field(0.15, ge=0)
    upload_retry_delay_seconds: float = Field(0.3, ge=0)
    caption_delay_seconds: float = Field(0.5, ge=0)

    illustration_concurrency: int = Field(3, ge=1)
    light_illustration_concurrency: int = Field(2, ge=1)
    illustration_delay_seconds: float = Field(0.05, ge=0)

    variant_target: int = Field(3, ge=1)
    variant_stagger_seconds: float = Field(2.5, ge=0)

    reference_photo_limit: int = Field(3, ge=0)

    store_backend: Literal["memory", "postgres"] = "memory"
    database_url: str | None = None
    storage_root: str = Field(default_factory=lambda: os.path.join(os.getcwd(), "storage"))


def _read_float_ms(name: str, default: float) -> float:
    raw = os.getenv(f"{ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    return float(raw) / 1000


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(f"{ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    return int(raw)


def load_pipeline_settings() -> PipelineSettings:
    """Build settings from ``PHOTOBOOK_*`` variables, falling back to defaults.

    Delays are given in milliseconds in the environment
    (``PHOTOBOOK_UPLOAD_DELAY_MS=150``).
    """

    defaults = PipelineSettings()
    return PipelineSettings(
        upload_concurrency=_read_int("UPLOAD_CONCURRENCY", defaults.upload_concurrency),
        upload_delay_seconds=_read_float_ms("UPLOAD_DELAY_MS", defaults.upload_delay_seconds),
        upload_retry_delay_seconds=_read_float_ms(
            "UPLOAD_RETRY_DELAY_MS", defaults.upload_retry_delay_seconds
        ),
        caption_delay_seconds=_read_float_ms("CAPTION_DELAY_MS", defaults.caption_delay_seconds),
        illustration_concurrency=_read_int(
            "ILLUSTRATION_CONCURRENCY", defaults.illustration_concurrency
        ),
        light_illustration_concurrency=_read_int(
            "LIGHT_ILLUSTRATION_CONCURRENCY", defaults.light_illustration_concurrency
        ),
        illustration_delay_seconds=_read_float_ms(
            "ILLUSTRATION_DELAY_MS", defaults.illustration_delay_seconds
        ),
        variant_target=_read_int("VARIANT_TARGET", defaults.variant_target),
        variant_stagger_seconds=_read_float_ms(
            "VARIANT_STAGGER_MS", defaults.variant_stagger_seconds
        ),
        reference_photo_limit=_read_int("REFERENCE_PHOTO_LIMIT", defaults.reference_photo_limit),
        store_backend=os.getenv(f"{ENV_PREFIX}STORE", defaults.store_backend).lower(),
        database_url=os.getenv("DATABASE_URL"),
        storage_root=os.getenv(f"{ENV_PREFIX}STORAGE_ROOT", defaults.storage_root),
    )
