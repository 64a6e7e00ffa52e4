"""Configuration models and helpers for backend selection."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import BackendConfigError

BACKEND_ENV_VAR = "PHOTOBOOK_BACKEND"
DEFAULT_BACKEND = "functions"


class BackendSettings(BaseModel):
    """Per-call transport parameters."""

    timeout_seconds: float = Field(120.0, gt=0)
    story_path: str = "/generate-story"
    illustration_path: str = "/generate-illustration"
    caption_path: str = "/describe-photo"


class BackendConfig(BaseModel):
    """Configuration for a single backend instance."""

    model_config = ConfigDict(frozen=True)

    name: str
    base_url: str = ""
    api_key: str = ""
    settings: BackendSettings = Field(default_factory=BackendSettings)


def mock_backend_config() -> BackendConfig:
    return BackendConfig(name="mock", base_url="mock://", api_key="mock")


def load_backend_config(prefix: str | None = None) -> BackendConfig:
    """Load configuration from environment variables.

    Args:
        prefix: Optional prefix for environment variables (defaults to the
            value of ``PHOTOBOOK_BACKEND``).

    Environment variables used (assuming prefix "FUNCTIONS"):
        FUNCTIONS_BASE_URL
        FUNCTIONS_API_KEY
        FUNCTIONS_TIMEOUT (optional, seconds)
        FUNCTIONS_STORY_PATH / FUNCTIONS_ILLUSTRATION_PATH / FUNCTIONS_CAPTION_PATH (optional)

    Returns:
        BackendConfig populated from environment variables.

    Raises:
        BackendConfigError: If required variables are missing or invalid.
    """

    backend_name = (prefix or os.getenv(BACKEND_ENV_VAR, DEFAULT_BACKEND)).upper()
    if backend_name == "MOCK":
        return mock_backend_config()

    def read_env(key: str, default: Any | None = None) -> Any:
        return os.getenv(f"{backend_name}_{key}", default)

    base_url = read_env("BASE_URL")
    api_key = read_env("API_KEY")
    if not base_url or not api_key:
        raise BackendConfigError(f"{backend_name}_BASE_URL or {backend_name}_API_KEY not configured")

    timeout_raw = read_env("TIMEOUT", "")
    try:
        timeout = float(timeout_raw) if str(timeout_raw).strip() else 120.0
    except ValueError as exc:
        raise BackendConfigError(f"{backend_name}_TIMEOUT must be a number of seconds") from exc
    if timeout <= 0:
        raise BackendConfigError(f"{backend_name}_TIMEOUT must be positive")

    defaults = BackendSettings()
    settings = BackendSettings(
        timeout_seconds=timeout,
        story_path=read_env("STORY_PATH", defaults.story_path),
        illustration_path=read_env("ILLUSTRATION_PATH", defaults.illustration_path),
        caption_path=read_env("CAPTION_PATH", defaults.caption_path),
    )
    return BackendConfig(
        name=backend_name.lower(),
        base_url=base_url.rstrip("/"),
        api_key=api_key,
        settings=settings,
    )
