"""Factory utilities for instantiating backends."""

from __future__ import annotations

from typing import Dict, Type

from .base import GenerationBackend
from .config import BackendConfig, load_backend_config
from .exceptions import BackendConfigError
from .http import HttpFunctionsBackend
from .mock import MockBackend

BACKEND_MAP: Dict[str, Type[GenerationBackend]] = {
    "functions": HttpFunctionsBackend,
    "mock": MockBackend,
}


class BackendFactory:
    """Factory for creating backends based on configuration."""

    @staticmethod
    def create(config: BackendConfig | None = None) -> GenerationBackend:
        if config is None:
            config = load_backend_config()
        backend_cls = BACKEND_MAP.get(config.name.lower())
        if backend_cls is None:
            raise BackendConfigError(f"Unknown backend: {config.name}")
        return backend_cls(config)
