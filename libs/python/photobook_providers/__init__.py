"""Remote generation backends (text, illustration, captioning)."""

from .base import (
    CaptionRequest,
    CaptionResponse,
    GenerationBackend,
    IllustrationRequest,
    IllustrationResponse,
    StoryRequest,
    StoryResponse,
)
from .config import BackendConfig, BackendSettings, load_backend_config, mock_backend_config
from .exceptions import (
    BackendConfigError,
    BackendError,
    BackendResponseError,
    QuotaExhaustedError,
    RateLimitedError,
)
from .factory import BackendFactory
from .http import HttpFunctionsBackend
from .mock import MockBackend

__all__ = [
    "BackendConfig",
    "BackendConfigError",
    "BackendError",
    "BackendFactory",
    "BackendResponseError",
    "BackendSettings",
    "CaptionRequest",
    "CaptionResponse",
    "GenerationBackend",
    "HttpFunctionsBackend",
    "IllustrationRequest",
    "IllustrationResponse",
    "MockBackend",
    "QuotaExhaustedError",
    "RateLimitedError",
    "StoryRequest",
    "StoryResponse",
    "load_backend_config",
    "mock_backend_config",
]
