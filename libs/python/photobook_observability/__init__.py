"""Shared observability helpers used across photobook services."""

from .logging import current_log_context, log_context, setup_logging
from .metrics import (
    observe_chunk,
    observe_phase_duration,
    observe_remote_call,
    setup_fastapi_metrics,
    track_active,
)

__all__ = [
    "current_log_context",
    "setup_logging",
    "log_context",
    "setup_fastapi_metrics",
    "observe_chunk",
    "observe_phase_duration",
    "observe_remote_call",
    "track_active",
]
