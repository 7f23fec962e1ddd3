"""Stream egress: orchestrates the capture surface, the chunk relay and ffmpeg."""

from .config import StreamConfig, load_stream_config
from .errors import (
    CaptureTimeout,
    ConfigError,
    EncoderFailed,
    OrchestratorError,
    RenderTargetUnreachable,
    SurfaceFailed,
)
from .orchestrator import StreamOrchestrator, exit_code_for, main

__all__ = [
    "CaptureTimeout",
    "ConfigError",
    "EncoderFailed",
    "OrchestratorError",
    "RenderTargetUnreachable",
    "StreamConfig",
    "StreamOrchestrator",
    "SurfaceFailed",
    "exit_code_for",
    "load_stream_config",
    "main",
]
