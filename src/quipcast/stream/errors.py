"""Fatal orchestrator failures; each ends the process with a non-zero status."""

from __future__ import annotations


class OrchestratorError(RuntimeError):
    pass


class ConfigError(OrchestratorError):
    """Missing or unusable configuration (e.g. no stream key in live mode)."""


class RenderTargetUnreachable(OrchestratorError):
    pass


class CaptureTimeout(OrchestratorError):
    """No media chunk arrived within the readiness window."""


class EncoderFailed(OrchestratorError):
    pass


class SurfaceFailed(OrchestratorError):
    pass
