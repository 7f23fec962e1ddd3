"""Frame capture into a chunked WebM websocket stream."""

from .encoder import CaptureConfig, CaptureError, WebmChunkEncoder, negotiate_codec
from .sink import MAX_BUFFERED_BYTES, CaptureSink, frames_per_chunk

__all__ = [
    "CaptureConfig",
    "CaptureError",
    "CaptureSink",
    "MAX_BUFFERED_BYTES",
    "WebmChunkEncoder",
    "frames_per_chunk",
    "negotiate_codec",
]
