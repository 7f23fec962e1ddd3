from __future__ import annotations

"""
PyAV WebM encoder that hands back muxed bytes as they are produced.

The container writes into a sink without a ``seek`` method, so libavformat
treats the output as non-seekable and emits a live-style WebM stream: header
first, then clusters, no cue rewrite at the end. Callers concatenate whatever
``encode`` returns into transport chunks.

PyAV is imported lazily so the rest of the package stays importable without it.
"""

import logging
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional, Sequence

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_CODECS: tuple[str, ...] = ("vp8", "vp9")

# libavcodec encoder names for the WebM codec labels
_ENCODER_NAMES = {"vp8": ("libvpx", "vp8"), "vp9": ("libvpx-vp9", "vp9")}


class CaptureError(RuntimeError):
    """No usable encoder, or the encoder was used before ``open``."""


@dataclass
class CaptureConfig:
    width: int = 1920
    height: int = 1080
    fps: int = 30
    bitrate: int = 12_000_000
    codecs: Sequence[str] = DEFAULT_CODECS


class _StreamBuffer:
    """Write-only byte sink without ``seek``, so the muxer writes a streamable file."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def write(self, data) -> int:
        self._buf.extend(data)
        return len(data)

    def flush(self) -> None:
        return None

    def take(self) -> bytes:
        out = bytes(self._buf)
        self._buf.clear()
        return out


def negotiate_codec(candidates: Sequence[str] = DEFAULT_CODECS) -> Optional[tuple[str, str]]:
    """Return ``(label, encoder_name)`` for the first candidate PyAV can encode."""
    import av

    for label in candidates:
        for name in _ENCODER_NAMES.get(label, (label,)):
            try:
                av.codec.Codec(name, "w")
            except Exception:
                logger.debug("encoder %s unavailable", name, exc_info=True)
                continue
            return label, name
    return None


class WebmChunkEncoder:
    """Encode RGB frames into a WebM byte stream.

    Usage:
        enc = WebmChunkEncoder(CaptureConfig(width=1920, height=1080, fps=30))
        codec = enc.open()          # 'vp8' or 'vp9'
        data = enc.encode(image)    # bytes muxed so far (may be empty)
        tail = enc.close()          # remaining bytes
    """

    def __init__(self, cfg: CaptureConfig) -> None:
        self._cfg = cfg
        self._buffer = _StreamBuffer()
        self._container = None
        self._stream = None
        self._index = 0
        self.codec: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._container is not None

    def open(self) -> str:
        import av

        c = self._cfg
        picked = negotiate_codec(c.codecs)
        if picked is None:
            raise CaptureError(f"no WebM encoder available among {list(c.codecs)}")
        label, encoder_name = picked
        fps = max(1, int(c.fps))
        container = av.open(self._buffer, mode="w", format="webm", container_options={"live": "1"})
        stream = container.add_stream(
            encoder_name,
            rate=fps,
            options={"deadline": "realtime", "cpu-used": "8", "lag-in-frames": "0"},
        )
        stream.width = int(c.width)
        stream.height = int(c.height)
        stream.pix_fmt = "yuv420p"
        stream.bit_rate = int(c.bitrate)
        stream.codec_context.time_base = Fraction(1, fps)
        self._container = container
        self._stream = stream
        self._index = 0
        self.codec = label
        logger.info("capture encoder open: %s (%s) %dx%d @ %d fps", label, encoder_name, c.width, c.height, fps)
        return label

    def encode(self, image: Image.Image) -> bytes:
        if self._container is None or self._stream is None:
            raise CaptureError("encoder is not open")
        import av

        c = self._cfg
        if image.size != (c.width, c.height):
            image = image.resize((c.width, c.height), Image.Resampling.BILINEAR)
        rgb = np.asarray(image.convert("RGB"), dtype=np.uint8)
        frame = av.VideoFrame.from_ndarray(rgb, format="rgb24")
        frame.pts = self._index
        frame.time_base = Fraction(1, max(1, int(c.fps)))
        self._index += 1
        for packet in self._stream.encode(frame):
            self._container.mux(packet)
        return self._buffer.take()

    def close(self) -> bytes:
        container, stream = self._container, self._stream
        self._container = None
        self._stream = None
        if container is None:
            return b""
        try:
            if stream is not None:
                for packet in stream.encode(None):
                    container.mux(packet)
        finally:
            container.close()
        return self._buffer.take()
