"""Capture sink: samples rendered frames, encodes WebM and ships chunks over a websocket.

The sink samples ``frame_source()`` at the capture fps, feeds each frame to the
encoder (in the default executor) and sends whatever bytes have accumulated
once per chunk interval (250 ms of media time). A chunk is dropped rather than
queued when the socket already holds more than ``MAX_BUFFERED_BYTES`` of unsent
data, and capture ends for good when the socket closes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import websockets
from PIL import Image

from quipcast.capture.encoder import CaptureConfig, WebmChunkEncoder

logger = logging.getLogger(__name__)

MAX_BUFFERED_BYTES = 16_000_000
CHUNK_SECONDS = 0.25
# keep websockets' own flow control out of the way; the drop policy above governs
WRITE_LIMIT = 4 * MAX_BUFFERED_BYTES

FrameSource = Callable[[], Optional[Image.Image]]


def frames_per_chunk(fps: int) -> int:
    return max(1, int(round(fps * CHUNK_SECONDS)))


def buffered_amount(ws: Any) -> int:
    """Bytes queued on the websocket transport but not yet written."""
    try:
        return int(ws.transport.get_write_buffer_size())
    except Exception:
        logger.debug("capture: buffered amount unavailable", exc_info=True)
        return 0


class CaptureSink:
    def __init__(
        self,
        frame_source: FrameSource,
        sink_url: str,
        cfg: CaptureConfig,
        *,
        connect: Callable[..., Any] = websockets.connect,
        encoder_factory: Callable[[CaptureConfig], WebmChunkEncoder] = WebmChunkEncoder,
    ) -> None:
        self._frame_source = frame_source
        self.sink_url = sink_url
        self.cfg = cfg
        self._connect = connect
        self._encoder_factory = encoder_factory
        self._task: Optional[asyncio.Task] = None
        self._status = "capture idle"
        self.chunks_sent = 0
        self.bytes_sent = 0
        self.dropped_chunks = 0
        self.closed = False

    @property
    def status(self) -> str:
        return self._status

    @property
    def done(self) -> Optional[asyncio.Task]:
        return self._task

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def stop(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def send_chunk(self, ws: Any, data: bytes) -> bool:
        """Send one chunk; returns False when skipped (empty) or dropped (congested)."""
        if not data:
            return False
        buffered = buffered_amount(ws)
        if buffered > MAX_BUFFERED_BYTES:
            self.dropped_chunks += 1
            if self.dropped_chunks == 1 or self.dropped_chunks % 20 == 0:
                logger.warning(
                    "capture: dropping %d-byte chunk, %d bytes buffered (drops=%d)",
                    len(data),
                    buffered,
                    self.dropped_chunks,
                )
            return False
        await ws.send(data)
        self.chunks_sent += 1
        self.bytes_sent += len(data)
        return True

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        encoder = self._encoder_factory(self.cfg)
        try:
            async with self._connect(self.sink_url, max_size=None, write_limit=WRITE_LIMIT) as ws:
                codec = await loop.run_in_executor(None, encoder.open)
                self._status = f"capture->ws {self.cfg.fps}fps {codec}"
                logger.info("capture: streaming to %s (%s)", self.sink_url, self._status)
                await self._pump(ws, encoder)
        except websockets.ConnectionClosed:
            logger.info("capture: sink closed; stopping capture")
        except OSError as exc:
            logger.warning("capture: cannot reach sink %s: %s", self.sink_url, exc)
        finally:
            self.closed = True
            self._status = "capture stopped"
            try:
                encoder.close()
            except Exception:
                logger.debug("capture: encoder close failed", exc_info=True)

    async def _pump(self, ws: Any, encoder: WebmChunkEncoder) -> None:
        loop = asyncio.get_running_loop()
        interval = 1.0 / max(1, int(self.cfg.fps))
        per_chunk = frames_per_chunk(self.cfg.fps)
        pending = bytearray()
        in_chunk = 0
        deadline = loop.time()
        while True:
            frame = self._frame_source()
            if frame is not None:
                pending += await loop.run_in_executor(None, encoder.encode, frame)
                in_chunk += 1
                if in_chunk >= per_chunk:
                    await self.send_chunk(ws, bytes(pending))
                    pending.clear()
                    in_chunk = 0
            deadline += interval
            delay = deadline - loop.time()
            if delay < 0:
                deadline = loop.time()
                delay = 0.0
            await asyncio.sleep(delay)
