from __future__ import annotations

"""
Local websocket relay between the capture surface and the encoder.

The surface connects to ``ws://127.0.0.1:<port>/chunks`` and sends binary
WebM chunks; each one is written to the encoder's stdin in arrival order.
Only one capture connection is served at a time. Text frames are ignored.
``first_chunk`` resolves once the first chunk has been handed to the encoder,
which is what the orchestrator's readiness gate waits on.
"""

import asyncio
import logging
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

import websockets

logger = logging.getLogger(__name__)

CHUNK_PATH = "/chunks"
CLOSE_TIMEOUT_S = 2.0


def _request_path(ws: Any) -> str:
    request = getattr(ws, "request", None)
    raw = getattr(request, "path", None) if request is not None else getattr(ws, "path", None)
    return urlsplit(raw or "").path


class ChunkRelay:
    def __init__(
        self,
        sink: Any,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = CHUNK_PATH,
        serve: Callable[..., Any] = websockets.serve,
        close_timeout_s: float = CLOSE_TIMEOUT_S,
    ) -> None:
        """
        Parameters
        - sink: writable byte stream with ``write`` and awaitable ``drain``
          (the encoder's stdin)
        - port: 0 picks an ephemeral port
        - close_timeout_s: upper bound on waiting for the server to close
        """
        self._sink = sink
        self.host = host
        self.port = int(port)
        self.path = path
        self._serve = serve
        self.close_timeout_s = float(close_timeout_s)
        self._server = None
        self._active: Any = None
        self._stopping = asyncio.Event()
        self.first_chunk: Optional[asyncio.Future] = None
        self.chunks_forwarded = 0
        self.bytes_forwarded = 0

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}{self.path}"

    async def start(self) -> str:
        loop = asyncio.get_running_loop()
        self.first_chunk = loop.create_future()
        self._server = await self._serve(
            self.handle,
            self.host,
            self.port,
            compression=None,
            max_size=None,
        )
        sockets = getattr(self._server, "sockets", None) or ()
        for sock in sockets:
            self.port = int(sock.getsockname()[1])
            break
        logger.info("chunk relay listening on %s", self.url)
        return self.url

    async def handle(self, ws: Any) -> None:
        path = _request_path(ws)
        if path != self.path:
            logger.debug("chunk relay: rejecting path %r", path)
            await ws.close(code=1008, reason="not found")
            return
        if self._active is not None or self._stopping.is_set():
            logger.warning("chunk relay: rejecting second capture connection")
            await ws.close(code=1013, reason="capture already connected")
            return
        self._active = ws
        logger.info("chunk relay: capture connected")
        stop_wait = asyncio.ensure_future(self._stopping.wait())
        try:
            async for message in ws:
                if isinstance(message, str):
                    continue
                if not await self._forward_until_stopped(bytes(message), stop_wait):
                    logger.info("chunk relay: stopped with a chunk in flight")
                    break
        except websockets.ConnectionClosed:
            logger.debug("chunk relay: capture connection closed", exc_info=True)
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning("chunk relay: encoder input closed (%s)", exc)
            self._fail_first_chunk(exc)
            await ws.close()
        finally:
            stop_wait.cancel()
            self._active = None
        logger.info("chunk relay: capture disconnected after %d chunks", self.chunks_forwarded)

    async def _forward_until_stopped(self, data: bytes, stop_wait: asyncio.Future) -> bool:
        # the encoder may stop reading its stdin, leaving drain() pending forever
        task = asyncio.ensure_future(self.forward(data))
        await asyncio.wait({task, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            return False
        task.result()
        return True

    async def forward(self, data: bytes) -> None:
        if not data:
            return
        self._sink.write(data)
        await self._sink.drain()
        self.chunks_forwarded += 1
        self.bytes_forwarded += len(data)
        fut = self.first_chunk
        if fut is not None and not fut.done():
            fut.set_result(None)

    def _fail_first_chunk(self, exc: BaseException) -> None:
        fut = self.first_chunk
        if fut is not None and not fut.done():
            fut.set_exception(exc)

    async def stop(self) -> None:
        server = self._server
        self._server = None
        self._stopping.set()
        fut = self.first_chunk
        if fut is not None and not fut.done():
            fut.cancel()
        if server is None:
            return
        server.close()
        try:
            await asyncio.wait_for(server.wait_closed(), timeout=self.close_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("chunk relay: server did not close within %.1fs", self.close_timeout_s)
