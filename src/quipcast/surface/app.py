from __future__ import annotations

"""
Headless broadcast surface.

One process hosts everything a spectator page would: the session mirror and
its state websocket, the renderer driven by a fixed-cadence loop, and,
when a ``sink`` URL is given, the capture sink that ships the rendered frames
to the stream relay.

Capture parameters travel on the target URL's query string (``sink``,
``captureFps``, ``captureBitrate``) so the orchestrator only has to build one
URL. A protocol version change rebuilds the session, the state client and
the asset cache from scratch; the render loop and capture keep running so
the outgoing stream never breaks.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from quipcast.capture import CaptureConfig, CaptureSink
from quipcast.client import BroadcastSession, StateSyncClient, state_url_for
from quipcast.rendering import AssetCache, FontBook, FrameRenderer, HttpFetcher, LogoBook, RenderLoop
from quipcast.utils.env import env_positive_float, env_str, parse_size

logger = logging.getLogger(__name__)

CAPTURE_PARAMS = ("sink", "captureFps", "captureBitrate")
DEFAULT_CAPTURE_FPS = 30
DEFAULT_CAPTURE_BITRATE = 12_000_000


def _positive_int(value: Optional[str], default: int) -> int:
    if not value:
        return default
    try:
        parsed = int(value, 10)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def with_capture_params(target_url: str, sink: str, fps: int, bitrate: int) -> str:
    """Append the capture query parameters to *target_url*, keeping its own."""
    parts = urlsplit(target_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in CAPTURE_PARAMS]
    query += [("sink", sink), ("captureFps", str(int(fps))), ("captureBitrate", str(int(bitrate)))]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


@dataclass
class SurfaceConfig:
    target_url: str
    sink_url: Optional[str] = None
    capture_fps: int = DEFAULT_CAPTURE_FPS
    capture_bitrate: int = DEFAULT_CAPTURE_BITRATE
    width: int = 1920
    height: int = 1080
    display_fps: float = 30.0
    font_dir: Optional[str] = None
    logo_ext: str = "png"

    @property
    def state_url(self) -> str:
        return state_url_for(self.target_url)

    @property
    def origin(self) -> str:
        parts = urlsplit(self.target_url)
        return urlunsplit((parts.scheme, parts.netloc, "", "", ""))

    @property
    def logo_base_url(self) -> str:
        return f"{self.origin}/assets/logos"

    @classmethod
    def from_url(cls, url: str, env: Optional[Mapping[str, str]] = None) -> "SurfaceConfig":
        parts = urlsplit(url)
        query = dict(parse_qsl(parts.query))
        width, height = parse_size(env_str("STREAM_TARGET_SIZE", None, env), (1920, 1080))
        return cls(
            target_url=url,
            sink_url=query.get("sink") or None,
            capture_fps=_positive_int(query.get("captureFps"), DEFAULT_CAPTURE_FPS),
            capture_bitrate=_positive_int(query.get("captureBitrate"), DEFAULT_CAPTURE_BITRATE),
            width=width,
            height=height,
            display_fps=env_positive_float("QUIPCAST_DISPLAY_FPS", 30.0, env),
            font_dir=env_str("QUIPCAST_FONT_DIR", None, env),
            logo_ext=env_str("QUIPCAST_LOGO_EXT", "png", env) or "png",
        )


class BroadcastSurface:
    def __init__(
        self,
        cfg: SurfaceConfig,
        *,
        connect: Optional[Callable[..., Any]] = None,
        fetcher_factory: Callable[[], Any] = HttpFetcher,
        sink_factory: Callable[..., CaptureSink] = CaptureSink,
    ) -> None:
        self.cfg = cfg
        self._connect = connect
        self._fetcher_factory = fetcher_factory
        self._sink_factory = sink_factory
        self.fonts = FontBook(cfg.font_dir)
        self.resets = 0
        self._reset_task: Optional[asyncio.Task] = None
        self.fetcher: Any = None
        self.cache: Optional[AssetCache] = None
        self.session: Optional[BroadcastSession] = None
        self.sync: Optional[StateSyncClient] = None
        self.renderer = FrameRenderer(self.fonts)
        self.render_loop: Optional[RenderLoop] = None
        self.sink: Optional[CaptureSink] = None
        self._build_session()

    def _build_session(self) -> None:
        self.fetcher = self._fetcher_factory()
        self.cache = AssetCache(self.fetcher)
        self.renderer.logos = LogoBook(self.cache, self.cfg.logo_base_url, self.cfg.logo_ext)
        self.session = BroadcastSession()
        self.sync = StateSyncClient(
            self.cfg.state_url,
            self.session,
            on_protocol_reset=self._on_protocol_reset,
            connect=self._connect,
        )

    async def _teardown_session(self) -> None:
        sync, cache, fetcher = self.sync, self.cache, self.fetcher
        if sync is not None:
            await sync.close()
        if cache is not None:
            await cache.close()
        close = getattr(fetcher, "close", None)
        if close is not None:
            try:
                await close()
            except Exception:
                logger.debug("surface: fetcher close failed", exc_info=True)

    def _on_protocol_reset(self) -> None:
        if self._reset_task is not None and not self._reset_task.done():
            return
        self._reset_task = asyncio.get_running_loop().create_task(self.reset())

    async def reset(self) -> None:
        """Discard the session and start over with a fresh one."""
        logger.warning("surface: resetting session")
        await self._teardown_session()
        self._build_session()
        self.resets += 1
        if self.render_loop is not None:
            self.render_loop.attach(self.session, self.cache)
        if self.sync is not None:
            self.sync.start()

    def _latest_frame(self):
        return None if self.render_loop is None else self.render_loop.latest_frame

    def start(self) -> None:
        self.render_loop = RenderLoop(
            self.renderer,
            self.session,
            cache=self.cache,
            fps=self.cfg.display_fps,
        )
        self.sync.start()
        self.render_loop.start()
        if self.cfg.sink_url:
            capture = CaptureConfig(
                width=self.cfg.width,
                height=self.cfg.height,
                fps=self.cfg.capture_fps,
                bitrate=self.cfg.capture_bitrate,
            )
            self.sink = self._sink_factory(self._latest_frame, self.cfg.sink_url, capture)
            self.sink.start()
        logger.info("surface: rendering %s (state %s)", self.cfg.target_url, self.cfg.state_url)

    async def run(self) -> None:
        """Run until the capture sink ends, or forever without one."""
        self.start()
        try:
            if self.sink is not None:
                await self.sink.done
            else:
                await asyncio.Event().wait()
        finally:
            await self.close()

    async def close(self) -> None:
        if self._reset_task is not None and not self._reset_task.done():
            self._reset_task.cancel()
            try:
                await self._reset_task
            except asyncio.CancelledError:
                pass
        if self.sink is not None:
            await self.sink.stop()
        if self.render_loop is not None:
            await self.render_loop.stop()
        await self._teardown_session()
