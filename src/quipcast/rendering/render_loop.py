from __future__ import annotations

"""
Render loop that redraws the broadcast frame at a fixed cadence.

Every tick renders against whatever the session holds at that moment, so
clock-driven elements (countdown, staleness readout) stay current even while
no new state arrives. A late tick is rendered late rather than dropped.
"""

import asyncio
import logging
from typing import Callable, Optional

from PIL import Image

from quipcast.client.session import BroadcastSession
from quipcast.rendering.assets import AssetCache
from quipcast.rendering.renderer import FrameRenderer, ViewportClock

logger = logging.getLogger(__name__)


class RenderLoop:
    def __init__(
        self,
        renderer: FrameRenderer,
        session: BroadcastSession,
        *,
        cache: Optional[AssetCache] = None,
        fps: float = 30.0,
        clock: Callable[[], ViewportClock] = ViewportClock.now,
        on_frame: Optional[Callable[[Image.Image], None]] = None,
    ) -> None:
        self.renderer = renderer
        self._session = session
        self._cache = cache
        self._fps = max(1.0, float(fps))
        self._clock = clock
        self._on_frame = on_frame
        self._task: Optional[asyncio.Task] = None
        self._latest: Optional[Image.Image] = None
        self.frames_rendered = 0
        self.render_errors = 0

    @property
    def fps(self) -> float:
        return float(self._fps)

    @property
    def latest_frame(self) -> Optional[Image.Image]:
        return self._latest

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def attach(self, session: BroadcastSession, cache: Optional[AssetCache] = None) -> None:
        """Point the loop at a rebuilt session; takes effect on the next tick."""
        self._session = session
        self._cache = cache

    def render_once(self) -> Optional[Image.Image]:
        try:
            frame = self.renderer.render(self._session.view(), self._clock())
        except Exception:
            self.render_errors += 1
            logger.debug("RenderLoop: render failed", exc_info=True)
            return None
        self._latest = frame
        self.frames_rendered += 1
        if self._cache is not None:
            self._cache.dispatch_pending()
        if self._on_frame is not None:
            try:
                self._on_frame(frame)
            except Exception:
                logger.debug("RenderLoop: frame callback failed", exc_info=True)
        return frame

    def start(self) -> None:
        if self._task is not None:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run())
        logger.info("RenderLoop: started @ %.1f fps", self._fps)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        interval = 1.0 / self._fps
        deadline = loop.time()
        while True:
            self.render_once()
            deadline += interval
            delay = deadline - loop.time()
            if delay < 0:
                # behind schedule: render the next tick immediately, no burst catch-up
                deadline = loop.time()
                delay = 0.0
            await asyncio.sleep(delay)
