from __future__ import annotations

import asyncio

from PIL import Image

from quipcast.client.session import BroadcastSession
from quipcast.protocol import parse_server_message
from quipcast.protocol._tests.payloads import build_game_state, build_round, build_state_message
from quipcast.rendering.assets import AssetCache, AssetState
from quipcast.rendering.render_loop import RenderLoop
from quipcast.rendering.renderer import ViewportClock


class RecordingRenderer:
    def __init__(self, fail_first: int = 0) -> None:
        self.views = []
        self.fail_first = fail_first

    def render(self, view, clock):
        self.views.append(view)
        if len(self.views) <= self.fail_first:
            raise RuntimeError("boom")
        return Image.new("RGB", (4, 4), (len(self.views), 0, 0))


class RequestingRenderer(RecordingRenderer):
    def __init__(self, cache: AssetCache) -> None:
        super().__init__()
        self.cache = cache

    def render(self, view, clock):
        self.cache.lookup("http://host/logo.png", 16)
        return super().render(view, clock)


def _clock() -> ViewportClock:
    return ViewportClock(now_ms=0.0)


def test_render_once_uses_current_state() -> None:
    session = BroadcastSession()
    renderer = RecordingRenderer()
    loop = RenderLoop(renderer, session, clock=_clock)

    loop.render_once()
    state = parse_server_message(build_state_message(build_game_state(active=build_round(num=3)))).state
    session.latest_state = state
    loop.render_once()

    assert renderer.views[0].state is None
    assert renderer.views[1].state is state
    assert loop.frames_rendered == 2
    assert loop.latest_frame is not None


def test_render_error_is_counted_and_loop_continues() -> None:
    renderer = RecordingRenderer(fail_first=1)
    loop = RenderLoop(renderer, BroadcastSession(), clock=_clock)

    assert loop.render_once() is None
    assert loop.render_once() is not None
    assert loop.render_errors == 1
    assert loop.frames_rendered == 1


def test_pending_assets_dispatched_after_frame() -> None:
    cache = AssetCache()
    loop = RenderLoop(RequestingRenderer(cache), BroadcastSession(), cache=cache, clock=_clock)
    loop.render_once()
    assert cache.state("http://host/logo.png") is AssetState.FAILED
    assert cache.pending == ()


def test_attach_swaps_session() -> None:
    renderer = RecordingRenderer()
    first = BroadcastSession(viewer_count=1)
    second = BroadcastSession(viewer_count=2)
    loop = RenderLoop(renderer, first, clock=_clock)
    loop.render_once()
    loop.attach(second)
    loop.render_once()
    assert [v.viewer_count for v in renderer.views] == [1, 2]


def test_loop_redraws_static_state_every_tick() -> None:
    async def _run() -> None:
        renderer = RecordingRenderer()
        frames = []
        loop = RenderLoop(renderer, BroadcastSession(), fps=100.0, clock=_clock, on_frame=frames.append)
        loop.start()
        assert loop.running
        await asyncio.sleep(0.2)
        await loop.stop()
        assert not loop.running
        assert len(frames) >= 5
        assert loop.frames_rendered == len(frames)

    asyncio.run(_run())
