from __future__ import annotations

from typing import Optional

from PIL import Image, ImageChops

from quipcast.client.session import SessionView
from quipcast.protocol import GameState, parse_server_message
from quipcast.protocol._tests.payloads import build_game_state, build_round, build_state_message, build_vote
from quipcast.rendering.assets import AssetCache, AssetState, LogoBook
from quipcast.rendering.fonts import FontBook
from quipcast.rendering.renderer import (
    HEIGHT,
    LAYOUT_DONE,
    LAYOUT_ROUND,
    LAYOUT_WAITING,
    MAIN_W,
    WIDTH,
    FrameRenderer,
    ViewportClock,
    answer_text,
    choose_layout,
    countdown_seconds,
    shorten_name,
)

CLOCK = ViewportClock(now_ms=90_000.0)


def _state(**kwargs) -> GameState:
    return parse_server_message(build_state_message(build_game_state(**kwargs))).state


def _view(state: Optional[GameState], *, status: str = "WS connected", since: Optional[float] = 0.5) -> SessionView:
    return SessionView(
        state=state,
        total_rounds=10,
        viewer_count=3,
        connected=True,
        status=status,
        seconds_since_update=since,
    )


def _voting_state() -> GameState:
    votes = [build_vote("Gemini 3.1 Pro", "Opus 4.6"), build_vote("GLM-5", "Kimi K2")]
    return _state(
        active=build_round(
            phase="voting",
            answers=("A pilot walks into a bar", "Oops"),
            votes=votes,
            viewer_votes=(4, 2),
            viewer_voting_ends_at=100_000.0,
        ),
        scores={"Opus 4.6": 2, "Kimi K2": 1},
        viewer_scores={"Kimi K2": 3},
    )


def _same(a: Image.Image, b: Image.Image) -> bool:
    return ImageChops.difference(a, b).getbbox() is None


def test_layout_choice() -> None:
    assert choose_layout(None) == (LAYOUT_WAITING, None)
    assert choose_layout(_state())[0] == LAYOUT_WAITING
    assert choose_layout(_state(done=True, scores={"A": 1}))[0] == LAYOUT_DONE
    layout, rnd = choose_layout(_state(active=build_round(num=4)))
    assert layout == LAYOUT_ROUND
    assert rnd.num == 4


def test_frame_geometry() -> None:
    frame = FrameRenderer(FontBook()).render(_view(None), CLOCK)
    assert frame.size == (WIDTH, HEIGHT)
    assert frame.mode == "RGB"


def test_empty_state_shows_same_main_area_as_no_state() -> None:
    renderer = FrameRenderer(FontBook())
    box = (0, 0, MAIN_W, HEIGHT)
    no_state = renderer.render(_view(None), CLOCK).crop(box)
    empty_state = renderer.render(_view(_state()), CLOCK).crop(box)
    assert _same(no_state, empty_state)


def test_render_is_deterministic_for_fixed_inputs() -> None:
    renderer = FrameRenderer(FontBook())
    view = _view(_voting_state())
    first = renderer.render(view, CLOCK)
    second = renderer.render(view, ViewportClock(now_ms=CLOCK.now_ms))
    assert first.tobytes() == second.tobytes()


def test_countdown_reads_clock() -> None:
    renderer = FrameRenderer(FontBook())
    view = _view(_voting_state())
    early = renderer.render(view, ViewportClock(now_ms=90_000.0))
    later = renderer.render(view, ViewportClock(now_ms=95_000.0))
    assert not _same(early, later)


def test_staleness_readout_changes_footer_only() -> None:
    renderer = FrameRenderer(FontBook())
    state = _voting_state()
    fresh = renderer.render(_view(state, since=1.0), CLOCK)
    stale = renderer.render(_view(state, since=12.0), CLOCK)
    bbox = ImageChops.difference(fresh, stale).getbbox()
    assert bbox is not None
    assert bbox[1] >= HEIGHT - 40


def test_missing_logos_fall_back_then_composite_when_ready() -> None:
    cache = AssetCache()
    renderer = FrameRenderer(FontBook(), LogoBook(cache, "http://host/assets/logos"))
    view = _view(_voting_state())

    text_only = renderer.render(view, CLOCK)
    assert "http://host/assets/logos/claude.png" in cache.pending
    assert "http://host/assets/logos/kimi.png" in cache.pending

    for url in cache.pending:
        cache.preload(url, Image.new("RGBA", (64, 64), (255, 0, 0, 255)))
    with_logos = renderer.render(view, CLOCK)
    assert not _same(text_only, with_logos)


def test_failed_logos_stay_text_only() -> None:
    cache = AssetCache()
    renderer = FrameRenderer(FontBook(), LogoBook(cache, "http://host/assets/logos"))
    view = _view(_voting_state())

    first = renderer.render(view, CLOCK)
    cache.dispatch_pending()
    assert cache.state("http://host/assets/logos/claude.png") is AssetState.FAILED
    again = renderer.render(view, CLOCK)
    assert _same(first, again)
    assert cache.pending == ()


def test_done_screen_renders() -> None:
    renderer = FrameRenderer(FontBook())
    state = _state(done=True, scores={"Opus 4.6": 4, "Kimi K2": 4}, last_completed=build_round(phase="done"))
    frame = renderer.render(_view(state), CLOCK)
    waiting = renderer.render(_view(_state(scores={"Opus 4.6": 4, "Kimi K2": 4})), CLOCK)
    assert not _same(frame, waiting)


def test_answer_text_variants() -> None:
    rnd = _state(active=build_round(answers=("Funny", None))).active
    assert answer_text(rnd.answer_tasks[0]) == '"Funny"'
    assert answer_text(rnd.answer_tasks[1]) == "Writing answer..."


def test_countdown_only_while_voting() -> None:
    voting = _voting_state().active
    assert countdown_seconds(voting, ViewportClock(now_ms=90_000.0)) == 10
    assert countdown_seconds(voting, ViewportClock(now_ms=99_500.0)) == 1
    assert countdown_seconds(voting, ViewportClock(now_ms=200_000.0)) == 0
    answering = _state(active=build_round(viewer_voting_ends_at=100_000.0)).active
    assert countdown_seconds(answering, CLOCK) == 0


def test_shorten_name() -> None:
    assert shorten_name("Opus 4.6") == "Opus 4.6"
    assert shorten_name("x" * 19) == "x" * 18 + "…"
