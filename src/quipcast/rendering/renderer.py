"""
Frame renderer for the broadcast view.

``FrameRenderer.render(view, clock)`` turns one :class:`SessionView` and one
clock reading into a 1920x1080 RGB Pillow image. Apart from logo images already
resident in the asset cache nothing outside those two arguments affects the
output, so equal inputs give pixel-identical frames. The clock is read only for
the voting countdown; the staleness readout comes from the view.

Coordinates are absolute pixels on the fixed broadcast canvas and text is
positioned by its baseline, mirroring the spectator page layout.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from PIL import Image, ImageDraw

from quipcast.client.session import SessionView
from quipcast.protocol import GameState, Phase, RoundState, TaskInfo
from quipcast.rendering.assets import LogoBook, model_color
from quipcast.rendering.fonts import MONO, SANS, SERIF, Font, FontBook, FontSpec
from quipcast.rendering.tally import (
    VoteTally,
    leader,
    ranked_scores,
    select_display_round,
    tally_votes,
    viewer_share,
    voters_for,
    winner_index,
)
from quipcast.rendering.text_layout import ELLIPSIS, wrap_text

WIDTH = 1920
HEIGHT = 1080
SIDEBAR_W = 380
MAIN_W = WIDTH - SIDEBAR_W

BACKGROUND = "#0a0a0a"
TEXT = "#ededed"
TEXT_DIM = "#888"
TEXT_FAINT = "#444"
TRACK = "#1c1c1c"
SIDEBAR_BG = "#111"
WINNER_BG = "#111111"  # 3% white over the background
CROWN = "#f5c542"

STALE_AFTER_S = 5.0
NAME_MAX_CHARS = 18

TITLE_FONT = FontSpec(SANS, 700, 40)
VIEWERS_FONT = FontSpec(MONO, 600, 16)
STANDINGS_FONT = FontSpec(MONO, 700, 18)
SECTION_FONT = FontSpec(MONO, 700, 13)
RANK_FONT = FontSpec(MONO, 600, 16)
ENTRY_NAME_FONT = FontSpec(SANS, 600, 16)
ENTRY_SCORE_FONT = FontSpec(MONO, 700, 16)
ROUND_FONT = FontSpec(MONO, 700, 22)
PROMPTED_FONT = FontSpec(MONO, 600, 18)
PROMPT_FONT = FontSpec(SERIF, 400, 56)
CARD_NAME_FONT = FontSpec(SANS, 700, 32)
BADGE_FONT = FontSpec(MONO, 700, 18)
ANSWER_FONT = FontSpec(SERIF, 400, 40)
VOTE_COUNT_FONT = FontSpec(MONO, 700, 28)
VOTE_LABEL_FONT = FontSpec(MONO, 600, 20)
AVATAR_FONT = FontSpec(SANS, 700, 12)
VIEWER_COUNT_FONT = FontSpec(MONO, 700, 22)
VIEWER_LABEL_FONT = FontSpec(MONO, 600, 16)
WAITING_FONT = FontSpec(SERIF, 400, 48)
GAME_OVER_FONT = FontSpec(MONO, 700, 20)
CHAMPION_FONT = FontSpec(SERIF, 400, 80)
CHAMPION_SUB_FONT = FontSpec(SANS, 600, 24)
STATUS_FONT = FontSpec(MONO, 600, 13)

PROMPT_LINE_HEIGHT = 72
PROMPT_MAX_LINES = 3
PROMPT_BASELINE_Y = 262
ANSWER_LINE_HEIGHT = 52
ANSWER_MAX_LINES = 6

PHASE_LABELS = {
    Phase.PROMPTING: "WRITING PROMPT",
    Phase.ANSWERING: "ANSWERING",
    Phase.VOTING: "JUDGES VOTING",
    Phase.DONE: "COMPLETE",
}


@dataclass(frozen=True)
class ViewportClock:
    """Wall-clock reading (epoch milliseconds) used for countdowns."""

    now_ms: float

    @classmethod
    def now(cls) -> "ViewportClock":
        return cls(now_ms=time.time() * 1000.0)


LAYOUT_WAITING = "waiting"
LAYOUT_ROUND = "round"
LAYOUT_DONE = "done"


def choose_layout(state: Optional[GameState]) -> tuple[str, Optional[RoundState]]:
    """Decide what the main area shows: waiting placeholder, a round, or the final summary."""
    if state is None:
        return LAYOUT_WAITING, None
    if state.done:
        return LAYOUT_DONE, None
    display_round = select_display_round(state)
    if display_round is None:
        return LAYOUT_WAITING, None
    return LAYOUT_ROUND, display_round


def countdown_seconds(round_state: RoundState, clock: ViewportClock) -> int:
    if round_state.phase is not Phase.VOTING or not round_state.viewer_voting_ends_at:
        return 0
    return max(0, math.ceil((round_state.viewer_voting_ends_at - clock.now_ms) / 1000.0))


def answer_text(task: TaskInfo) -> str:
    if task.in_progress:
        return "Writing answer..."
    if task.error:
        return task.error
    if task.result:
        return f'"{task.result}"'
    return "No answer"


def shorten_name(name: str, limit: int = NAME_MAX_CHARS) -> str:
    return name if len(name) <= limit else name[:limit] + ELLIPSIS


class _Canvas:
    """Drawing helpers bound to a single frame."""

    def __init__(self, fonts: FontBook, logos: Optional[LogoBook]) -> None:
        self.image = Image.new("RGB", (WIDTH, HEIGHT), BACKGROUND)
        self.draw = ImageDraw.Draw(self.image)
        self.fonts = fonts
        self.logos = logos

    def font(self, spec: FontSpec) -> Font:
        return self.fonts.get(spec)

    def measure(self, text: str, spec: FontSpec) -> float:
        return float(self.font(spec).getlength(text))

    def text(self, xy: tuple[float, float], text: str, spec: FontSpec, fill: str, anchor: str = "ls") -> None:
        if text:
            self.draw.text(xy, text, font=self.font(spec), fill=fill, anchor=anchor)

    def rect(self, x: float, y: float, w: float, h: float, fill: str) -> None:
        if w <= 0 or h <= 0:
            return
        self.draw.rectangle([x, y, x + w - 1, y + h - 1], fill=fill)

    def round_rect(self, x: float, y: float, w: float, h: float, r: float, fill: str) -> None:
        if w <= 0 or h <= 0:
            return
        radius = min(r, w / 2.0, h / 2.0)
        if radius < 1:
            self.rect(x, y, w, h, fill)
            return
        self.draw.rounded_rectangle([x, y, x + w - 1, y + h - 1], radius=radius, fill=fill)

    def logo(self, name: str, x: float, y: float, size: int) -> bool:
        """Composite the model's logo if it is resident; False means draw text-only."""
        if self.logos is None:
            return False
        img = self.logos.logo(name, size)
        if img is None:
            return False
        self.image.paste(img, (int(round(x)), int(round(y))), img)
        return True

    def lines(self, text: str, max_width: float, spec: FontSpec, max_lines: int) -> list[str]:
        font = self.font(spec)
        return wrap_text(text, max_width, font.getlength, max_lines)


class FrameRenderer:
    def __init__(self, fonts: Optional[FontBook] = None, logos: Optional[LogoBook] = None) -> None:
        self.fonts = fonts or FontBook()
        self.logos = logos

    def render(self, view: SessionView, clock: ViewportClock) -> Image.Image:
        canvas = _Canvas(self.fonts, self.logos)
        self._draw_header(canvas, view)
        state = view.state
        if state is not None:
            self._draw_scoreboard(canvas, state)
        layout, display_round = choose_layout(state)
        if layout == LAYOUT_DONE:
            self._draw_done(canvas, state)
        elif layout == LAYOUT_ROUND:
            self._draw_round(canvas, display_round, view.total_rounds, clock)
        else:
            self._draw_waiting(canvas)
        self._draw_status(canvas, view)
        return canvas.image

    # ---- chrome --------------------------------------------------------------

    def _draw_header(self, c: _Canvas, view: SessionView) -> None:
        c.text((48, 76), "quipslop", TITLE_FONT, TEXT)
        count = int(view.viewer_count)
        label = f"{count} viewer{'' if count == 1 else 's'}"
        c.text((MAIN_W - 64, 76), label, VIEWERS_FONT, "#666", anchor="rs")

    def _draw_status(self, c: _Canvas, view: SessionView) -> None:
        parts = [view.status]
        since = view.seconds_since_update
        if view.state is not None and since is not None and since >= STALE_AFTER_S:
            parts.append(f"last update {int(since)}s ago")
        c.text((64, HEIGHT - 14), " | ".join(p for p in parts if p), STATUS_FONT, TEXT_FAINT)

    def _draw_waiting(self, c: _Canvas) -> None:
        c.text((MAIN_W / 2, HEIGHT / 2), "Waiting for game state...", WAITING_FONT, TEXT_DIM, anchor="ms")

    def _draw_done(self, c: _Canvas, state: GameState) -> None:
        top = leader(state.scores)
        if top is None:
            return
        name, _points = top
        c.text((MAIN_W / 2, HEIGHT / 2 - 100), "GAME OVER", GAME_OVER_FONT, TEXT_FAINT, anchor="ms")
        c.text((MAIN_W / 2, HEIGHT / 2), name, CHAMPION_FONT, model_color(name), anchor="ms")
        c.text((MAIN_W / 2, HEIGHT / 2 + 60), "is the funniest AI", CHAMPION_SUB_FONT, TEXT_DIM, anchor="ms")

    # ---- standings -----------------------------------------------------------

    def _draw_scoreboard(self, c: _Canvas, state: GameState) -> None:
        judges = ranked_scores(state.scores)
        viewers = ranked_scores(state.viewer_scores)

        c.rect(WIDTH - SIDEBAR_W, 0, SIDEBAR_W, HEIGHT, SIDEBAR_BG)
        c.rect(WIDTH - SIDEBAR_W, 0, 1, HEIGHT, TRACK)
        c.text((WIDTH - 348, 76), "STANDINGS", STANDINGS_FONT, TEXT_DIM)

        entry_height = 52
        self._draw_scoreboard_section(c, judges, "AI JUDGES", 110, entry_height)
        viewer_start = 110 + 28 + len(judges) * entry_height + 16
        self._draw_scoreboard_section(c, viewers, "VIEWERS", viewer_start, entry_height)

    def _draw_scoreboard_section(
        self,
        c: _Canvas,
        entries: Sequence[tuple[str, int]],
        label: str,
        start_y: float,
        entry_height: float,
    ) -> None:
        max_score = (entries[0][1] if entries else 0) or 1
        c.text((WIDTH - 348, start_y), label, SECTION_FONT, "#555")
        c.rect(WIDTH - 348, start_y + 8, 296, 1, TRACK)

        for index, (name, score) in enumerate(entries):
            y = start_y + 20 + index * entry_height
            color = model_color(name)
            pct = score / max_score if max_score > 0 else 0.0

            if index == 0 and score > 0:
                self._draw_crown(c, WIDTH - 348, y + 18)
            else:
                c.text((WIDTH - 348, y + 18), str(index + 1), RANK_FONT, "#555")

            name_x = WIDTH - 310
            if c.logo(name, name_x, y + 4, 20):
                name_x += 26
            c.text((name_x, y + 18), shorten_name(name), ENTRY_NAME_FONT, color)

            c.round_rect(WIDTH - 310, y + 30, 216, 3, 2, TRACK)
            if pct > 0:
                c.round_rect(WIDTH - 310, y + 30, max(6.0, 216 * pct), 3, 2, color)

            c.text((WIDTH - 48, y + 18), str(score), ENTRY_SCORE_FONT, "#666", anchor="rs")

    @staticmethod
    def _draw_crown(c: _Canvas, x: float, baseline: float) -> None:
        points = [
            (x, baseline),
            (x, baseline - 12),
            (x + 4, baseline - 6),
            (x + 8, baseline - 14),
            (x + 12, baseline - 6),
            (x + 16, baseline - 12),
            (x + 16, baseline),
        ]
        c.draw.polygon(points, fill=CROWN)

    # ---- round ---------------------------------------------------------------

    def _draw_round(
        self,
        c: _Canvas,
        round_state: RoundState,
        total_rounds: Optional[int],
        clock: ViewportClock,
    ) -> None:
        phase_label = PHASE_LABELS[round_state.phase]
        total_text = f"/{total_rounds}" if total_rounds is not None else ""
        c.text((64, 150), f"Round {round_state.num}{total_text}", ROUND_FONT, TEXT)

        label_w = c.measure(phase_label, ROUND_FONT)
        c.text((MAIN_W - 64, 150), phase_label, ROUND_FONT, TEXT_DIM, anchor="rs")
        remaining = countdown_seconds(round_state, clock)
        if remaining > 0:
            c.text((MAIN_W - 64 - label_w - 12, 150), f"{remaining}S", ROUND_FONT, TEXT, anchor="rs")

        prompted = "PROMPTED BY "
        c.text((64, 210), prompted, PROMPTED_FONT, TEXT_DIM)
        prompter = round_state.prompter.name
        name_x = 64 + c.measure(prompted, PROMPTED_FONT)
        if c.logo(prompter, name_x, 210 - 14, 20):
            name_x += 24
        c.text((name_x, 210), prompter.upper(), PROMPTED_FONT, model_color(prompter))

        if round_state.prompt:
            prompt_text, prompt_color = round_state.prompt, TEXT
        elif round_state.phase is Phase.PROMPTING:
            prompt_text, prompt_color = "Generating prompt...", TEXT_FAINT
        else:
            prompt_text, prompt_color = "Prompt unavailable", TEXT_FAINT

        lines = c.lines(prompt_text, MAIN_W - 120, PROMPT_FONT, PROMPT_MAX_LINES)
        text_height = len(lines) * PROMPT_LINE_HEIGHT
        bar_y = PROMPT_BASELINE_Y - 44
        c.rect(64, bar_y, 4, text_height + 6, model_color(prompter))
        for idx, line in enumerate(lines):
            c.text((80, PROMPT_BASELINE_Y + idx * PROMPT_LINE_HEIGHT), line, PROMPT_FONT, prompt_color)

        if round_state.phase is Phase.PROMPTING:
            return

        tally = tally_votes(round_state)
        winner = winner_index(round_state, tally)
        card_w = (MAIN_W - 160) / 2
        card_y = bar_y + text_height + 6 + 32
        card_h = HEIGHT - card_y - 40
        for index in (0, 1):
            x = 64 + index * (card_w + 32)
            self._draw_contestant_card(c, round_state, index, tally, winner == index, x, card_y, card_w, card_h)

    def _draw_contestant_card(
        self,
        c: _Canvas,
        round_state: RoundState,
        index: int,
        tally: VoteTally,
        is_winner: bool,
        x: float,
        y: float,
        w: float,
        h: float,
    ) -> None:
        task = round_state.answer_tasks[index]
        name = task.model.name
        color = model_color(name)

        if is_winner:
            c.rect(x, y, w, h, WINNER_BG)
        c.rect(x, y, 6 if is_winner else 4, h, color)

        name_x = x + 24
        if c.logo(name, x + 24, y + 16, 32):
            name_x = x + 64
        c.text((name_x, y + 44), name, CARD_NAME_FONT, color)

        if is_winner:
            win_w = c.measure("WIN", BADGE_FONT)
            c.round_rect(x + w - 24 - win_w - 24, y + 16, win_w + 24, 36, 6, TEXT)
            c.text((x + w - 24 - win_w - 12, y + 40), "WIN", BADGE_FONT, BACKGROUND)

        if is_winner:
            answer_color = TEXT
        elif task.in_progress:
            answer_color = TEXT_FAINT
        else:
            answer_color = TEXT_DIM
        for idx, line in enumerate(c.lines(answer_text(task), w - 48, ANSWER_FONT, ANSWER_MAX_LINES)):
            c.text((x + 24, y + 120 + idx * ANSWER_LINE_HEIGHT), line, ANSWER_FONT, answer_color)

        if round_state.phase not in (Phase.VOTING, Phase.DONE):
            return

        vote_count = tally.count_for(index)
        share = tally.share_for(index)
        viewers = viewer_share(round_state, index)

        bar_y = y + h - 110 if viewers is not None else y + h - 60
        count_y = y + h - 74 if viewers is not None else y + h - 24
        c.round_rect(x + 24, bar_y, w - 48, 4, 2, TRACK)
        if share > 0:
            c.round_rect(x + 24, bar_y, max(8.0, (w - 48) * share), 4, 2, color)

        count_text = str(vote_count)
        c.text((x + 24, count_y), count_text, VOTE_COUNT_FONT, color)
        count_w = c.measure(count_text, VOTE_COUNT_FONT)
        label = f"vote{'' if vote_count == 1 else 's'}"
        c.text((x + 24 + count_w + 8, count_y - 1), label, VOTE_LABEL_FONT, TEXT_FAINT)
        label_w = c.measure(label, VOTE_LABEL_FONT)

        avatar_x = x + 24 + count_w + 8 + label_w + 16
        avatar_y = bar_y + 12
        avatar = 28
        for vote in voters_for(round_state, index):
            voter = vote.voter.name
            if not c.logo(voter, avatar_x, avatar_y, avatar):
                c.draw.ellipse([avatar_x, avatar_y, avatar_x + avatar, avatar_y + avatar], fill=model_color(voter))
                c.text(
                    (avatar_x + avatar / 2, avatar_y + avatar / 2 + 4),
                    voter[:1] or "?",
                    AVATAR_FONT,
                    BACKGROUND,
                    anchor="ms",
                )
            avatar_x += avatar + 8

        if viewers is None:
            return
        viewer_count = (round_state.viewer_votes_a if index == 0 else round_state.viewer_votes_b) or 0
        c.round_rect(x + 24, y + h - 56, w - 48, 4, 2, TRACK)
        if viewers > 0:
            c.round_rect(x + 24, y + h - 56, max(8.0, (w - 48) * viewers), 4, 2, "#666")
        viewer_text = str(viewer_count)
        c.text((x + 24, y + h - 22), viewer_text, VIEWER_COUNT_FONT, "#999")
        viewer_w = c.measure(viewer_text, VIEWER_COUNT_FONT)
        viewer_label = f"viewer vote{'' if viewer_count == 1 else 's'}"
        c.text((x + 24 + viewer_w + 8, y + h - 23), viewer_label, VIEWER_LABEL_FONT, TEXT_FAINT)
