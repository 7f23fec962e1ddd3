from __future__ import annotations

import pytest

from quipcast.protocol import GameState, parse_server_message
from quipcast.protocol._tests.payloads import build_game_state, build_round, build_state_message, build_vote
from quipcast.rendering.tally import (
    leader,
    ranked_scores,
    select_display_round,
    tally_votes,
    viewer_share,
    voters_for,
    winner_index,
)


def _state(**kwargs) -> GameState:
    msg = parse_server_message(build_state_message(build_game_state(**kwargs)))
    return msg.state


def _round(**kwargs):
    return _state(active=build_round(**kwargs)).active


def test_scenario_two_to_one_with_winner_when_done() -> None:
    votes = [build_vote("X", "Opus 4.6"), build_vote("Y", "Opus 4.6"), build_vote("Z", "Kimi K2")]
    rnd = _round(phase="done", votes=votes)

    tally = tally_votes(rnd)
    assert (tally.votes_a, tally.votes_b) == (2, 1)
    assert winner_index(rnd, tally) == 0
    assert [v.voter.name for v in voters_for(rnd, 0)] == ["X", "Y"]
    assert tally.share_for(0) == pytest.approx(2 / 3)


def test_no_winner_before_done() -> None:
    votes = [build_vote("X", "Opus 4.6")]
    assert winner_index(_round(phase="voting", votes=votes)) is None


def test_equal_counts_mean_no_winner_even_when_done() -> None:
    votes = [build_vote("X", "Opus 4.6"), build_vote("Y", "Kimi K2")]
    assert winner_index(_round(phase="done", votes=votes)) is None


def test_unrecognised_and_pending_votes_count_for_nobody() -> None:
    votes = [
        build_vote("X", "Somebody Else"),
        build_vote("Y"),
        build_vote("Z", error=True),
        build_vote("W", "Kimi K2"),
    ]
    rnd = _round(phase="voting", votes=votes)
    tally = tally_votes(rnd)
    assert (tally.votes_a, tally.votes_b) == (0, 1)
    assert tally.total <= len(rnd.votes)


def test_share_is_zero_without_votes() -> None:
    tally = tally_votes(_round(phase="voting"))
    assert tally.share_for(0) == 0.0
    assert tally.share_for(1) == 0.0


def test_viewer_share_suppressed_at_zero() -> None:
    assert viewer_share(_round(phase="voting"), 0) is None
    assert viewer_share(_round(phase="voting", viewer_votes=(0, 0)), 1) is None
    assert viewer_share(_round(phase="voting", viewer_votes=(1, 3)), 1) == pytest.approx(0.75)


def test_select_display_round_waiting_when_empty() -> None:
    assert select_display_round(_state()) is None


def test_prompting_without_prompt_shows_last_completed() -> None:
    state = _state(
        active=build_round(num=2, phase="prompting", prompt=None),
        last_completed=build_round(num=1, phase="done"),
    )
    assert select_display_round(state).num == 1


def test_prompting_without_previous_round_shows_active() -> None:
    state = _state(active=build_round(num=1, phase="prompting", prompt=None))
    assert select_display_round(state).num == 1


def test_prompting_with_prompt_shows_active() -> None:
    state = _state(
        active=build_round(num=2, phase="prompting", prompt="Ready"),
        last_completed=build_round(num=1, phase="done"),
    )
    assert select_display_round(state).num == 2


def test_falls_back_to_last_completed_without_active() -> None:
    state = _state(last_completed=build_round(num=7, phase="done"))
    assert select_display_round(state).num == 7


def test_leader_tie_breaks_alphabetically() -> None:
    assert leader({"A": 3, "B": 5, "C": 5}) == ("B", 5)
    assert leader({"C": 5, "B": 5, "A": 3}) == ("B", 5)
    assert ranked_scores({"A": 3, "B": 5, "C": 5}) == [("B", 5), ("C", 5), ("A", 3)]
    assert leader({}) is None
