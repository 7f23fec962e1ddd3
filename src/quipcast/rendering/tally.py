"""Derived values the renderer needs from a snapshot.

Nothing here is stored on the wire: vote counts, the winner badge, the round
on screen and the standings order are all recomputed from the snapshot on
every frame.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from quipcast.protocol import GameState, Phase, RoundState, VoteInfo


@dataclass(frozen=True)
class VoteTally:
    votes_a: int
    votes_b: int

    @property
    def total(self) -> int:
        return self.votes_a + self.votes_b

    def count_for(self, index: int) -> int:
        return self.votes_a if index == 0 else self.votes_b

    def share_for(self, index: int) -> float:
        """Fraction of counted judge votes for contestant *index* (0 when none)."""
        total = self.total
        return self.count_for(index) / total if total > 0 else 0.0


def tally_votes(round_state: RoundState) -> VoteTally:
    a, b = round_state.contestants
    votes_a = votes_b = 0
    for vote in round_state.votes:
        target = vote.voted_for
        if target is None:
            continue
        if target.name == a.name:
            votes_a += 1
        elif target.name == b.name:
            votes_b += 1
    return VoteTally(votes_a=votes_a, votes_b=votes_b)


def voters_for(round_state: RoundState, index: int) -> list[VoteInfo]:
    name = round_state.contestants[index].name
    return [v for v in round_state.votes if v.voted_for is not None and v.voted_for.name == name]


def winner_index(round_state: RoundState, tally: Optional[VoteTally] = None) -> Optional[int]:
    """Index of the contestant wearing the winner badge, if any.

    Only a finished round has a winner, and only by a strictly greater count.
    """
    if round_state.phase is not Phase.DONE:
        return None
    t = tally or tally_votes(round_state)
    if t.votes_a > t.votes_b:
        return 0
    if t.votes_b > t.votes_a:
        return 1
    return None


def viewer_share(round_state: RoundState, index: int) -> Optional[float]:
    """Viewer vote fraction for *index*, or None when no viewer has voted."""
    a = round_state.viewer_votes_a or 0
    b = round_state.viewer_votes_b or 0
    total = a + b
    if total <= 0:
        return None
    return (a if index == 0 else b) / total


def select_display_round(state: GameState) -> Optional[RoundState]:
    """Pick the round to draw.

    A fresh round still waiting on its prompt would flash an almost empty
    card, so while that is the case the previous, completed round stays up.
    """
    active = state.active
    if active is not None and active.phase is Phase.PROMPTING and not active.prompt:
        if state.last_completed is not None:
            return state.last_completed
    return active if active is not None else state.last_completed


def ranked_scores(scores: Mapping[str, int]) -> list[tuple[str, int]]:
    """Scores sorted high to low; equal scores are ordered by name."""
    return sorted(scores.items(), key=lambda item: (-item[1], item[0]))


def leader(scores: Mapping[str, int]) -> Optional[tuple[str, int]]:
    ranked = ranked_scores(scores)
    return ranked[0] if ranked else None
