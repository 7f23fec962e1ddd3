"""Builders for wire payloads in the shape the game server pushes, for tests.

They return plain JSON-ready dicts (camelCase keys) so callers can exercise the
same parsing path a live websocket frame goes through.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence


def _strip_none(mapping: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in mapping.items() if value is not None}


def build_model(name: str, model_id: Optional[str] = None) -> Dict[str, Any]:
    return {"id": model_id or name.lower().replace(" ", "-"), "name": name}


def build_task(
    model: str,
    *,
    started_at: float = 1_000.0,
    finished_at: Optional[float] = None,
    result: Optional[str] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    return _strip_none(
        {
            "model": build_model(model),
            "startedAt": started_at,
            "finishedAt": finished_at,
            "result": result,
            "error": error,
        }
    )


def build_vote(
    voter: str,
    voted_for: Optional[str] = None,
    *,
    started_at: float = 1_000.0,
    finished_at: Optional[float] = None,
    error: bool = False,
) -> Dict[str, Any]:
    payload = _strip_none(
        {
            "voter": build_model(voter),
            "startedAt": started_at,
            "finishedAt": finished_at,
            "votedFor": None if voted_for is None else build_model(voted_for),
        }
    )
    if error:
        payload["error"] = True
    return payload


def build_round(
    *,
    num: int = 1,
    phase: str = "answering",
    prompter: str = "GPT-5.2",
    prompt: Optional[str] = "The worst thing to hear from your pilot",
    contestants: Sequence[str] = ("Opus 4.6", "Kimi K2"),
    answers: Sequence[Optional[str]] = (None, None),
    votes: Iterable[Mapping[str, Any]] = (),
    viewer_votes: Optional[Sequence[int]] = None,
    viewer_voting_ends_at: Optional[float] = None,
) -> Dict[str, Any]:
    a, b = contestants
    answer_tasks = [
        build_task(name, finished_at=None if answer is None else 2_000.0, result=answer)
        for name, answer in zip((a, b), answers)
    ]
    payload = {
        "num": num,
        "phase": phase,
        "prompter": build_model(prompter),
        "promptTask": build_task(prompter, finished_at=None if prompt is None else 1_500.0, result=prompt),
        "prompt": prompt,
        "contestants": [build_model(a), build_model(b)],
        "answerTasks": answer_tasks,
        "votes": [dict(v) for v in votes],
        "viewerVotingEndsAt": viewer_voting_ends_at,
    }
    if viewer_votes is not None:
        payload["viewerVotesA"], payload["viewerVotesB"] = viewer_votes
    return _strip_none(payload)


def build_game_state(
    *,
    active: Optional[Mapping[str, Any]] = None,
    last_completed: Optional[Mapping[str, Any]] = None,
    scores: Optional[Mapping[str, int]] = None,
    viewer_scores: Optional[Mapping[str, int]] = None,
    done: bool = False,
    is_paused: bool = False,
    generation: int = 1,
) -> Dict[str, Any]:
    return {
        "lastCompleted": None if last_completed is None else dict(last_completed),
        "active": None if active is None else dict(active),
        "scores": dict(scores or {}),
        "viewerScores": dict(viewer_scores or {}),
        "done": done,
        "isPaused": is_paused,
        "generation": generation,
    }


def build_state_message(
    state: Mapping[str, Any],
    *,
    total_rounds: Any = 10,
    viewer_count: int = 0,
    protocol_version: Optional[str] = None,
) -> str:
    payload: Dict[str, Any] = {
        "type": "state",
        "data": dict(state),
        "totalRounds": total_rounds,
        "viewerCount": viewer_count,
    }
    if protocol_version is not None:
        payload["protocolVersion"] = protocol_version
    return json.dumps(payload)


def build_viewer_count_message(viewer_count: int) -> str:
    return json.dumps({"type": "viewerCount", "viewerCount": viewer_count})
