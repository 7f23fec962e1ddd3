"""Typed state-push messages for the broadcast websocket.

The server pushes two kinds of JSON frames:

- ``{"type": "state", "data": GameState, "totalRounds": n, "viewerCount": n,
  "protocolVersion": "..."}``
- ``{"type": "viewerCount", "viewerCount": n}``

Every dataclass here is frozen; a client never mutates a snapshot, it replaces
it wholesale with the next one it parses.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union

STATE_TYPE = "state"
VIEWER_COUNT_TYPE = "viewerCount"


class ProtocolError(ValueError):
    """Raised when a pushed payload does not match the expected shape."""


class Phase(str, Enum):
    PROMPTING = "prompting"
    ANSWERING = "answering"
    VOTING = "voting"
    DONE = "done"


def _as_mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ProtocolError(f"{field_name} must be an object")
    return value


def _as_sequence(value: Any, field_name: str) -> Sequence[Any]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes, bytearray)):
        raise ProtocolError(f"{field_name} must be an array")
    return value


def _as_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ProtocolError(f"{field_name} must be a string")
    return value


def _as_number(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"{field_name} must be a number")
    return float(value)


def _as_int(value: Any, field_name: str) -> int:
    number = _as_number(value, field_name)
    if not math.isfinite(number):
        raise ProtocolError(f"{field_name} must be finite")
    return int(number)


def _optional_number(value: Any, field_name: str) -> Optional[float]:
    if value is None:
        return None
    return _as_number(value, field_name)


def _optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    return _as_int(value, field_name)


def _optional_str(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    return _as_str(value, field_name)


def _scores(value: Any, field_name: str) -> dict[str, int]:
    if value is None:
        return {}
    mapping = _as_mapping(value, field_name)
    return {str(name): _as_int(score, f"{field_name}.{name}") for name, score in mapping.items()}


@dataclass(frozen=True)
class Model:
    id: str = field(compare=False)
    name: str

    @classmethod
    def from_dict(cls, data: Any, field_name: str = "model") -> "Model":
        mapping = _as_mapping(data, field_name)
        name = _as_str(mapping.get("name"), f"{field_name}.name")
        raw_id = mapping.get("id", name)
        return cls(id=str(raw_id), name=name)


@dataclass(frozen=True)
class TaskInfo:
    model: Model
    started_at: float
    finished_at: Optional[float] = None
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def in_progress(self) -> bool:
        return not self.finished_at and not self.result

    @classmethod
    def from_dict(cls, data: Any, field_name: str = "task") -> "TaskInfo":
        mapping = _as_mapping(data, field_name)
        return cls(
            model=Model.from_dict(mapping.get("model"), f"{field_name}.model"),
            started_at=_as_number(mapping.get("startedAt", 0), f"{field_name}.startedAt"),
            finished_at=_optional_number(mapping.get("finishedAt"), f"{field_name}.finishedAt"),
            result=_optional_str(mapping.get("result"), f"{field_name}.result"),
            error=_optional_str(mapping.get("error"), f"{field_name}.error"),
        )


@dataclass(frozen=True)
class VoteInfo:
    voter: Model
    started_at: float
    finished_at: Optional[float] = None
    voted_for: Optional[Model] = None
    error: bool = False

    @classmethod
    def from_dict(cls, data: Any, field_name: str = "vote") -> "VoteInfo":
        mapping = _as_mapping(data, field_name)
        voted_for = mapping.get("votedFor")
        return cls(
            voter=Model.from_dict(mapping.get("voter"), f"{field_name}.voter"),
            started_at=_as_number(mapping.get("startedAt", 0), f"{field_name}.startedAt"),
            finished_at=_optional_number(mapping.get("finishedAt"), f"{field_name}.finishedAt"),
            voted_for=None if voted_for is None else Model.from_dict(voted_for, f"{field_name}.votedFor"),
            error=bool(mapping.get("error", False)),
        )


@dataclass(frozen=True)
class RoundState:
    num: int
    phase: Phase
    prompter: Model
    prompt_task: TaskInfo
    contestants: tuple[Model, Model]
    answer_tasks: tuple[TaskInfo, TaskInfo]
    votes: tuple[VoteInfo, ...] = ()
    prompt: Optional[str] = None
    score_a: Optional[int] = None
    score_b: Optional[int] = None
    viewer_votes_a: Optional[int] = None
    viewer_votes_b: Optional[int] = None
    viewer_voting_ends_at: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Any, field_name: str = "round") -> "RoundState":
        mapping = _as_mapping(data, field_name)
        raw_phase = mapping.get("phase")
        try:
            phase = Phase(raw_phase)
        except ValueError as exc:
            raise ProtocolError(f"{field_name}.phase is not a known phase: {raw_phase!r}") from exc

        contestants = _as_sequence(mapping.get("contestants"), f"{field_name}.contestants")
        answer_tasks = _as_sequence(mapping.get("answerTasks"), f"{field_name}.answerTasks")
        if len(contestants) != 2 or len(answer_tasks) != 2:
            raise ProtocolError(f"{field_name} must carry exactly two contestants and answer tasks")

        votes = _as_sequence(mapping.get("votes", []), f"{field_name}.votes")
        return cls(
            num=_as_int(mapping.get("num"), f"{field_name}.num"),
            phase=phase,
            prompter=Model.from_dict(mapping.get("prompter"), f"{field_name}.prompter"),
            prompt_task=TaskInfo.from_dict(mapping.get("promptTask"), f"{field_name}.promptTask"),
            contestants=(
                Model.from_dict(contestants[0], f"{field_name}.contestants[0]"),
                Model.from_dict(contestants[1], f"{field_name}.contestants[1]"),
            ),
            answer_tasks=(
                TaskInfo.from_dict(answer_tasks[0], f"{field_name}.answerTasks[0]"),
                TaskInfo.from_dict(answer_tasks[1], f"{field_name}.answerTasks[1]"),
            ),
            votes=tuple(VoteInfo.from_dict(v, f"{field_name}.votes[{i}]") for i, v in enumerate(votes)),
            prompt=_optional_str(mapping.get("prompt"), f"{field_name}.prompt"),
            score_a=_optional_int(mapping.get("scoreA"), f"{field_name}.scoreA"),
            score_b=_optional_int(mapping.get("scoreB"), f"{field_name}.scoreB"),
            viewer_votes_a=_optional_int(mapping.get("viewerVotesA"), f"{field_name}.viewerVotesA"),
            viewer_votes_b=_optional_int(mapping.get("viewerVotesB"), f"{field_name}.viewerVotesB"),
            viewer_voting_ends_at=_optional_number(
                mapping.get("viewerVotingEndsAt"), f"{field_name}.viewerVotingEndsAt"
            ),
        )


@dataclass(frozen=True)
class GameState:
    last_completed: Optional[RoundState]
    active: Optional[RoundState]
    scores: Mapping[str, int]
    viewer_scores: Mapping[str, int] = field(default_factory=dict)
    done: bool = False
    is_paused: bool = False
    generation: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "GameState":
        mapping = _as_mapping(data, "data")
        last_completed = mapping.get("lastCompleted")
        active = mapping.get("active")
        return cls(
            last_completed=None if last_completed is None else RoundState.from_dict(last_completed, "lastCompleted"),
            active=None if active is None else RoundState.from_dict(active, "active"),
            scores=_scores(mapping.get("scores"), "scores"),
            viewer_scores=_scores(mapping.get("viewerScores"), "viewerScores"),
            done=bool(mapping.get("done", False)),
            is_paused=bool(mapping.get("isPaused", False)),
            generation=_as_int(mapping.get("generation", 0), "generation"),
        )


@dataclass(frozen=True)
class StateMessage:
    state: GameState
    total_rounds: Optional[int]
    viewer_count: int
    protocol_version: Optional[str] = None


@dataclass(frozen=True)
class ViewerCountMessage:
    viewer_count: int


ServerMessage = Union[StateMessage, ViewerCountMessage]


def _total_rounds(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return int(value)


def parse_server_message(raw: Union[str, bytes, bytearray]) -> ServerMessage:
    """Decode one pushed frame; raise :class:`ProtocolError` if it is malformed."""

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"payload is not valid JSON: {exc}") from exc
    mapping = _as_mapping(payload, "message")
    kind = mapping.get("type")
    if kind == STATE_TYPE:
        version = mapping.get("protocolVersion", mapping.get("version"))
        return StateMessage(
            state=GameState.from_dict(mapping.get("data")),
            total_rounds=_total_rounds(mapping.get("totalRounds")),
            viewer_count=_as_int(mapping.get("viewerCount", 0), "viewerCount"),
            protocol_version=None if version in (None, "") else str(version),
        )
    if kind == VIEWER_COUNT_TYPE:
        return ViewerCountMessage(viewer_count=_as_int(mapping.get("viewerCount"), "viewerCount"))
    raise ProtocolError(f"unknown message type: {kind!r}")


__all__ = [
    "GameState",
    "Model",
    "Phase",
    "ProtocolError",
    "RoundState",
    "STATE_TYPE",
    "ServerMessage",
    "StateMessage",
    "TaskInfo",
    "VIEWER_COUNT_TYPE",
    "ViewerCountMessage",
    "VoteInfo",
    "parse_server_message",
]
