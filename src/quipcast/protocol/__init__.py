"""Wire types for the broadcast state-push protocol."""

from .messages import (
    STATE_TYPE,
    VIEWER_COUNT_TYPE,
    GameState,
    Model,
    Phase,
    ProtocolError,
    RoundState,
    ServerMessage,
    StateMessage,
    TaskInfo,
    ViewerCountMessage,
    VoteInfo,
    parse_server_message,
)

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
