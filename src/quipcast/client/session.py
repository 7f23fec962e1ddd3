"""Per-viewer broadcast session.

A session is created when a viewing surface starts, is fed by exactly one
:class:`~quipcast.client.state_sync.StateSyncClient`, is read by the render
loop, and is thrown away wholesale on a protocol reset or shutdown.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from quipcast.protocol import GameState


@dataclass(frozen=True)
class SessionView:
    """Immutable read of a session taken once per rendered frame."""

    state: Optional[GameState]
    total_rounds: Optional[int]
    viewer_count: int
    connected: bool
    status: str
    seconds_since_update: Optional[float]


@dataclass
class BroadcastSession:
    """Mutable mirror of the authoritative game state (single writer: the sync client)."""

    latest_state: Optional[GameState] = None
    total_rounds: Optional[int] = None
    viewer_count: int = 0
    connected: bool = False
    status: str = "WS connecting..."
    last_message_at: Optional[float] = None
    known_version: Optional[str] = None

    def seconds_since_last_update(self, now: Optional[float] = None) -> Optional[float]:
        if self.last_message_at is None:
            return None
        current = time.monotonic() if now is None else now
        return max(0.0, current - self.last_message_at)

    def view(self, now: Optional[float] = None) -> SessionView:
        return SessionView(
            state=self.latest_state,
            total_rounds=self.total_rounds,
            viewer_count=self.viewer_count,
            connected=self.connected,
            status=self.status,
            seconds_since_update=self.seconds_since_last_update(now),
        )
