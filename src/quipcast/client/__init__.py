"""Viewer-side state mirror: session object and the websocket sync client."""

from .session import BroadcastSession, SessionView
from .state_sync import StateSyncClient, state_url_for

__all__ = ["BroadcastSession", "SessionView", "StateSyncClient", "state_url_for"]
