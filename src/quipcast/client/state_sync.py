from __future__ import annotations

"""
State synchronization client for the broadcast websocket.

Keeps a :class:`BroadcastSession` in step with the server's push stream:

- every full-state push replaces the snapshot wholesale;
- viewer-count pushes only touch the counter;
- any disconnect schedules exactly one reconnect attempt after a fixed delay;
  a newer disconnect replaces the pending attempt rather than stacking timers;
- a protocol version different from the first one seen means the server
  restarted with an incompatible state shape, so the owner is asked to reset
  the whole session (once).
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

import websockets

from quipcast.client.session import BroadcastSession
from quipcast.protocol import ProtocolError, ViewerCountMessage, parse_server_message

logger = logging.getLogger(__name__)

RECONNECT_DELAY_S = 1.0

STATUS_CONNECTED = "WS connected"
STATUS_RECONNECTING = "WS reconnecting..."


def state_url_for(target_url: str) -> str:
    """Derive the state websocket URL (``/ws`` on the same host) from a page URL."""

    parts = urlsplit(target_url)
    scheme = "wss" if parts.scheme in ("https", "wss") else "ws"
    return urlunsplit((scheme, parts.netloc, "/ws", "", ""))


class StateSyncClient:
    """Maintains the live state websocket for one session.

    Must be started from inside a running event loop; all callbacks and
    session mutations happen on that loop.
    """

    def __init__(
        self,
        url: str,
        session: BroadcastSession,
        *,
        reconnect_delay: float = RECONNECT_DELAY_S,
        on_protocol_reset: Optional[Callable[[], None]] = None,
        connect: Optional[Callable[..., Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = url
        self.session = session
        self.reconnect_delay = float(reconnect_delay)
        self.on_protocol_reset = on_protocol_reset
        self._connect = connect or websockets.connect
        self._clock = clock
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._reset_requested = False
        self._closed = False
        self.dropped_messages = 0

    # ---- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        logger.info("Connecting to state channel at %s", self.url)
        self._launch()

    async def close(self) -> None:
        self._closed = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.session.connected = False

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def reset_requested(self) -> bool:
        return self._reset_requested

    def is_connected(self) -> bool:
        return self.session.connected

    def seconds_since_last_update(self) -> Optional[float]:
        return self.session.seconds_since_last_update(self._clock())

    # ---- connection loop -----------------------------------------------------

    def _launch(self) -> None:
        self._reconnect_handle = None
        if self._closed or self._loop is None:
            return
        self._task = self._loop.create_task(self._run_connection())

    async def _run_connection(self) -> None:
        error: Optional[BaseException] = None
        try:
            async with self._connect(self.url) as ws:
                self._on_open()
                async for message in ws:
                    self.handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = exc
            logger.debug("State channel connection failed", exc_info=True)
        if not self._closed:
            self._on_close(error)

    def _on_open(self) -> None:
        self.session.connected = True
        self._set_status(STATUS_CONNECTED)

    def _on_close(self, error: Optional[BaseException] = None) -> None:
        self.session.connected = False
        self._set_status(STATUS_RECONNECTING)
        if error is not None:
            logger.info("State channel lost (%s); retrying in %.1fs", error, self.reconnect_delay)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed or self._loop is None:
            return
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
        self._reconnect_handle = self._loop.call_later(self.reconnect_delay, self._launch)

    def _set_status(self, value: str) -> None:
        if self.session.status != value:
            logger.info("state channel: %s", value)
        self.session.status = value

    # ---- inbound -------------------------------------------------------------

    def handle_message(self, raw: Any) -> bool:
        """Apply one inbound frame; returns True when the session changed."""

        if self._reset_requested:
            return False
        try:
            msg = parse_server_message(raw)
        except ProtocolError:
            self.dropped_messages += 1
            logger.debug("Dropping malformed state payload", exc_info=True)
            return False

        session = self.session
        if isinstance(msg, ViewerCountMessage):
            session.viewer_count = msg.viewer_count
            return True

        version = msg.protocol_version
        if version is not None:
            if session.known_version is None:
                session.known_version = version
            elif version != session.known_version:
                self._request_reset(session.known_version, version)
                return False

        session.latest_state = msg.state
        session.total_rounds = msg.total_rounds
        session.viewer_count = msg.viewer_count
        session.last_message_at = self._clock()
        return True

    def _request_reset(self, known: str, received: str) -> None:
        if self._reset_requested:
            return
        self._reset_requested = True
        logger.warning(
            "State protocol version changed (%s -> %s); discarding session", known, received
        )
        if self.on_protocol_reset is not None:
            self.on_protocol_reset()
