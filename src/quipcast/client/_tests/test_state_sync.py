from __future__ import annotations

import asyncio

import pytest

from quipcast.client.session import BroadcastSession
from quipcast.client.state_sync import (
    STATUS_CONNECTED,
    STATUS_RECONNECTING,
    StateSyncClient,
    state_url_for,
)
from quipcast.protocol._tests.payloads import (
    build_game_state,
    build_round,
    build_state_message,
    build_viewer_count_message,
)


class FakeConnection:
    """Async context manager standing in for ``websockets.connect``."""

    def __init__(self, messages=(), *, fail: bool = False) -> None:
        self.messages = list(messages)
        self.fail = fail

    async def __aenter__(self):
        if self.fail:
            raise ConnectionRefusedError("server down")
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for message in self.messages:
            yield message


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


async def _spin(n: int = 5) -> None:
    for _ in range(n):
        await asyncio.sleep(0)


def _state_frame(num: int = 1, version: str | None = "v1", viewers: int = 3) -> str:
    return build_state_message(
        build_game_state(active=build_round(num=num)),
        viewer_count=viewers,
        protocol_version=version,
    )


def test_state_url_for_maps_scheme_and_path() -> None:
    assert state_url_for("http://127.0.0.1:5109/broadcast?sink=x") == "ws://127.0.0.1:5109/ws"
    assert state_url_for("https://quipslop.example/broadcast") == "wss://quipslop.example/ws"


def test_state_push_replaces_snapshot_wholesale() -> None:
    clock = FakeClock()
    session = BroadcastSession()
    client = StateSyncClient("ws://test/ws", session, clock=clock)

    assert client.handle_message(_state_frame(num=1)) is True
    first = session.latest_state
    clock.now = 105.0
    assert client.handle_message(_state_frame(num=2, viewers=8)) is True

    assert session.latest_state is not first
    assert session.latest_state.active.num == 2
    assert session.viewer_count == 8
    assert session.total_rounds == 10
    clock.now = 107.5
    assert client.seconds_since_last_update() == pytest.approx(2.5)


def test_viewer_count_push_leaves_state_untouched() -> None:
    session = BroadcastSession()
    client = StateSyncClient("ws://test/ws", session, clock=FakeClock())
    client.handle_message(_state_frame())
    state_before = session.latest_state
    updated_before = session.last_message_at

    assert client.handle_message(build_viewer_count_message(512)) is True

    assert session.latest_state is state_before
    assert session.last_message_at == updated_before
    assert session.viewer_count == 512


def test_malformed_payloads_are_dropped() -> None:
    session = BroadcastSession()
    client = StateSyncClient("ws://test/ws", session, clock=FakeClock())
    client.handle_message(_state_frame())
    state_before = session.latest_state

    assert client.handle_message("{not json") is False
    assert client.handle_message('{"type": "state", "data": 5}') is False

    assert session.latest_state is state_before
    assert client.dropped_messages == 2


def test_version_change_triggers_single_reset() -> None:
    resets: list[int] = []
    session = BroadcastSession()
    client = StateSyncClient(
        "ws://test/ws", session, on_protocol_reset=lambda: resets.append(1), clock=FakeClock()
    )

    client.handle_message(_state_frame(num=1, version="v1"))
    client.handle_message(_state_frame(num=2, version="v1"))
    assert resets == []

    assert client.handle_message(_state_frame(num=3, version="v2")) is False
    assert client.handle_message(_state_frame(num=4, version="v3")) is False

    assert resets == [1]
    assert client.reset_requested is True
    assert session.latest_state.active.num == 2
    assert session.known_version == "v1"


def test_messages_without_version_never_reset() -> None:
    resets: list[int] = []
    client = StateSyncClient(
        "ws://test/ws", BroadcastSession(), on_protocol_reset=lambda: resets.append(1), clock=FakeClock()
    )
    client.handle_message(_state_frame(version=None))
    client.handle_message(_state_frame(version="v9"))
    client.handle_message(_state_frame(version=None))
    assert resets == []


def test_disconnect_schedules_exactly_one_reconnect() -> None:
    async def _run() -> None:
        attempts: list[str] = []

        def connect(url: str) -> FakeConnection:
            attempts.append(url)
            return FakeConnection(fail=True)

        session = BroadcastSession()
        client = StateSyncClient("ws://test/ws", session, reconnect_delay=60.0, connect=connect)
        client.start()
        await _spin()

        assert attempts == ["ws://test/ws"]
        assert client.reconnect_pending
        assert session.status == STATUS_RECONNECTING
        first = client._reconnect_handle

        # A second disconnect before the timer fires replaces the pending attempt.
        client._on_close()
        second = client._reconnect_handle
        assert second is not first
        assert first.cancelled()
        assert not second.cancelled()

        await client.close()
        assert not client.reconnect_pending
        assert second.cancelled()

    asyncio.run(_run())


def test_reconnect_retries_after_fixed_delay() -> None:
    async def _run() -> None:
        attempts: list[str] = []

        def connect(url: str) -> FakeConnection:
            attempts.append(url)
            return FakeConnection(fail=True)

        client = StateSyncClient("ws://test/ws", BroadcastSession(), reconnect_delay=0.01, connect=connect)
        client.start()
        await asyncio.sleep(0.1)
        await client.close()
        assert len(attempts) >= 2

    asyncio.run(_run())


def test_connection_applies_messages_then_reconnects_on_close() -> None:
    async def _run() -> None:
        frames = [_state_frame(num=5), build_viewer_count_message(77)]
        statuses: list[str] = []
        session = BroadcastSession()

        def connect(url: str) -> FakeConnection:
            return FakeConnection(frames)

        client = StateSyncClient("ws://test/ws", session, reconnect_delay=60.0, connect=connect)
        original = client._set_status

        def record(value: str) -> None:
            statuses.append(value)
            original(value)

        client._set_status = record  # type: ignore[method-assign]
        client.start()
        await _spin()

        assert statuses[:2] == [STATUS_CONNECTED, STATUS_RECONNECTING]
        assert session.latest_state.active.num == 5
        assert session.viewer_count == 77
        assert client.is_connected() is False
        assert client.reconnect_pending
        await client.close()

    asyncio.run(_run())
