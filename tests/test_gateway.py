from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from unicord import gateway as gateway_module
from unicord.errors import GatewayError
from unicord.gateway import (
    GatewaySession,
    SessionState,
    build_heartbeat_payload,
    build_identify_payload,
    build_resume_payload,
    calculate_reconnect_backoff,
    gateway_close_code,
    normalize_gateway_url,
    parse_gateway_frame,
)


class _FakeWebSocket:
    def __init__(self, frames: list[Any] = ()) -> None:
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.close_codes: list[int] = []
        for frame in frames:
            self.feed(frame)

    def feed(self, frame: Any) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._incoming.put_nowait(frame)

    def sent_ops(self) -> list[int]:
        return [payload["op"] for payload in self.sent]

    async def __aenter__(self) -> "_FakeWebSocket":
        return self

    async def __aexit__(self, *_exc_info: object) -> bool:
        self._incoming.put_nowait(None)
        return False

    def __aiter__(self) -> "_FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_codes.append(code)
        self._incoming.put_nowait(None)


class _FakeWebSocketModule:
    """Hands out the given sockets in order, then idle ones."""

    def __init__(self, sockets: list[_FakeWebSocket]) -> None:
        self._sockets = list(sockets)
        self.urls: list[str] = []

    def connect(self, url: str, **_kwargs: Any) -> _FakeWebSocket:
        self.urls.append(url)
        if self._sockets:
            return self._sockets.pop(0)
        return _FakeWebSocket()


def _hello(interval_ms: int = 45000) -> dict[str, Any]:
    return {"op": 10, "d": {"heartbeat_interval": interval_ms}}


def _ready(session_id: str = "session-1", seq: int = 1) -> dict[str, Any]:
    return {
        "op": 0,
        "t": "READY",
        "s": seq,
        "d": {
            "session_id": session_id,
            "resume_gateway_url": "wss://resume.example",
            "user": {"id": "999", "username": "unicord"},
        },
    }


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def _session(**kwargs: Any) -> GatewaySession:
    return GatewaySession(
        bot_token="token",
        intents=513,
        logger=logging.getLogger("test.gateway"),
        **kwargs,
    )


@pytest.fixture()
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    attempts: list[int] = []

    def _backoff(attempt: int, **_kwargs: Any) -> float:
        attempts.append(attempt)
        return 0.0

    monkeypatch.setattr(gateway_module, "calculate_reconnect_backoff", _backoff)
    return attempts


def test_build_identify_payload_includes_shard() -> None:
    payload = build_identify_payload(
        bot_token="token", intents=513, shard_id=1, shard_count=4
    )
    assert payload["op"] == 2
    assert payload["d"]["token"] == "token"
    assert payload["d"]["intents"] == 513
    assert payload["d"]["shard"] == [1, 4]
    assert payload["d"]["properties"]["browser"] == "unicord"
    assert payload["d"]["properties"]["device"] == "unicord"


def test_resume_and_heartbeat_payloads() -> None:
    assert build_resume_payload(bot_token="t", session_id="abc", sequence=7) == {
        "op": 6,
        "d": {"token": "t", "session_id": "abc", "seq": 7},
    }
    assert build_heartbeat_payload(None) == {"op": 1, "d": None}
    assert build_heartbeat_payload(12) == {"op": 1, "d": 12}


def test_parse_gateway_frame_accepts_text_and_bytes() -> None:
    frame = parse_gateway_frame('{"op":0,"s":3,"t":"MESSAGE_CREATE","d":{"id":"1"}}')
    assert frame.op == 0
    assert frame.s == 3
    assert frame.t == "MESSAGE_CREATE"
    assert frame.d == {"id": "1"}

    assert parse_gateway_frame(b'{"op":11}').op == 11


@pytest.mark.parametrize(
    "raw",
    ["not json", "[1, 2]", '{"d": {}}', '{"op": "10"}', b"\xff\xfe"],
)
def test_parse_gateway_frame_rejects_malformed(raw: Any) -> None:
    with pytest.raises(GatewayError):
        parse_gateway_frame(raw)


def test_reconnect_backoff_doubles_and_caps() -> None:
    assert [calculate_reconnect_backoff(attempt) for attempt in range(4)] == [
        1.0,
        2.0,
        4.0,
        8.0,
    ]
    assert calculate_reconnect_backoff(6) == 60.0
    assert calculate_reconnect_backoff(100) == 60.0
    assert calculate_reconnect_backoff(-3) == 1.0


def test_normalize_gateway_url_appends_query_once() -> None:
    assert normalize_gateway_url("wss://gw.example") == "wss://gw.example?v=10&encoding=json"
    assert normalize_gateway_url("wss://gw.example/?v=10") == "wss://gw.example/?v=10"


def test_gateway_close_code_reads_received_frame() -> None:
    exc = ConnectionClosed(Close(4009, "session timed out"), None)
    assert gateway_close_code(exc) == 4009
    assert gateway_close_code(RuntimeError("boom")) is None


@pytest.mark.anyio
async def test_heartbeat_sent_within_interval(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    socket = _FakeWebSocket([_hello(interval_ms=50)])
    monkeypatch.setattr(gateway_module, "websockets", _FakeWebSocketModule([socket]))
    session = _session()

    session.connect()
    await _wait_until(lambda: 2 in socket.sent_ops(), timeout=0.05)
    await _wait_until(lambda: 1 in socket.sent_ops(), timeout=0.12)
    assert session.heartbeat_active
    assert session.state is SessionState.CONNECTED

    await session.stop()
    assert not session.heartbeat_active
    assert session.state is SessionState.DISCONNECTED


@pytest.mark.anyio
async def test_single_heartbeat_timer_across_hello_and_reconnect(
    monkeypatch: pytest.MonkeyPatch, no_backoff: list[int]
) -> None:
    first = _FakeWebSocket([_hello(interval_ms=30), _hello(interval_ms=30)])
    second = _FakeWebSocket([_hello(interval_ms=30)])
    monkeypatch.setattr(
        gateway_module, "websockets", _FakeWebSocketModule([first, second])
    )
    session = _session()
    running = 0
    peak = 0
    original_loop = session._heartbeat_loop

    async def _tracked_loop(websocket: Any, interval_seconds: float) -> None:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        try:
            await original_loop(websocket, interval_seconds)
        finally:
            running -= 1

    session._heartbeat_loop = _tracked_loop  # type: ignore[method-assign]

    session.connect()
    await _wait_until(lambda: first.sent_ops().count(2) == 2)
    await asyncio.sleep(0.1)
    assert 1 <= first.sent_ops().count(1) <= 4
    assert peak == 1

    first.feed(None)
    await _wait_until(lambda: 2 in second.sent_ops())
    old_heartbeats = first.sent_ops().count(1)
    await _wait_until(lambda: second.sent_ops().count(1) >= 2)
    await session.stop()

    assert first.sent_ops().count(1) == old_heartbeats
    assert peak == 1
    assert running == 0


@pytest.mark.anyio
async def test_ready_captures_session_and_resets_attempts(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    socket = _FakeWebSocket([_hello(), _ready(session_id="abc", seq=4)])
    monkeypatch.setattr(gateway_module, "websockets", _FakeWebSocketModule([socket]))
    session = _session()
    session._replace(reconnect_attempts=3)
    ready_payloads: list[dict[str, Any]] = []
    session.events.on("READY", ready_payloads.append)

    session.connect()
    await _wait_until(lambda: bool(ready_payloads))
    await session.stop()

    descriptor = session.descriptor
    assert descriptor.session_id == "abc"
    assert descriptor.resume_url == "wss://resume.example"
    assert descriptor.sequence == 4
    assert descriptor.reconnect_attempts == 0
    assert descriptor.heartbeat_interval == 45.0
    assert ready_payloads[0]["user"]["id"] == "999"


@pytest.mark.anyio
async def test_dispatch_events_emitted_and_sequence_monotonic(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    socket = _FakeWebSocket(
        [
            _hello(),
            _ready(seq=5),
            {"op": 0, "t": "MESSAGE_CREATE", "s": 3, "d": {"id": "m1"}},
            {"op": 0, "t": "GUILD_CREATE", "s": 6, "d": {"id": "g1"}},
        ]
    )
    monkeypatch.setattr(gateway_module, "websockets", _FakeWebSocketModule([socket]))
    session = _session()
    seen: list[tuple[str, Any]] = []
    session.events.on("*", lambda name, payload: seen.append((name, payload)))

    session.connect()
    await _wait_until(lambda: len(seen) == 3)
    await session.stop()

    assert [name for name, _payload in seen] == ["READY", "MESSAGE_CREATE", "GUILD_CREATE"]
    assert seen[1][1] == {"id": "m1"}
    assert session.descriptor.sequence == 6


@pytest.mark.anyio
async def test_connect_failures_schedule_increasing_attempts(
    monkeypatch: pytest.MonkeyPatch, no_backoff: list[int]
) -> None:
    session = _session()
    calls: list[str] = []

    class _FailingWebSocketModule:
        def connect(self, url: str, **_kwargs: Any) -> Any:
            calls.append(url)
            if len(calls) == 4:
                session._stop_event.set()
            raise OSError("connection refused")

    monkeypatch.setattr(gateway_module, "websockets", _FailingWebSocketModule())

    await session.run()

    assert len(calls) == 4
    assert no_backoff == [0, 1, 2]
    assert session.descriptor.reconnect_attempts == 3
    assert session.state is SessionState.DISCONNECTED


@pytest.mark.anyio
async def test_resumes_after_socket_drop(
    monkeypatch: pytest.MonkeyPatch, no_backoff: list[int]
) -> None:
    first = _FakeWebSocket([_hello(), _ready(session_id="abc", seq=5), None])
    second = _FakeWebSocket([_hello()])
    module = _FakeWebSocketModule([first, second])
    monkeypatch.setattr(gateway_module, "websockets", module)
    session = _session()

    session.connect()
    await _wait_until(lambda: 6 in second.sent_ops())
    await session.stop()

    assert first.sent_ops() == [2]
    assert second.sent[0] == {
        "op": 6,
        "d": {"token": "token", "session_id": "abc", "seq": 5},
    }
    assert module.urls[1] == "wss://resume.example?v=10&encoding=json"
    assert no_backoff == [0]


@pytest.mark.anyio
async def test_resumed_resets_reconnect_attempts(
    monkeypatch: pytest.MonkeyPatch, no_backoff: list[int]
) -> None:
    first = _FakeWebSocket([_hello(), _ready(session_id="abc", seq=2), {"op": 7}])
    second = _FakeWebSocket(
        [_hello(), {"op": 0, "t": "RESUMED", "s": 3, "d": None}]
    )
    monkeypatch.setattr(
        gateway_module, "websockets", _FakeWebSocketModule([first, second])
    )
    session = _session()
    resumed: list[Any] = []
    session.events.on("RESUMED", resumed.append)

    session.connect()
    await _wait_until(lambda: bool(resumed))
    await session.stop()

    assert no_backoff == [0]
    assert session.descriptor.reconnect_attempts == 0
    assert session.descriptor.session_id == "abc"
    assert session.descriptor.sequence == 3


@pytest.mark.anyio
async def test_reconnect_opcode_closes_with_resumable_code(
    monkeypatch: pytest.MonkeyPatch, no_backoff: list[int]
) -> None:
    first = _FakeWebSocket([_hello(), _ready(session_id="abc", seq=2), {"op": 7}])
    second = _FakeWebSocket([_hello()])
    monkeypatch.setattr(
        gateway_module, "websockets", _FakeWebSocketModule([first, second])
    )
    session = _session()

    session.connect()
    await _wait_until(lambda: 6 in second.sent_ops())
    await session.stop()

    assert first.close_codes[0] == 4000
    assert second.sent[0]["d"]["session_id"] == "abc"


@pytest.mark.anyio
async def test_invalid_session_reidentifies_on_same_socket(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(gateway_module, "INVALID_SESSION_DELAY_SECONDS", 0.0)
    socket = _FakeWebSocket([_hello(), _ready(session_id="abc"), {"op": 9, "d": False}])
    module = _FakeWebSocketModule([socket])
    monkeypatch.setattr(gateway_module, "websockets", module)
    session = _session()

    session.connect()
    await _wait_until(lambda: socket.sent_ops().count(2) == 2)
    await session.stop()

    assert len(module.urls) == 1
    assert session.descriptor.session_id is None
    assert session.descriptor.sequence is None


@pytest.mark.anyio
async def test_non_resumable_close_code_starts_fresh_session(
    monkeypatch: pytest.MonkeyPatch, no_backoff: list[int]
) -> None:
    first = _FakeWebSocket(
        [
            _hello(),
            _ready(session_id="abc"),
            ConnectionClosed(Close(4009, "session timed out"), None),
        ]
    )
    second = _FakeWebSocket([_hello()])
    module = _FakeWebSocketModule([first, second])
    monkeypatch.setattr(gateway_module, "websockets", module)
    session = _session(gateway_url="wss://gateway.example")

    session.connect()
    await _wait_until(lambda: 2 in second.sent_ops())
    await session.stop()

    assert 6 not in second.sent_ops()
    assert module.urls[1] == "wss://gateway.example?v=10&encoding=json"


@pytest.mark.anyio
async def test_malformed_frame_triggers_reconnect(
    monkeypatch: pytest.MonkeyPatch, no_backoff: list[int]
) -> None:
    first = _FakeWebSocket(["{not json"])
    second = _FakeWebSocket([_hello()])
    module = _FakeWebSocketModule([first, second])
    monkeypatch.setattr(gateway_module, "websockets", module)
    session = _session()

    session.connect()
    await _wait_until(lambda: 2 in second.sent_ops())
    await session.stop()

    assert len(module.urls) == 2
    assert no_backoff == [0]


@pytest.mark.anyio
async def test_hello_without_interval_is_treated_as_malformed(
    monkeypatch: pytest.MonkeyPatch, no_backoff: list[int]
) -> None:
    first = _FakeWebSocket([{"op": 10, "d": {}}])
    second = _FakeWebSocket([_hello()])
    monkeypatch.setattr(
        gateway_module, "websockets", _FakeWebSocketModule([first, second])
    )
    session = _session()

    session.connect()
    await _wait_until(lambda: 2 in second.sent_ops())
    await session.stop()

    assert first.sent == []


@pytest.mark.anyio
async def test_server_heartbeat_request_answered_immediately(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    socket = _FakeWebSocket([_hello(), _ready(seq=8), {"op": 1}, {"op": 11}])
    monkeypatch.setattr(gateway_module, "websockets", _FakeWebSocketModule([socket]))
    session = _session()

    session.connect()
    await _wait_until(lambda: session.last_heartbeat_ack is not None)
    await session.stop()

    assert {"op": 1, "d": 8} in socket.sent
