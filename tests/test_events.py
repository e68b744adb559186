from __future__ import annotations

import logging
from typing import Any

import pytest

from unicord.events import ANY_EVENT, EventRegistry


@pytest.mark.anyio
async def test_emit_calls_sync_and_async_handlers_in_order() -> None:
    registry = EventRegistry()
    calls: list[tuple[str, Any]] = []

    def sync_handler(payload: Any) -> None:
        calls.append(("sync", payload))

    async def async_handler(payload: Any) -> None:
        calls.append(("async", payload))

    registry.on("READY", sync_handler)
    registry.on("READY", async_handler)
    await registry.emit("READY", {"v": 10})

    assert calls == [("sync", {"v": 10}), ("async", {"v": 10})]


@pytest.mark.anyio
async def test_wildcard_handlers_receive_event_name() -> None:
    registry = EventRegistry()
    seen: list[tuple[Any, ...]] = []
    registry.on(ANY_EVENT, lambda *args: seen.append(args))

    await registry.emit("GUILD_CREATE", {"id": "g1"})
    await registry.emit("TYPING_START")

    assert seen == [("GUILD_CREATE", {"id": "g1"}), ("TYPING_START",)]


@pytest.mark.anyio
async def test_failing_handler_is_logged_and_others_still_run(
    caplog: pytest.LogCaptureFixture,
) -> None:
    registry = EventRegistry(logger=logging.getLogger("test.events"))
    calls: list[str] = []

    def broken(_payload: Any) -> None:
        raise RuntimeError("nope")

    registry.on("MESSAGE_CREATE", broken)
    registry.on("MESSAGE_CREATE", lambda _payload: calls.append("after"))

    with caplog.at_level(logging.ERROR, logger="test.events"):
        await registry.emit("MESSAGE_CREATE", {})

    assert calls == ["after"]
    assert "unicord.events.handler_failed" in caplog.text


def test_off_removes_handler() -> None:
    registry = EventRegistry()

    def handler(_payload: Any) -> None:
        return None

    registry.on("READY", handler)
    assert registry.has_handlers("READY")
    registry.off("READY", handler)
    registry.off("READY", handler)

    assert not registry.has_handlers("READY")
    assert registry.handlers("READY") == ()


@pytest.mark.anyio
async def test_registries_are_independent() -> None:
    first = EventRegistry()
    second = EventRegistry()
    calls: list[str] = []
    first.on("READY", lambda _payload: calls.append("first"))

    await second.emit("READY", {})

    assert calls == []
