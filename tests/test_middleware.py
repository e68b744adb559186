from __future__ import annotations

from typing import Any

import pytest

from unicord.middleware import MiddlewareChain


@pytest.mark.anyio
async def test_middleware_runs_as_onion() -> None:
    trace: list[str] = []
    chain = MiddlewareChain()

    async def outer(ctx: Any, next_fn: Any) -> None:
        trace.append("outer-in")
        await next_fn()
        trace.append("outer-out")

    async def inner(ctx: Any, next_fn: Any) -> None:
        trace.append("inner-in")
        await next_fn()
        trace.append("inner-out")

    async def handler(ctx: Any) -> None:
        trace.append("handler")

    chain.use(outer)
    chain.use(inner)
    handled = await chain.run(object(), handler)

    assert handled is True
    assert trace == ["outer-in", "inner-in", "handler", "inner-out", "outer-out"]


@pytest.mark.anyio
async def test_middleware_short_circuit_skips_rest() -> None:
    trace: list[str] = []
    chain = MiddlewareChain()

    async def first(ctx: Any, next_fn: Any) -> None:
        trace.append("first")
        await next_fn()

    async def gate(ctx: Any, next_fn: Any) -> None:
        trace.append("gate")

    async def never(ctx: Any, next_fn: Any) -> None:
        trace.append("never")
        await next_fn()

    async def handler(ctx: Any) -> None:
        trace.append("handler")

    for middleware in (first, gate, never):
        chain.use(middleware)
    handled = await chain.run(object(), handler)

    assert handled is False
    assert trace == ["first", "gate"]


@pytest.mark.anyio
async def test_calling_next_twice_runs_downstream_once() -> None:
    calls: list[str] = []
    chain = MiddlewareChain()

    async def twice(ctx: Any, next_fn: Any) -> None:
        await next_fn()
        await next_fn()

    def handler(ctx: Any) -> None:
        calls.append("handler")

    chain.use(twice)
    await chain.run(object(), handler)

    assert calls == ["handler"]


@pytest.mark.anyio
async def test_empty_chain_runs_handler_with_context() -> None:
    seen: list[Any] = []
    ctx = {"id": 1}

    handled = await MiddlewareChain().run(ctx, seen.append)

    assert handled is True
    assert seen == [ctx]


@pytest.mark.anyio
async def test_middleware_can_share_state_with_handler() -> None:
    chain = MiddlewareChain()
    ctx: dict[str, Any] = {}

    def tag(context: dict[str, Any], next_fn: Any) -> Any:
        context["tagged"] = True
        return next_fn()

    chain.use(tag)
    seen: list[bool] = []
    await chain.run(ctx, lambda context: seen.append(context["tagged"]))

    assert seen == [True]
    assert len(chain) == 1


@pytest.mark.anyio
async def test_handler_exception_propagates_through_chain() -> None:
    chain = MiddlewareChain()
    unwound: list[str] = []

    async def recorder(ctx: Any, next_fn: Any) -> None:
        try:
            await next_fn()
        finally:
            unwound.append("recorder")

    async def handler(ctx: Any) -> None:
        raise ValueError("bad")

    chain.use(recorder)
    with pytest.raises(ValueError, match="bad"):
        await chain.run(object(), handler)
    assert unwound == ["recorder"]
