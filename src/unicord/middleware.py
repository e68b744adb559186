"""Onion-style middleware.

Middleware run in registration order on the way in; code after ``await
next()`` runs in reverse order on the way out. A middleware that never calls
``next`` stops the chain, so neither later middleware nor the handler run.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Sequence, Union

NextFn = Callable[[], Awaitable[None]]
Middleware = Callable[[Any, NextFn], Union[None, Awaitable[None]]]
Handler = Callable[[Any], Union[None, Awaitable[None]]]


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class _Continuation:
    __slots__ = ("_run", "_index")

    def __init__(self, run: "_ChainRun", index: int) -> None:
        self._run = run
        self._index = index

    def __call__(self) -> Awaitable[None]:
        return self._run.advance(self._index)


class _ChainRun:
    """A single pass through the chain, tracked by an explicit cursor."""

    def __init__(
        self, middlewares: Sequence[Middleware], handler: Handler, context: Any
    ) -> None:
        self._middlewares = middlewares
        self._handler = handler
        self._context = context
        self._cursor = -1
        self.handled = False

    async def advance(self, index: int) -> None:
        # A second call to the same ``next`` is ignored.
        if index <= self._cursor:
            return
        self._cursor = index
        if index < len(self._middlewares):
            middleware = self._middlewares[index]
            await _maybe_await(
                middleware(self._context, _Continuation(self, index + 1))
            )
            return
        self.handled = True
        await _maybe_await(self._handler(self._context))


class MiddlewareChain:
    def __init__(self, middlewares: Sequence[Middleware] = ()) -> None:
        self._middlewares: list[Middleware] = list(middlewares)

    def use(self, middleware: Middleware) -> Middleware:
        self._middlewares.append(middleware)
        return middleware

    @property
    def middlewares(self) -> tuple[Middleware, ...]:
        return tuple(self._middlewares)

    def __len__(self) -> int:
        return len(self._middlewares)

    async def run(self, context: Any, handler: Handler) -> bool:
        """Drive ``context`` through the chain; True if ``handler`` ran."""
        run = _ChainRun(tuple(self._middlewares), handler, context)
        await run.advance(0)
        return run.handled
