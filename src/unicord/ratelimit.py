"""Per-route request serialization.

Each route key (``"POST /channels/123/messages"``) owns a FIFO queue drained by
a single worker task, so at most one operation per route is in flight. Distinct
routes drain independently with no ordering between them.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Optional, TypeVar

from .logging_utils import log_event

T = TypeVar("T")

Operation = Callable[[], Awaitable[Any]]


@dataclass
class Route:
    key: str
    queue: Deque[tuple[Operation, "asyncio.Future[Any]"]] = field(
        default_factory=deque
    )
    running: bool = False
    worker: Optional["asyncio.Task[None]"] = None


def route_key(method: str, path: str) -> str:
    return f"{method.upper()} {path}"


class RateLimiter:
    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        # Routes are never evicted.
        self._routes: dict[str, Route] = {}

    @property
    def routes(self) -> dict[str, Route]:
        return dict(self._routes)

    def route(self, key: str) -> Route:
        route = self._routes.get(key)
        if route is None:
            route = Route(key=key)
            self._routes[key] = route
        return route

    async def enqueue(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        route = self.route(key)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        route.queue.append((operation, future))
        if not route.running:
            route.running = True
            route.worker = asyncio.create_task(self._drain(route))
        else:
            log_event(
                self._logger,
                logging.DEBUG,
                "unicord.ratelimit.queued",
                route=key,
                pending=len(route.queue),
            )
        result: T = await future
        return result

    async def _drain(self, route: Route) -> None:
        try:
            while route.queue:
                operation, future = route.queue.popleft()
                if future.done():
                    continue
                try:
                    result = await operation()
                except asyncio.CancelledError:
                    if not future.done():
                        future.cancel()
                    raise
                except Exception as exc:
                    if not future.done():
                        future.set_exception(exc)
                else:
                    if not future.done():
                        future.set_result(result)
        finally:
            route.running = False
            route.worker = None
            while route.queue:
                _operation, pending = route.queue.popleft()
                if not pending.done():
                    pending.cancel()
