"""Instance-scoped event subscriptions.

Each gateway session, shard coordinator and bot owns its own registry; nothing
is shared at module level.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from .logging_utils import log_event

EventHandler = Callable[..., Union[None, Awaitable[None]]]

# Subscribers under this name receive every event as ``(name, *args)``.
ANY_EVENT = "*"


class EventRegistry:
    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: str, handler: EventHandler) -> EventHandler:
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            self._handlers.pop(event, None)

    def handlers(self, event: str) -> tuple[EventHandler, ...]:
        return tuple(self._handlers.get(event, ()))

    def has_handlers(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    async def emit(self, event: str, *args: Any) -> None:
        """Call every handler for ``event`` in subscription order, then the
        ``ANY_EVENT`` handlers.

        A failing handler is logged and does not stop the remaining handlers.
        """
        for handler in self.handlers(event):
            await self._call(event, handler, args)
        if event != ANY_EVENT:
            for handler in self.handlers(ANY_EVENT):
                await self._call(event, handler, (event, *args))

    async def _call(
        self, event: str, handler: EventHandler, args: tuple[Any, ...]
    ) -> None:
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            log_event(
                self._logger,
                logging.ERROR,
                "unicord.events.handler_failed",
                event_name=event,
                handler=getattr(handler, "__qualname__", repr(handler)),
                exc=exc,
            )
