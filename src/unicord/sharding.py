from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .events import EventHandler
from .gateway import GatewaySession
from .logging_utils import log_event


class ShardCoordinator:
    """Owns the in-process gateway sessions for a sharded bot.

    Every shard connects as soon as it is spawned; identify calls are not
    staggered.
    """

    def __init__(
        self,
        *,
        bot_token: str,
        intents: int,
        gateway_url: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._bot_token = bot_token
        self._intents = intents
        self._gateway_url = gateway_url
        self._logger = logger or logging.getLogger(__name__)
        self._sessions: list[GatewaySession] = []
        self._subscriptions: list[tuple[str, EventHandler]] = []

    @property
    def sessions(self) -> tuple[GatewaySession, ...]:
        return tuple(self._sessions)

    def spawn(self, count: int) -> tuple[GatewaySession, ...]:
        if count <= 0:
            raise ValueError("shard count must be >= 1")
        if self._sessions:
            raise RuntimeError("shards already spawned")
        for shard_id in range(count):
            session = GatewaySession(
                bot_token=self._bot_token,
                intents=self._intents,
                shard_id=shard_id,
                shard_count=count,
                gateway_url=self._gateway_url,
                logger=self._logger,
            )
            for event, handler in self._subscriptions:
                session.events.on(event, handler)
            self._sessions.append(session)
            session.connect()
        log_event(
            self._logger,
            logging.INFO,
            "unicord.shards.spawned",
            shard_count=count,
        )
        return self.sessions

    def subscribe(self, event: str, handler: EventHandler) -> None:
        """Bind ``handler`` on every current and future shard."""
        self._subscriptions.append((event, handler))
        for session in self._sessions:
            session.events.on(event, handler)

    async def stop(self) -> None:
        await asyncio.gather(
            *(session.stop() for session in self._sessions), return_exceptions=True
        )

    async def wait(self) -> None:
        await asyncio.gather(*(session.wait() for session in self._sessions))
