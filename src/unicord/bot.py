from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Iterable, Optional, TypeVar

from .commands import build_command_definitions, sync_commands
from .config import DEFAULT_INTENTS, BotConfig, CommandRegistration
from .constants import DISCORD_API_BASE_URL
from .errors import ConfigError
from .events import ANY_EVENT, EventHandler, EventRegistry
from .gateway import READY_EVENT, GatewaySession
from .logging_utils import log_event
from .middleware import Handler, Middleware
from .pipeline import INTERACTION_CREATE, MESSAGE_CREATE, DispatchPipeline
from .rest import FileData, RestClient
from .sharding import ShardCoordinator

EVENT_READY = "ready"

F = TypeVar("F", bound=Callable[..., Any])


def _register_or_decorate(
    register: Callable[[Any], Any], handler: Optional[F]
) -> Any:
    if handler is not None:
        register(handler)
        return handler

    def decorator(fn: F) -> F:
        register(fn)
        return fn

    return decorator


class UnicordBot:
    """Wires gateway sessions into the dispatch pipeline.

    Handlers, middleware and notification listeners are registered here;
    ``start()`` opens one gateway session (or one per shard) and every
    ``MESSAGE_CREATE``/``INTERACTION_CREATE`` is dispatched in its own task.
    """

    def __init__(
        self,
        config: Optional[BotConfig] = None,
        *,
        token: Optional[str] = None,
        intents: int = DEFAULT_INTENTS,
        prefix: Optional[str] = None,
        mention_prefix: bool = False,
        handle_all_messages: bool = False,
        shard_count: int = 1,
        auto_sync_commands: bool = False,
        application_id: Optional[str] = None,
        gateway_url: Optional[str] = None,
        api_base_url: str = DISCORD_API_BASE_URL,
        rest_client: Optional[RestClient] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if config is None:
            config = BotConfig(
                bot_token=token,
                application_id=application_id,
                intents=intents,
                prefix=prefix,
                mention_prefix=mention_prefix,
                handle_all_messages=handle_all_messages,
                shard_count=shard_count,
                gateway_url=gateway_url,
                api_base_url=api_base_url,
                auto_sync_commands=auto_sync_commands,
                command_registration=CommandRegistration(),
            )
        if config.shard_count < 1:
            raise ConfigError("shard_count must be >= 1")
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        self.events = EventRegistry(logger=self._logger)
        self._rest = (
            rest_client
            if rest_client is not None
            else RestClient(bot_token=config.bot_token, base_url=config.api_base_url)
        )
        self._owns_rest = rest_client is None
        self.pipeline = DispatchPipeline(
            rest=self._rest,
            notifications=self.events,
            prefix=config.prefix,
            mention_prefix=config.mention_prefix,
            handle_all_messages=config.handle_all_messages,
            logger=self._logger,
        )
        self._application_id = config.application_id
        self._user: Optional[dict[str, Any]] = None
        self._session: Optional[GatewaySession] = None
        self._coordinator: Optional[ShardCoordinator] = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> BotConfig:
        return self._config

    @property
    def rest(self) -> RestClient:
        return self._rest

    @property
    def user(self) -> Optional[dict[str, Any]]:
        return self._user

    @property
    def application_id(self) -> Optional[str]:
        return self._application_id

    @property
    def sessions(self) -> tuple[GatewaySession, ...]:
        if self._coordinator is not None:
            return self._coordinator.sessions
        if self._session is not None:
            return (self._session,)
        return ()

    def command(
        self,
        name: str,
        handler: Optional[Handler] = None,
        *,
        aliases: Iterable[str] = (),
    ) -> Any:
        aliases = tuple(aliases)
        return _register_or_decorate(
            lambda fn: self.pipeline.commands.register(name, fn, aliases=aliases),
            handler,
        )

    def slash(
        self,
        name: str,
        options: Optional[dict[str, Any]] = None,
        handler: Optional[Handler] = None,
    ) -> Any:
        return _register_or_decorate(
            lambda fn: self.pipeline.slash_commands.register(
                name, fn, options=options
            ),
            handler,
        )

    def component(self, custom_id: str, handler: Optional[Handler] = None) -> Any:
        return _register_or_decorate(
            lambda fn: self.pipeline.components.register(custom_id, fn), handler
        )

    button = component
    select_menu = component

    def modal(self, custom_id: str, handler: Optional[Handler] = None) -> Any:
        return _register_or_decorate(
            lambda fn: self.pipeline.modals.register(custom_id, fn), handler
        )

    def middleware(self, fn: Middleware) -> Middleware:
        return self.pipeline.middleware.use(fn)

    def on_message(self, handler: Handler) -> Handler:
        return self.pipeline.add_message_handler(handler)

    def on_mention(self, handler: Handler) -> Handler:
        return self.pipeline.add_mention_handler(handler)

    def on(self, event: str, handler: Optional[EventHandler] = None) -> Any:
        return _register_or_decorate(lambda fn: self.events.on(event, fn), handler)

    async def start(self) -> None:
        token = self._config.require_token()
        if self.sessions:
            raise RuntimeError("bot already started")
        if self._config.shard_count > 1:
            coordinator = ShardCoordinator(
                bot_token=token,
                intents=self._config.intents,
                gateway_url=self._config.gateway_url,
                logger=self._logger,
            )
            coordinator.subscribe(ANY_EVENT, self._on_gateway_event)
            self._coordinator = coordinator
            coordinator.spawn(self._config.shard_count)
        else:
            session = GatewaySession(
                bot_token=token,
                intents=self._config.intents,
                gateway_url=self._config.gateway_url,
                logger=self._logger,
            )
            session.events.on(ANY_EVENT, self._on_gateway_event)
            self._session = session
            session.connect()
        log_event(
            self._logger,
            logging.INFO,
            "unicord.bot.started",
            shard_count=self._config.shard_count,
        )
        if self._config.auto_sync_commands:
            registration = self._config.command_registration
            if registration.scope == "guild":
                for guild_id in registration.guild_ids:
                    await self.sync_commands(scope="guild", guild_id=guild_id)
            else:
                await self.sync_commands(scope="global")

    async def run_forever(self) -> None:
        try:
            await self.start()
            if self._coordinator is not None:
                await self._coordinator.wait()
            elif self._session is not None:
                await self._session.wait()
        finally:
            await self.close()

    async def close(self) -> None:
        if self._coordinator is not None:
            await self._coordinator.stop()
        if self._session is not None:
            await self._session.stop()
        await self.wait_idle()
        if self._owns_rest:
            await self._rest.close()

    async def wait_idle(self) -> None:
        """Wait for every in-flight dispatch task to finish."""
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)

    async def sync_commands(
        self, *, scope: str = "global", guild_id: Optional[str] = None
    ) -> None:
        application_id = await self._resolve_application_id()
        definitions = build_command_definitions(self.pipeline.slash_commands.entries())
        registered = {definition["name"] for definition in definitions}
        # Commands declared in config without a handler still get registered.
        definitions.extend(
            dict(command)
            for command in self._config.commands
            if command["name"] not in registered
        )
        await sync_commands(
            self._rest,
            application_id=application_id,
            commands=definitions,
            scope=scope,
            guild_ids=(guild_id,) if guild_id else (),
            logger=self._logger,
        )

    async def upload_file(
        self,
        channel_id: str,
        file: FileData,
        content: Optional[str] = None,
    ) -> dict[str, Any]:
        payload = {"content": content} if content else None
        return await self._rest.create_message_with_files(channel_id, [file], payload)

    async def _resolve_application_id(self) -> str:
        if self._application_id:
            return self._application_id
        application = await self._rest.get_current_application()
        application_id = application.get("id")
        if not application_id:
            raise ConfigError("unable to determine the application id")
        self._application_id = str(application_id)
        return self._application_id

    async def _on_gateway_event(self, event_name: str, payload: Any) -> None:
        if event_name == READY_EVENT and isinstance(payload, dict):
            self._capture_identity(payload)
        self._spawn(self._forward(event_name, payload))

    def _capture_identity(self, ready: dict[str, Any]) -> None:
        user = ready.get("user")
        if isinstance(user, dict):
            self._user = user
            self.pipeline.set_bot_user_id(user.get("id"))
        application = ready.get("application")
        if isinstance(application, dict) and application.get("id"):
            self._application_id = self._application_id or str(application["id"])

    async def _forward(self, event_name: str, payload: Any) -> None:
        if event_name in (MESSAGE_CREATE, INTERACTION_CREATE):
            await self.pipeline.dispatch(event_name, payload)
        await self.events.emit(event_name, payload)
        if event_name == READY_EVENT:
            await self.events.emit(EVENT_READY, payload)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def __aenter__(self) -> "UnicordBot":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()
