from __future__ import annotations

import inspect
import logging
from typing import Any, Optional

from .arguments import ParsedCommand, mentions_user, parse_command
from .constants import (
    INTERACTION_TYPE_APPLICATION_COMMAND,
    INTERACTION_TYPE_MESSAGE_COMPONENT,
    INTERACTION_TYPE_MODAL_SUBMIT,
)
from .context import (
    ComponentContext,
    DispatchContext,
    InteractionContext,
    MessageContext,
    ModalContext,
)
from .errors import HandlerError
from .events import EventRegistry
from .interactions import extract_interaction_id, extract_interaction_type
from .logging_utils import log_event
from .middleware import Handler, MiddlewareChain
from .registry import HandlerEntry, HandlerRegistry
from .rest import RestClient

MESSAGE_CREATE = "MESSAGE_CREATE"
INTERACTION_CREATE = "INTERACTION_CREATE"
EVENT_ERROR = "error"
EVENT_COMMAND_NOT_FOUND = "command_not_found"


class DispatchPipeline:
    """Routes one gateway event to its handler through the middleware chain.

    Handler and middleware failures never leave ``dispatch``; they are logged
    and re-emitted on ``notifications`` as ``"error"`` with a
    ``HandlerError`` and the context.
    """

    def __init__(
        self,
        *,
        rest: RestClient,
        notifications: Optional[EventRegistry] = None,
        prefix: Optional[str] = None,
        mention_prefix: bool = False,
        handle_all_messages: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._rest = rest
        self._logger = logger or logging.getLogger(__name__)
        self.notifications = notifications or EventRegistry(logger=self._logger)
        self.prefix = prefix
        self.mention_prefix = mention_prefix
        self.handle_all_messages = handle_all_messages
        self.commands = HandlerRegistry(case_insensitive=True)
        self.slash_commands = HandlerRegistry()
        self.components = HandlerRegistry()
        self.modals = HandlerRegistry()
        self.middleware = MiddlewareChain()
        self._message_handlers: list[Handler] = []
        self._mention_handlers: list[Handler] = []
        self._bot_user_id: Optional[str] = None

    @property
    def bot_user_id(self) -> Optional[str]:
        return self._bot_user_id

    def set_bot_user_id(self, user_id: Optional[str]) -> None:
        self._bot_user_id = str(user_id) if user_id else None

    def add_message_handler(self, handler: Handler) -> Handler:
        self._message_handlers.append(handler)
        return handler

    def add_mention_handler(self, handler: Handler) -> Handler:
        self._mention_handlers.append(handler)
        return handler

    async def dispatch(self, event_name: str, payload: Any) -> Optional[DispatchContext]:
        if not isinstance(payload, dict):
            return None
        if event_name == MESSAGE_CREATE:
            return await self.dispatch_message(payload)
        if event_name == INTERACTION_CREATE:
            return await self.dispatch_interaction(payload)
        return None

    async def dispatch_message(self, message: dict[str, Any]) -> Optional[MessageContext]:
        author = message.get("author")
        if isinstance(author, dict) and author.get("bot"):
            return None

        content = message.get("content")
        parsed: Optional[ParsedCommand] = None
        if isinstance(content, str) and (self.prefix or self.mention_prefix):
            parsed = parse_command(
                content,
                prefix=self.prefix,
                bot_user_id=self._bot_user_id,
                mention_prefix=self.mention_prefix,
                mentions=message.get("mentions") or (),
            )
        context = MessageContext.from_message(self._rest, message, parsed=parsed)

        # Mention handlers deliberately skip the middleware chain.
        if self._mention_handlers and mentions_user(message, self._bot_user_id):
            for handler in tuple(self._mention_handlers):
                await self._guarded(context, handler)

        if self.handle_all_messages and self._message_handlers:
            for handler in tuple(self._message_handlers):
                await self._run_chain(context, handler)
            return context

        if parsed is None:
            return context
        entry = self.commands.resolve(parsed.name)
        if entry is None:
            log_event(
                self._logger,
                logging.DEBUG,
                "unicord.dispatch.command_not_found",
                command=parsed.name,
                channel_id=context.channel_id,
            )
            await self.notifications.emit(EVENT_COMMAND_NOT_FOUND, context, parsed.name)
            return context
        await self._run_chain(context, entry.handler)
        return context

    async def dispatch_interaction(
        self, interaction: dict[str, Any]
    ) -> Optional[DispatchContext]:
        interaction_type = extract_interaction_type(interaction)
        context: DispatchContext
        entry: Optional[HandlerEntry]
        try:
            if interaction_type == INTERACTION_TYPE_APPLICATION_COMMAND:
                command_context = InteractionContext.from_interaction(
                    self._rest, interaction
                )
                context = command_context
                entry = self.slash_commands.resolve(command_context.command_name)
                route = command_context.command_name
            elif interaction_type == INTERACTION_TYPE_MESSAGE_COMPONENT:
                component_context = ComponentContext.from_interaction(
                    self._rest, interaction
                )
                context = component_context
                entry = self.components.resolve(component_context.custom_id)
                route = component_context.custom_id
            elif interaction_type == INTERACTION_TYPE_MODAL_SUBMIT:
                modal_context = ModalContext.from_interaction(self._rest, interaction)
                context = modal_context
                entry = self.modals.resolve(modal_context.custom_id)
                route = modal_context.custom_id
            else:
                log_event(
                    self._logger,
                    logging.DEBUG,
                    "unicord.dispatch.interaction_ignored",
                    interaction_type=interaction_type,
                )
                return None
        except ValueError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "unicord.dispatch.interaction_invalid",
                interaction_id=extract_interaction_id(interaction),
                exc=exc,
            )
            return None

        if entry is None:
            log_event(
                self._logger,
                logging.DEBUG,
                "unicord.dispatch.interaction_unmatched",
                kind=context.kind,
                route=route,
            )
            return context
        await self._run_chain(context, entry.handler)
        return context

    async def _run_chain(self, context: DispatchContext, handler: Handler) -> None:
        try:
            await self.middleware.run(context, handler)
        except Exception as exc:
            await self._report_error(exc, context)

    async def _guarded(self, context: DispatchContext, handler: Handler) -> None:
        try:
            result = handler(context)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            await self._report_error(exc, context)

    async def _report_error(self, exc: Exception, context: DispatchContext) -> None:
        log_event(
            self._logger,
            logging.ERROR,
            "unicord.dispatch.handler_failed",
            kind=context.kind,
            channel_id=context.channel_id,
            user_id=context.user_id,
            exc=exc,
        )
        await self.notifications.emit(EVENT_ERROR, HandlerError(exc, context), context)
