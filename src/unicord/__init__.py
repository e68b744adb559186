"""Asyncio Discord client runtime."""

from .bot import EVENT_READY, UnicordBot
from .builders import (
    EmbedBuilder,
    build_action_row,
    build_button,
    build_link_button,
    build_modal,
    build_select_option,
    build_string_select,
    build_text_input,
)
from .commands import build_command_definitions, sync_commands
from .config import BotConfig, CommandRegistration, load_bot_config
from .constants import (
    DISCORD_API_BASE_URL,
    DISCORD_GATEWAY_URL,
    INTENT_GUILD_MESSAGES,
    INTENT_GUILDS,
    INTENT_MESSAGE_CONTENT,
)
from .context import (
    ComponentContext,
    DispatchContext,
    InteractionContext,
    MessageContext,
    ModalContext,
)
from .errors import (
    APIError,
    ConfigError,
    GatewayError,
    HandlerError,
    RateLimitedError,
    RequestError,
    ServerError,
    TransportError,
    UnicordError,
)
from .events import ANY_EVENT, EventRegistry
from .gateway import (
    GatewayFrame,
    GatewaySession,
    SessionDescriptor,
    SessionState,
    build_heartbeat_payload,
    build_identify_payload,
    build_resume_payload,
    calculate_reconnect_backoff,
    parse_gateway_frame,
)
from .middleware import MiddlewareChain
from .pipeline import EVENT_COMMAND_NOT_FOUND, EVENT_ERROR, DispatchPipeline
from .ratelimit import RateLimiter, route_key
from .registry import HandlerEntry, HandlerRegistry
from .rest import FileData, RestClient, send_webhook
from .sharding import ShardCoordinator

__all__ = [
    "ANY_EVENT",
    "APIError",
    "BotConfig",
    "CommandRegistration",
    "ComponentContext",
    "ConfigError",
    "DISCORD_API_BASE_URL",
    "DISCORD_GATEWAY_URL",
    "DispatchContext",
    "DispatchPipeline",
    "EVENT_COMMAND_NOT_FOUND",
    "EVENT_ERROR",
    "EVENT_READY",
    "EmbedBuilder",
    "EventRegistry",
    "FileData",
    "GatewayError",
    "GatewayFrame",
    "GatewaySession",
    "HandlerEntry",
    "HandlerError",
    "HandlerRegistry",
    "INTENT_GUILDS",
    "INTENT_GUILD_MESSAGES",
    "INTENT_MESSAGE_CONTENT",
    "InteractionContext",
    "MessageContext",
    "MiddlewareChain",
    "ModalContext",
    "RateLimitedError",
    "RateLimiter",
    "RequestError",
    "RestClient",
    "ServerError",
    "SessionDescriptor",
    "SessionState",
    "ShardCoordinator",
    "TransportError",
    "UnicordBot",
    "UnicordError",
    "build_action_row",
    "build_button",
    "build_command_definitions",
    "build_heartbeat_payload",
    "build_identify_payload",
    "build_link_button",
    "build_modal",
    "build_resume_payload",
    "build_select_option",
    "build_string_select",
    "build_text_input",
    "calculate_reconnect_backoff",
    "load_bot_config",
    "parse_gateway_frame",
    "route_key",
    "send_webhook",
    "sync_commands",
]
