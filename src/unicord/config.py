from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .constants import (
    DISCORD_API_BASE_URL,
    INTENT_GUILD_MESSAGES,
    INTENT_GUILDS,
    INTENT_MESSAGE_CONTENT,
)
from .errors import ConfigError

DEFAULT_BOT_TOKEN_ENV = "UNICORD_BOT_TOKEN"
DEFAULT_APP_ID_ENV = "UNICORD_APP_ID"
DEFAULT_COMMAND_SCOPE = "global"
DEFAULT_INTENTS = INTENT_GUILDS | INTENT_GUILD_MESSAGES | INTENT_MESSAGE_CONTENT
CONFIG_SECTION = "unicord"


@dataclass(frozen=True)
class CommandRegistration:
    scope: str = DEFAULT_COMMAND_SCOPE
    guild_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class BotConfig:
    bot_token: Optional[str]
    application_id: Optional[str] = None
    bot_token_env: str = DEFAULT_BOT_TOKEN_ENV
    app_id_env: str = DEFAULT_APP_ID_ENV
    intents: int = DEFAULT_INTENTS
    prefix: Optional[str] = None
    mention_prefix: bool = False
    handle_all_messages: bool = False
    shard_count: int = 1
    gateway_url: Optional[str] = None
    api_base_url: str = DISCORD_API_BASE_URL
    auto_sync_commands: bool = False
    command_registration: CommandRegistration = CommandRegistration()
    commands: tuple[dict[str, Any], ...] = ()
    log_file: Optional[Path] = None

    @classmethod
    def from_raw(
        cls,
        raw: Mapping[str, Any],
        *,
        env: Optional[Mapping[str, str]] = None,
        root: Optional[Path] = None,
    ) -> "BotConfig":
        cfg: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
        environ = os.environ if env is None else env

        bot_token_env = str(cfg.get("bot_token_env", DEFAULT_BOT_TOKEN_ENV)).strip()
        app_id_env = str(cfg.get("app_id_env", DEFAULT_APP_ID_ENV)).strip()
        if not bot_token_env:
            raise ConfigError("unicord.bot_token_env must be non-empty")
        if not app_id_env:
            raise ConfigError("unicord.app_id_env must be non-empty")

        intents = cfg.get("intents", DEFAULT_INTENTS)
        if not isinstance(intents, int) or isinstance(intents, bool):
            raise ConfigError("unicord.intents must be an integer")
        if intents < 0:
            raise ConfigError("unicord.intents must be >= 0")

        prefix = cfg.get("prefix")
        if prefix is not None and (not isinstance(prefix, str) or not prefix):
            raise ConfigError("unicord.prefix must be a non-empty string")

        shard_count = _parse_positive_int(
            cfg.get("shard_count"), default=1, key="unicord.shard_count"
        )

        registration_raw = cfg.get("command_registration")
        registration_cfg = (
            registration_raw if isinstance(registration_raw, Mapping) else {}
        )
        scope = str(registration_cfg.get("scope", DEFAULT_COMMAND_SCOPE)).strip().lower()
        if scope not in {"global", "guild"}:
            raise ConfigError(
                "unicord.command_registration.scope must be 'global' or 'guild'"
            )
        guild_ids = tuple(_parse_string_ids(registration_cfg.get("guild_ids")))
        if scope == "guild" and not guild_ids:
            raise ConfigError(
                "unicord.command_registration.guild_ids is required for guild scope"
            )

        commands_raw = cfg.get("commands", [])
        if not isinstance(commands_raw, list):
            raise ConfigError("unicord.commands must be a list")
        commands: list[dict[str, Any]] = []
        for item in commands_raw:
            if not isinstance(item, Mapping) or not isinstance(item.get("name"), str):
                raise ConfigError("unicord.commands entries need a string 'name'")
            commands.append(dict(item))

        log_file_value = cfg.get("log_file")
        log_file: Optional[Path] = None
        if log_file_value is not None:
            if not isinstance(log_file_value, str) or not log_file_value.strip():
                raise ConfigError("unicord.log_file must be a string path")
            log_file = Path(log_file_value)
            if root is not None and not log_file.is_absolute():
                log_file = (root / log_file).resolve()

        return cls(
            bot_token=environ.get(bot_token_env) or _optional_str(cfg.get("token")),
            application_id=environ.get(app_id_env)
            or _optional_str(cfg.get("application_id")),
            bot_token_env=bot_token_env,
            app_id_env=app_id_env,
            intents=intents,
            prefix=prefix,
            mention_prefix=_parse_bool(
                cfg.get("mention_prefix"), default=False, key="unicord.mention_prefix"
            ),
            handle_all_messages=_parse_bool(
                cfg.get("handle_all_messages"),
                default=False,
                key="unicord.handle_all_messages",
            ),
            shard_count=shard_count,
            gateway_url=_optional_str(cfg.get("gateway_url")),
            api_base_url=_optional_str(cfg.get("api_base_url")) or DISCORD_API_BASE_URL,
            auto_sync_commands=_parse_bool(
                cfg.get("auto_sync_commands"),
                default=False,
                key="unicord.auto_sync_commands",
            ),
            command_registration=CommandRegistration(scope=scope, guild_ids=guild_ids),
            commands=tuple(commands),
            log_file=log_file,
        )

    def require_token(self) -> str:
        if not self.bot_token:
            raise ConfigError(f"missing bot token env '{self.bot_token_env}'")
        return self.bot_token


def load_bot_config(
    path: Path, *, env: Optional[Mapping[str, str]] = None
) -> BotConfig:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"unable to read config {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be a mapping")
    section = data.get(CONFIG_SECTION, data)
    if not isinstance(section, dict):
        raise ConfigError(f"config section '{CONFIG_SECTION}' must be a mapping")
    return BotConfig.from_raw(section, env=env, root=path.parent)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def _parse_string_ids(value: Any) -> list[str]:
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple, set, frozenset)) else [value]
    parsed: list[str] = []
    for item in items:
        token = str(item).strip()
        if token:
            parsed.append(token)
    return parsed


def _parse_positive_int(value: Any, *, default: int, key: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer") from exc
    if parsed <= 0:
        raise ConfigError(f"{key} must be > 0")
    return parsed


def _parse_bool(value: Any, *, default: bool, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{key} must be a boolean")
