from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from .logging_utils import log_event
from .registry import HandlerEntry
from .rest import RestClient

CHAT_INPUT_COMMAND_TYPE = 1


def build_command_definitions(
    entries: Iterable[HandlerEntry],
) -> list[dict[str, Any]]:
    """Turn registered slash handlers into bulk-overwrite payload entries."""
    definitions: list[dict[str, Any]] = []
    for entry in entries:
        definition: dict[str, Any] = {
            "name": entry.name,
            "type": CHAT_INPUT_COMMAND_TYPE,
            "description": entry.name,
        }
        definition.update(entry.options)
        definition["name"] = entry.name
        definitions.append(definition)
    return definitions


async def sync_commands(
    rest: RestClient,
    *,
    application_id: str,
    commands: Sequence[Mapping[str, Any]],
    scope: str,
    guild_ids: Sequence[str] = (),
    logger: logging.Logger,
) -> None:
    """Overwrite all commands for the application in one PUT per scope."""
    normalized_scope = scope.strip().lower()
    if normalized_scope == "global":
        updated = await rest.bulk_overwrite_application_commands(
            application_id, commands
        )
        log_event(
            logger,
            logging.INFO,
            "unicord.commands.sync.overwrite",
            scope="global",
            application_id=application_id,
            command_count=len(commands),
            updated_count=len(updated),
        )
        return

    if normalized_scope != "guild":
        raise ValueError("scope must be 'global' or 'guild'")

    normalized_guild_ids = tuple(
        sorted({guild_id.strip() for guild_id in guild_ids if guild_id.strip()})
    )
    if not normalized_guild_ids:
        raise ValueError("guild scope requires at least one guild_id")

    for guild_id in normalized_guild_ids:
        updated = await rest.bulk_overwrite_application_commands(
            application_id, commands, guild_id=guild_id
        )
        log_event(
            logger,
            logging.INFO,
            "unicord.commands.sync.overwrite",
            scope="guild",
            guild_id=guild_id,
            application_id=application_id,
            command_count=len(commands),
            updated_count=len(updated),
        )
