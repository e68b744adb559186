from __future__ import annotations

from typing import Any, Optional


def _as_id(value: object) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def extract_interaction_type(interaction_payload: dict[str, Any]) -> Optional[int]:
    interaction_type = interaction_payload.get("type")
    if isinstance(interaction_type, int) and not isinstance(interaction_type, bool):
        return interaction_type
    return None


def extract_command_path_and_options(
    interaction_payload: dict[str, Any],
) -> tuple[tuple[str, ...], dict[str, Any]]:
    data = interaction_payload.get("data")
    if not isinstance(data, dict):
        return (), {}

    root_name = data.get("name")
    if not isinstance(root_name, str) or not root_name:
        return (), {}

    path: list[str] = [root_name]
    options = data.get("options")
    current_options = options if isinstance(options, list) else []

    # Subcommand (1) and subcommand group (2) options nest the real options.
    while current_options:
        first = current_options[0]
        if not isinstance(first, dict):
            break
        option_type = first.get("type")
        if option_type not in (1, 2):
            break
        name = first.get("name")
        if isinstance(name, str) and name:
            path.append(name)
        nested = first.get("options")
        current_options = nested if isinstance(nested, list) else []

    parsed_options: dict[str, Any] = {}
    for item in current_options:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name:
            continue
        parsed_options[name] = item.get("value")

    return tuple(path), parsed_options


def extract_interaction_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("id"))


def extract_interaction_token(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("token"))


def extract_application_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("application_id"))


def extract_channel_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    channel_id = _as_id(interaction_payload.get("channel_id"))
    if channel_id:
        return channel_id
    channel = interaction_payload.get("channel")
    if isinstance(channel, dict):
        return _as_id(channel.get("id"))
    return None


def extract_guild_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("guild_id"))


def extract_user(interaction_payload: dict[str, Any]) -> Optional[dict[str, Any]]:
    member = interaction_payload.get("member")
    if isinstance(member, dict):
        member_user = member.get("user")
        if isinstance(member_user, dict):
            return member_user
    user = interaction_payload.get("user")
    if isinstance(user, dict):
        return user
    return None


def extract_user_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    user = extract_user(interaction_payload)
    if user is None:
        return None
    return _as_id(user.get("id"))


def is_component_interaction(interaction_payload: dict[str, Any]) -> bool:
    return extract_interaction_type(interaction_payload) == 3


def extract_component_custom_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    data = interaction_payload.get("data")
    if not isinstance(data, dict):
        return None
    return _as_id(data.get("custom_id"))


def extract_component_type(interaction_payload: dict[str, Any]) -> Optional[int]:
    data = interaction_payload.get("data")
    if not isinstance(data, dict):
        return None
    component_type = data.get("component_type")
    return component_type if isinstance(component_type, int) else None


def extract_component_values(interaction_payload: dict[str, Any]) -> list[str]:
    data = interaction_payload.get("data")
    if not isinstance(data, dict):
        return []
    values = data.get("values")
    if not isinstance(values, list):
        return []
    return [str(v) for v in values if isinstance(v, (str, int, float))]


def extract_modal_fields(interaction_payload: dict[str, Any]) -> dict[str, str]:
    """Flatten modal submit action rows into ``{custom_id: value}``."""
    data = interaction_payload.get("data")
    if not isinstance(data, dict):
        return {}
    rows = data.get("components")
    if not isinstance(rows, list):
        return {}
    fields: dict[str, str] = {}
    for row in rows:
        if not isinstance(row, dict):
            continue
        components = row.get("components")
        if not isinstance(components, list):
            continue
        for component in components:
            if not isinstance(component, dict):
                continue
            custom_id = _as_id(component.get("custom_id"))
            value = component.get("value")
            if custom_id and isinstance(value, str):
                fields[custom_id] = value
    return fields
