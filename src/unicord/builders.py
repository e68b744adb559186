"""Message component and embed constructors.

Every function returns a fresh dict; nothing is cached or shared between
calls.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

BUTTON_STYLE_PRIMARY = 1
BUTTON_STYLE_SECONDARY = 2
BUTTON_STYLE_SUCCESS = 3
BUTTON_STYLE_DANGER = 4
BUTTON_STYLE_LINK = 5
TEXT_INPUT_STYLE_SHORT = 1
TEXT_INPUT_STYLE_PARAGRAPH = 2
SELECT_OPTION_MAX_OPTIONS = 25
EMBED_MAX_FIELDS = 25


def build_action_row(*components: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": 1,
        "components": list(components),
    }


def build_button(
    label: str,
    custom_id: str,
    *,
    style: int = BUTTON_STYLE_PRIMARY,
    emoji: Optional[str] = None,
    disabled: bool = False,
) -> dict[str, Any]:
    button: dict[str, Any] = {
        "type": 2,
        "style": style,
        "label": label,
        "custom_id": custom_id,
    }
    if disabled:
        button["disabled"] = True
    if emoji:
        button["emoji"] = {"name": emoji}
    return button


def build_link_button(
    label: str, url: str, *, emoji: Optional[str] = None
) -> dict[str, Any]:
    button: dict[str, Any] = {
        "type": 2,
        "style": BUTTON_STYLE_LINK,
        "label": label,
        "url": url,
    }
    if emoji:
        button["emoji"] = {"name": emoji}
    return button


def build_select_option(
    label: str,
    value: str,
    *,
    description: Optional[str] = None,
    emoji: Optional[str] = None,
    default: bool = False,
) -> dict[str, Any]:
    option: dict[str, Any] = {
        "label": label[:100],
        "value": value[:100],
    }
    if default:
        option["default"] = True
    if description:
        option["description"] = description[:100]
    if emoji:
        option["emoji"] = {"name": emoji}
    return option


def build_string_select(
    custom_id: str,
    options: list[dict[str, Any]],
    *,
    placeholder: Optional[str] = None,
    min_values: int = 1,
    max_values: int = 1,
    disabled: bool = False,
) -> dict[str, Any]:
    select: dict[str, Any] = {
        "type": 3,
        "custom_id": custom_id,
        "options": [dict(option) for option in options[:SELECT_OPTION_MAX_OPTIONS]],
        "min_values": min_values,
        "max_values": min(max_values, SELECT_OPTION_MAX_OPTIONS),
    }
    if disabled:
        select["disabled"] = True
    if placeholder:
        select["placeholder"] = placeholder[:100]
    return select


def build_text_input(
    custom_id: str,
    label: str,
    *,
    style: int = TEXT_INPUT_STYLE_SHORT,
    required: bool = True,
    placeholder: Optional[str] = None,
    value: Optional[str] = None,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
) -> dict[str, Any]:
    text_input: dict[str, Any] = {
        "type": 4,
        "custom_id": custom_id,
        "label": label[:45],
        "style": style,
        "required": required,
    }
    if placeholder:
        text_input["placeholder"] = placeholder[:100]
    if value is not None:
        text_input["value"] = value
    if min_length is not None:
        text_input["min_length"] = min_length
    if max_length is not None:
        text_input["max_length"] = max_length
    return text_input


def build_modal(
    custom_id: str, title: str, *text_inputs: dict[str, Any]
) -> dict[str, Any]:
    """Each text input goes in its own action row."""
    return {
        "custom_id": custom_id,
        "title": title[:45],
        "components": [build_action_row(text_input) for text_input in text_inputs],
    }


class EmbedBuilder:
    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._fields: list[dict[str, Any]] = []

    def set_title(self, title: str) -> "EmbedBuilder":
        self._data["title"] = title
        return self

    def set_description(self, description: str) -> "EmbedBuilder":
        self._data["description"] = description
        return self

    def set_url(self, url: str) -> "EmbedBuilder":
        self._data["url"] = url
        return self

    def set_color(self, color: int) -> "EmbedBuilder":
        self._data["color"] = color
        return self

    def set_timestamp(self, timestamp: Optional[datetime] = None) -> "EmbedBuilder":
        moment = timestamp or datetime.now(timezone.utc)
        self._data["timestamp"] = moment.isoformat()
        return self

    def set_footer(self, text: str, *, icon_url: Optional[str] = None) -> "EmbedBuilder":
        footer: dict[str, Any] = {"text": text}
        if icon_url:
            footer["icon_url"] = icon_url
        self._data["footer"] = footer
        return self

    def set_image(self, url: str) -> "EmbedBuilder":
        self._data["image"] = {"url": url}
        return self

    def set_thumbnail(self, url: str) -> "EmbedBuilder":
        self._data["thumbnail"] = {"url": url}
        return self

    def set_author(
        self,
        name: str,
        *,
        url: Optional[str] = None,
        icon_url: Optional[str] = None,
    ) -> "EmbedBuilder":
        author: dict[str, Any] = {"name": name}
        if url:
            author["url"] = url
        if icon_url:
            author["icon_url"] = icon_url
        self._data["author"] = author
        return self

    def add_field(self, name: str, value: str, inline: bool = False) -> "EmbedBuilder":
        if len(self._fields) >= EMBED_MAX_FIELDS:
            raise ValueError(f"embeds allow at most {EMBED_MAX_FIELDS} fields")
        self._fields.append({"name": name, "value": value, "inline": inline})
        return self

    def to_dict(self) -> dict[str, Any]:
        data = {
            key: dict(value) if isinstance(value, dict) else value
            for key, value in self._data.items()
        }
        if self._fields:
            data["fields"] = [dict(item) for item in self._fields]
        return data
