"""Per-event contexts handed to handlers and middleware.

A context is built once per dispatched event. Its reply-style operations use
only the identifiers captured at construction (channel and message ids, or
interaction id and token), so a context should not be kept past the lifetime
of the event that produced it. Expiry is not checked locally.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Optional, Union

from .arguments import ParsedCommand
from .constants import (
    MESSAGE_FLAG_EPHEMERAL,
    RESPONSE_CHANNEL_MESSAGE,
    RESPONSE_DEFERRED_CHANNEL_MESSAGE,
    RESPONSE_DEFERRED_UPDATE_MESSAGE,
    RESPONSE_MODAL,
    RESPONSE_UPDATE_MESSAGE,
)
from .interactions import (
    extract_application_id,
    extract_channel_id,
    extract_command_path_and_options,
    extract_component_custom_id,
    extract_component_type,
    extract_component_values,
    extract_guild_id,
    extract_interaction_id,
    extract_interaction_token,
    extract_modal_fields,
    extract_user,
)
from .rest import RestClient

ReplyContent = Union[str, Mapping[str, Any]]


def build_message_payload(
    content: ReplyContent, *, ephemeral: bool = False
) -> dict[str, Any]:
    payload: dict[str, Any] = (
        {"content": content} if isinstance(content, str) else dict(content)
    )
    if ephemeral:
        payload["flags"] = int(payload.get("flags") or 0) | MESSAGE_FLAG_EPHEMERAL
    return payload


def _as_id(value: object) -> Optional[str]:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


@dataclass(frozen=True, kw_only=True)
class DispatchContext(ABC):
    """Shared shape of every context: actor, location and ``reply``."""

    kind: ClassVar[str] = "base"

    rest: RestClient
    user: Optional[dict[str, Any]]
    member: Optional[dict[str, Any]]
    channel_id: Optional[str]
    guild_id: Optional[str]
    # Scratch space for middleware; never shared between events.
    state: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        if self.user is None:
            return None
        return _as_id(self.user.get("id"))

    @abstractmethod
    async def reply(self, content: ReplyContent) -> Any:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class MessageContext(DispatchContext):
    kind: ClassVar[str] = "message"

    message: dict[str, Any]
    message_id: Optional[str]
    content: str
    command: Optional[str] = None
    args: tuple[str, ...] = ()
    mentions: tuple[dict[str, Any], ...] = ()

    @property
    def author(self) -> Optional[dict[str, Any]]:
        return self.user

    @classmethod
    def from_message(
        cls,
        rest: RestClient,
        message: dict[str, Any],
        *,
        parsed: Optional[ParsedCommand] = None,
    ) -> "MessageContext":
        author = message.get("author")
        member = message.get("member")
        mentions = message.get("mentions")
        content = message.get("content")
        return cls(
            rest=rest,
            user=author if isinstance(author, dict) else None,
            member=member if isinstance(member, dict) else None,
            channel_id=_as_id(message.get("channel_id")),
            guild_id=_as_id(message.get("guild_id")),
            message=message,
            message_id=_as_id(message.get("id")),
            content=content if isinstance(content, str) else "",
            command=parsed.name if parsed is not None else None,
            args=parsed.args if parsed is not None else (),
            mentions=tuple(
                item for item in (mentions if isinstance(mentions, list) else [])
                if isinstance(item, dict)
            ),
        )

    def _require_channel(self) -> str:
        if not self.channel_id:
            raise ValueError("message has no channel_id")
        return self.channel_id

    def _require_message(self) -> str:
        if not self.message_id:
            raise ValueError("message has no id")
        return self.message_id

    async def reply(self, content: ReplyContent) -> dict[str, Any]:
        """Send to the same channel as a reply to the source message."""
        payload = build_message_payload(content)
        reference: dict[str, Any] = {
            "message_id": self._require_message(),
            "channel_id": self._require_channel(),
            "fail_if_not_exists": False,
        }
        if self.guild_id:
            reference["guild_id"] = self.guild_id
        payload["message_reference"] = reference
        return await self.rest.create_message(self._require_channel(), payload)

    async def send(self, content: ReplyContent) -> dict[str, Any]:
        return await self.rest.create_message(
            self._require_channel(), build_message_payload(content)
        )

    async def react(self, emoji: str) -> None:
        await self.rest.create_reaction(
            self._require_channel(), self._require_message(), emoji
        )

    async def edit(self, content: ReplyContent) -> dict[str, Any]:
        return await self.rest.edit_message(
            self._require_channel(),
            self._require_message(),
            build_message_payload(content),
        )

    async def delete(self) -> None:
        await self.rest.delete_message(
            self._require_channel(), self._require_message()
        )


@dataclass(frozen=True, kw_only=True)
class _InteractionContextBase(DispatchContext):
    interaction: dict[str, Any]
    interaction_id: str
    interaction_token: str
    application_id: Optional[str]

    @classmethod
    def _base_fields(
        cls, rest: RestClient, interaction: dict[str, Any]
    ) -> dict[str, Any]:
        interaction_id = extract_interaction_id(interaction)
        interaction_token = extract_interaction_token(interaction)
        if not interaction_id or not interaction_token:
            raise ValueError("interaction is missing id or token")
        member = interaction.get("member")
        return {
            "rest": rest,
            "user": extract_user(interaction),
            "member": member if isinstance(member, dict) else None,
            "channel_id": extract_channel_id(interaction),
            "guild_id": extract_guild_id(interaction),
            "interaction": interaction,
            "interaction_id": interaction_id,
            "interaction_token": interaction_token,
            "application_id": extract_application_id(interaction),
        }

    async def _respond(
        self, response_type: int, data: Optional[dict[str, Any]] = None
    ) -> None:
        payload: dict[str, Any] = {"type": response_type}
        if data is not None:
            payload["data"] = data
        await self.rest.create_interaction_response(
            self.interaction_id, self.interaction_token, payload
        )

    def _require_application(self) -> str:
        if not self.application_id:
            raise ValueError("interaction has no application_id")
        return self.application_id

    async def reply(self, content: ReplyContent, *, ephemeral: bool = False) -> None:
        await self._respond(
            RESPONSE_CHANNEL_MESSAGE, build_message_payload(content, ephemeral=ephemeral)
        )

    async def follow_up(
        self, content: ReplyContent, *, ephemeral: bool = False
    ) -> dict[str, Any]:
        return await self.rest.create_followup_message(
            self._require_application(),
            self.interaction_token,
            build_message_payload(content, ephemeral=ephemeral),
        )


@dataclass(frozen=True, kw_only=True)
class InteractionContext(_InteractionContextBase):
    """Application (slash) command invocation."""

    kind: ClassVar[str] = "interaction"

    command_name: str
    command_path: tuple[str, ...]
    options: dict[str, Any]

    @classmethod
    def from_interaction(
        cls, rest: RestClient, interaction: dict[str, Any]
    ) -> "InteractionContext":
        command_path, options = extract_command_path_and_options(interaction)
        return cls(
            **cls._base_fields(rest, interaction),
            command_name=command_path[0] if command_path else "",
            command_path=command_path,
            options=options,
        )

    async def defer(self, *, ephemeral: bool = False) -> None:
        await self._respond(
            RESPONSE_DEFERRED_CHANNEL_MESSAGE,
            {"flags": MESSAGE_FLAG_EPHEMERAL} if ephemeral else None,
        )

    async def edit_reply(self, content: ReplyContent) -> dict[str, Any]:
        return await self.rest.edit_original_interaction_response(
            self._require_application(),
            self.interaction_token,
            build_message_payload(content),
        )

    async def delete_reply(self) -> None:
        await self.rest.delete_original_interaction_response(
            self._require_application(), self.interaction_token
        )

    async def show_modal(self, modal: Mapping[str, Any]) -> None:
        await self._respond(RESPONSE_MODAL, dict(modal))


@dataclass(frozen=True, kw_only=True)
class ComponentContext(_InteractionContextBase):
    """Button or select menu interaction."""

    kind: ClassVar[str] = "component"

    custom_id: str
    component_type: Optional[int]
    values: tuple[str, ...]
    message: Optional[dict[str, Any]]

    @classmethod
    def from_interaction(
        cls, rest: RestClient, interaction: dict[str, Any]
    ) -> "ComponentContext":
        message = interaction.get("message")
        return cls(
            **cls._base_fields(rest, interaction),
            custom_id=extract_component_custom_id(interaction) or "",
            component_type=extract_component_type(interaction),
            values=tuple(extract_component_values(interaction)),
            message=message if isinstance(message, dict) else None,
        )

    async def update(self, content: ReplyContent) -> None:
        """Edit the message the component is attached to."""
        await self._respond(RESPONSE_UPDATE_MESSAGE, build_message_payload(content))

    async def defer(self) -> None:
        await self._respond(RESPONSE_DEFERRED_UPDATE_MESSAGE)

    async def show_modal(self, modal: Mapping[str, Any]) -> None:
        await self._respond(RESPONSE_MODAL, dict(modal))


@dataclass(frozen=True, kw_only=True)
class ModalContext(_InteractionContextBase):
    kind: ClassVar[str] = "modal"

    custom_id: str
    fields: dict[str, str]

    @classmethod
    def from_interaction(
        cls, rest: RestClient, interaction: dict[str, Any]
    ) -> "ModalContext":
        return cls(
            **cls._base_fields(rest, interaction),
            custom_id=extract_component_custom_id(interaction) or "",
            fields=extract_modal_fields(interaction),
        )

    async def defer(self, *, ephemeral: bool = False) -> None:
        await self._respond(
            RESPONSE_DEFERRED_CHANNEL_MESSAGE,
            {"flags": MESSAGE_FLAG_EPHEMERAL} if ephemeral else None,
        )
