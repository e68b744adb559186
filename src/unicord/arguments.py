"""Prefix command parsing for message content."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

_QUOTE = '"'
_MENTION_TOKEN_RE = re.compile(r"^<(?:@[!&]?|#)\d+>$")


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    args: tuple[str, ...] = ()
    mention_tokens: tuple[str, ...] = field(default=())


def tokenize_arguments(text: str) -> list[str]:
    """Split ``text`` on whitespace, keeping double-quoted segments together.

    Single quotes are ordinary characters so apostrophes survive. Backslash
    escapes the next character. An unterminated quote swallows the rest of the
    input as a literal instead of raising.
    """
    tokens: list[str] = []
    current: list[str] = []
    in_token = False
    quoted = False
    escaped = False

    for char in text:
        if escaped:
            current.append(char)
            escaped = False
            in_token = True
            continue
        if char == "\\":
            escaped = True
            in_token = True
            continue
        if quoted:
            if char == _QUOTE:
                quoted = False
            else:
                current.append(char)
            continue
        if char == _QUOTE:
            quoted = True
            in_token = True
            continue
        if char.isspace():
            if in_token:
                tokens.append("".join(current))
                current = []
                in_token = False
            continue
        current.append(char)
        in_token = True

    if escaped:
        current.append("\\")
    if in_token:
        tokens.append("".join(current))
    return tokens


def mention_pattern(user_id: str) -> re.Pattern[str]:
    return re.compile(rf"^\s*<@!?{re.escape(user_id)}>\s*")


def mentions_user(message: Mapping[str, Any], user_id: Optional[str]) -> bool:
    if not user_id:
        return False
    mentions = message.get("mentions")
    if isinstance(mentions, list):
        for mention in mentions:
            if isinstance(mention, dict) and str(mention.get("id")) == user_id:
                return True
    content = message.get("content")
    if isinstance(content, str):
        return f"<@{user_id}>" in content or f"<@!{user_id}>" in content
    return False


def strip_command_prefix(
    content: str,
    *,
    prefix: Optional[str],
    bot_user_id: Optional[str] = None,
    mention_prefix: bool = False,
) -> Optional[str]:
    """Return the text after the prefix (or leading bot mention), else None."""
    if prefix and content.startswith(prefix):
        return content[len(prefix) :]
    if mention_prefix and bot_user_id:
        match = mention_pattern(bot_user_id).match(content)
        if match is not None:
            return content[match.end() :]
    return None


def _mention_names(mentions: Iterable[Any]) -> set[str]:
    names: set[str] = set()
    for mention in mentions:
        if not isinstance(mention, dict):
            continue
        for key in ("username", "global_name"):
            value = mention.get(key)
            if isinstance(value, str) and value:
                names.add(f"@{value}".lower())
    return names


def is_mention_token(token: str, mention_names: set[str]) -> bool:
    if _MENTION_TOKEN_RE.match(token):
        return True
    return token.lower() in mention_names


def parse_command(
    content: str,
    *,
    prefix: Optional[str],
    bot_user_id: Optional[str] = None,
    mention_prefix: bool = False,
    mentions: Iterable[Any] = (),
) -> Optional[ParsedCommand]:
    remainder = strip_command_prefix(
        content,
        prefix=prefix,
        bot_user_id=bot_user_id,
        mention_prefix=mention_prefix,
    )
    if remainder is None:
        return None
    tokens = tokenize_arguments(remainder)
    if not tokens or not tokens[0]:
        return None
    names = _mention_names(mentions)
    args: list[str] = []
    mention_tokens: list[str] = []
    for token in tokens[1:]:
        if is_mention_token(token, names):
            mention_tokens.append(token)
        else:
            args.append(token)
    return ParsedCommand(
        name=tokens[0].lower(),
        args=tuple(args),
        mention_tokens=tuple(mention_tokens),
    )
