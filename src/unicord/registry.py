from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .middleware import Handler


@dataclass(frozen=True)
class HandlerEntry:
    name: str
    handler: Handler
    aliases: tuple[str, ...] = ()
    options: dict[str, Any] = field(default_factory=dict)


class HandlerRegistry:
    """Name (or custom id) to handler lookup; aliases share one entry."""

    def __init__(self, *, case_insensitive: bool = False) -> None:
        self._case_insensitive = case_insensitive
        self._entries: dict[str, HandlerEntry] = {}
        self._lookup: dict[str, HandlerEntry] = {}

    def _key(self, name: str) -> str:
        key = name.strip()
        return key.lower() if self._case_insensitive else key

    def register(
        self,
        name: str,
        handler: Handler,
        *,
        aliases: Iterable[str] = (),
        options: Optional[dict[str, Any]] = None,
    ) -> HandlerEntry:
        key = self._key(name)
        if not key:
            raise ValueError("handler name must be non-empty")
        alias_keys = tuple(
            dict.fromkeys(
                alias_key
                for alias_key in (self._key(alias) for alias in aliases)
                if alias_key and alias_key != key
            )
        )
        for candidate in (key, *alias_keys):
            existing = self._lookup.get(candidate)
            if existing is not None and self._key(existing.name) != key:
                raise ValueError(
                    f"'{candidate}' is already registered to '{existing.name}'"
                )

        self.unregister(name)
        entry = HandlerEntry(
            name=name.strip(),
            handler=handler,
            aliases=alias_keys,
            options=dict(options or {}),
        )
        self._entries[key] = entry
        for candidate in (key, *alias_keys):
            self._lookup[candidate] = entry
        return entry

    def unregister(self, name: str) -> None:
        entry = self._entries.pop(self._key(name), None)
        if entry is None:
            return
        for candidate, value in list(self._lookup.items()):
            if value is entry:
                del self._lookup[candidate]

    def resolve(self, name: str) -> Optional[HandlerEntry]:
        return self._lookup.get(self._key(name))

    def entries(self) -> tuple[HandlerEntry, ...]:
        return tuple(self._entries.values())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None

    def __len__(self) -> int:
        return len(self._entries)
