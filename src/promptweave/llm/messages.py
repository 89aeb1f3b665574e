"""Conversation message model shared by the compiler, fitter and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence, cast

from promptweave.util import normalise_text


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    CODE_BLOCK = "codeBlock"


_ROLE_LOOKUP: dict[str, Role] = {
    "system": Role.SYSTEM,
    "user": Role.USER,
    "assistant": Role.ASSISTANT,
    "codeblock": Role.CODE_BLOCK,
    "code_block": Role.CODE_BLOCK,
}


@dataclass(frozen=True, slots=True)
class Message:
    """A single chat turn."""

    role: Role
    content: str

    @property
    def is_system(self) -> bool:
        return self.role is Role.SYSTEM

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


Conversation = Sequence[Message]
MessageLike = Message | Mapping[str, Any]


def coerce_role(value: Any) -> Role:
    """Return the :class:`Role` for ``value``; anything unrecognised is a user turn."""

    if isinstance(value, Role):
        return value
    key = normalise_text(value).strip().lower()
    return _ROLE_LOOKUP.get(key, Role.USER)


def coerce_message(raw: MessageLike) -> Message:
    if isinstance(raw, Message):
        return raw
    if not isinstance(raw, Mapping):
        return Message(Role.USER, normalise_text(raw))
    data = cast(Mapping[str, Any], raw)
    content_source = data.get("content")
    if content_source is None:
        content_source = data.get("message")
    return Message(coerce_role(data.get("role")), normalise_text(content_source))


def coerce_messages(messages: Iterable[MessageLike] | None) -> tuple[Message, ...]:
    """Normalise ``messages`` into an ordered tuple of :class:`Message`.

    Mappings may use ``content`` or the persistence layer's ``message`` key.
    Missing roles become ``user`` and missing content becomes ``""``.
    """

    if messages is None:
        return ()
    return tuple(coerce_message(raw) for raw in messages)


def as_dicts(conversation: Iterable[Message]) -> list[dict[str, str]]:
    return [message.as_dict() for message in conversation]


__all__ = [
    "Conversation",
    "Message",
    "MessageLike",
    "Role",
    "as_dicts",
    "coerce_message",
    "coerce_messages",
    "coerce_role",
]
