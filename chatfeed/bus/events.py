"""
Event types for the chatfeed message bus.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Mapping, Optional, Union


# ---------------------------------------------------------------------
# Message parts
# ---------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class TextPart:
    text: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True, slots=True)
class PlainLinkPart:
    link: str
    kind: Literal["plain_link"] = "plain_link"


@dataclass(frozen=True, slots=True)
class TextLinkPart:
    text: str
    link: str
    kind: Literal["text_link"] = "text_link"


@dataclass(frozen=True, slots=True)
class MentionPart:
    user_id: str
    name: str
    kind: Literal["mention"] = "mention"


MessagePart = Union[TextPart, PlainLinkPart, TextLinkPart, MentionPart]


# ---------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------

ReactionKind = Literal["created", "deleted"]


@dataclass(frozen=True, slots=True)
class Reaction:
    """A single reaction left on a message."""

    reaction_id: str
    type: str                 # emoji / star / reply ...
    reactor_id: str


@dataclass(frozen=True, slots=True)
class ReactionEvent:
    """
    Reaction broadcast by the backend.

    `message_id` may be missing on deleted events; deletion is keyed
    on `reaction_id` alone.
    """

    reaction_id: str
    type: str
    actor_id: str
    kind: ReactionKind = "created"
    message_id: Optional[str] = None

    @property
    def reaction(self) -> Reaction:
        return Reaction(
            reaction_id=self.reaction_id,
            type=self.type,
            reactor_id=self.actor_id,
        )


# ---------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------

MessageKind = Literal["created", "edited", "deleted"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Message:
    """
    Immutable chat message.

    Every change (edit, reaction) produces a new instance so consumers
    can detect changes by identity.
    """

    id: str
    conversation_id: str
    created_by: str
    created_at: datetime = field(default_factory=utc_now)

    body: tuple[MessagePart, ...] = ()
    reactions: Mapping[str, tuple[Reaction, ...]] = field(default_factory=dict)

    updated_at: Optional[datetime] = None

    # -----------------------------------------------------------------

    @property
    def text(self) -> str:
        """Plain-text rendering of the message body."""
        from chatfeed.feed.parts import render_body
        return render_body(self.body)

    @property
    def is_edited(self) -> bool:
        return self.updated_at is not None


@dataclass(frozen=True, slots=True)
class MessageEvent:
    """Message lifecycle event broadcast by the backend."""

    kind: MessageKind
    message: Message
