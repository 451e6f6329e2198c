"""
Reaction bookkeeping on messages.

Pure functions: a message is never mutated. When an event does not
affect a message the very same object is returned, so list consumers
can skip unchanged rows by identity.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from chatfeed.bus.events import Message, ReactionEvent, ReactionKind


@dataclass(frozen=True, slots=True)
class ReactionSummary:
    """Per-type reaction view for one user."""

    type: str
    count: int
    mine: bool = False
    reaction_id: Optional[str] = None   # the user's own reaction, if any


def has_reaction(message: Message, reaction_id: str) -> bool:
    return any(
        r.reaction_id == reaction_id
        for reactions in message.reactions.values()
        for r in reactions
    )


def apply_reaction(message: Message, event: ReactionEvent, kind: ReactionKind) -> Message:
    """Apply a created/deleted reaction event to a message."""
    if kind == "created":
        return map_from_update(message, event)
    if kind == "deleted":
        return map_from_delete(message, event)
    raise ValueError(f"Unknown reaction kind: {kind}")


def map_from_update(message: Message, event: ReactionEvent) -> Message:
    if message.id != event.message_id:
        return message
    if has_reaction(message, event.reaction_id):
        return message

    reactions = dict(message.reactions)
    reactions[event.type] = (*reactions.get(event.type, ()), event.reaction)
    return replace(message, reactions=reactions)


def map_from_delete(message: Message, event: ReactionEvent) -> Message:
    if event.message_id is not None and message.id != event.message_id:
        return message
    if not has_reaction(message, event.reaction_id):
        return message

    reactions = {}
    for type_, entries in message.reactions.items():
        kept = tuple(r for r in entries if r.reaction_id != event.reaction_id)
        if kept:
            reactions[type_] = kept
    return replace(message, reactions=reactions)


def summarize(message: Message, username: Optional[str] = None) -> dict[str, ReactionSummary]:
    """Count reactions per type and flag the ones left by `username`."""
    summary: dict[str, ReactionSummary] = {}
    for type_, entries in message.reactions.items():
        own = next((r for r in entries if username and r.reactor_id == username), None)
        summary[type_] = ReactionSummary(
            type=type_,
            count=len(entries),
            mine=own is not None,
            reaction_id=own.reaction_id if own else None,
        )
    return summary
