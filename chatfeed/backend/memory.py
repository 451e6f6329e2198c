"""
In-memory loopback backend.

Implements the conversation contract without any network: history is
kept per channel in process memory and every write is broadcast back
to subscribers through the event bus, the same way a hosted service
echoes writes to all connected clients.

Architecture:
    InMemoryChatClient (per user) -> InMemoryServer (shared) -> EventBus
"""

from __future__ import annotations

import uuid
from collections import Counter, defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import DefaultDict, Iterable, Optional

from loguru import logger

from chatfeed.backend.base import (
    ChatClient,
    ConversationBackend,
    Direction,
    MessageListener,
    ReactionListener,
)
from chatfeed.bus.events import (
    Message,
    MessageEvent,
    MessageKind,
    ReactionEvent,
    ReactionKind,
    utc_now,
)
from chatfeed.bus.queue import EventBus, Subscription
from chatfeed.errors import BackendError
from chatfeed.feed.parts import parse_text
from chatfeed.feed.reactions import map_from_delete, map_from_update


def message_topic(channel_name: str, kind: MessageKind) -> str:
    return f"{channel_name}:message:{kind}"


def reaction_topic(channel_name: str, kind: ReactionKind) -> str:
    return f"{channel_name}:reaction:{kind}"


class InMemoryServer:
    """
    Shared message store and broadcaster.

    Responsibilities:
        - Per-channel chronological history
        - Id / timestamp assignment
        - Event broadcast
        - Failure injection for tests
    """

    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus or EventBus()
        self.history: DefaultDict[str, list[Message]] = defaultdict(list)

        self._failures: Counter[str] = Counter()
        self._last_ts: Optional[datetime] = None

    # =============================
    # Lifecycle
    # =============================

    async def start(self) -> None:
        await self.bus.start()

    async def stop(self) -> None:
        await self.bus.stop()

    async def __aenter__(self) -> "InMemoryServer":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    async def drain(self) -> None:
        await self.bus.drain()

    # =============================
    # Test helpers
    # =============================

    def fail(self, operation: str, times: int = 1) -> None:
        """Make the next `times` calls of `operation` raise BackendError."""
        self._failures[operation] += times

    def seed(self, channel_name: str, messages: Iterable[Message]) -> None:
        """Insert history without broadcasting."""
        self.history[channel_name].extend(messages)
        self.history[channel_name].sort(key=lambda m: m.created_at)

    def _check(self, operation: str) -> None:
        if self._failures[operation] > 0:
            self._failures[operation] -= 1
            raise BackendError(f"{operation} rejected by backend")

    def _timestamp(self) -> datetime:
        now = utc_now()
        if self._last_ts and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now

    # =============================
    # Store
    # =============================

    def _index_of(self, channel_name: str, message_id: str) -> int:
        for i, m in enumerate(self.history[channel_name]):
            if m.id == message_id:
                return i
        raise BackendError(f"Unknown message: {message_id}")

    def _find_reaction(self, channel_name: str, reaction_id: str) -> int:
        for i, m in enumerate(self.history[channel_name]):
            for entries in m.reactions.values():
                if any(r.reaction_id == reaction_id for r in entries):
                    return i
        raise BackendError(f"Unknown reaction: {reaction_id}")

    async def query(
        self,
        channel_name: str,
        limit: int,
        direction: Direction,
        start_id: Optional[str],
    ) -> list[Message]:
        self._check("query")
        messages = self.history[channel_name]

        if direction == "backwards":
            end = self._index_of(channel_name, start_id) if start_id else len(messages)
            return list(reversed(messages[max(0, end - limit):end]))

        start = self._index_of(channel_name, start_id) + 1 if start_id else 0
        return list(messages[start:start + limit])

    async def send(self, channel_name: str, client_id: str, text: str) -> Message:
        self._check("send")
        message = Message(
            id=uuid.uuid4().hex,
            conversation_id=channel_name,
            created_by=client_id,
            created_at=self._timestamp(),
            body=parse_text(text),
        )
        self.history[channel_name].append(message)
        await self.bus.publish(message_topic(channel_name, "created"), MessageEvent("created", message))
        return message

    async def edit(self, channel_name: str, message_id: str, text: str) -> None:
        self._check("edit")
        idx = self._index_of(channel_name, message_id)
        current = self.history[channel_name][idx]
        updated = replace(current, body=parse_text(text), updated_at=self._timestamp())
        self.history[channel_name][idx] = updated
        await self.bus.publish(message_topic(channel_name, "edited"), MessageEvent("edited", updated))

    async def delete(self, channel_name: str, message_id: str) -> None:
        self._check("delete")
        idx = self._index_of(channel_name, message_id)
        removed = self.history[channel_name].pop(idx)
        await self.bus.publish(message_topic(channel_name, "deleted"), MessageEvent("deleted", removed))

    async def add_reaction(self, channel_name: str, client_id: str, message_id: str, type: str) -> None:
        self._check("add_reaction")
        idx = self._index_of(channel_name, message_id)
        event = ReactionEvent(
            reaction_id=uuid.uuid4().hex,
            type=type,
            actor_id=client_id,
            kind="created",
            message_id=message_id,
        )
        history = self.history[channel_name]
        history[idx] = map_from_update(history[idx], event)
        await self.bus.publish(reaction_topic(channel_name, "created"), event)

    async def remove_reaction(self, channel_name: str, client_id: str, reaction_id: str) -> None:
        self._check("remove_reaction")
        idx = self._find_reaction(channel_name, reaction_id)
        history = self.history[channel_name]
        target = history[idx]
        entry = next(
            r for entries in target.reactions.values() for r in entries
            if r.reaction_id == reaction_id
        )
        event = ReactionEvent(
            reaction_id=reaction_id,
            type=entry.type,
            actor_id=client_id,
            kind="deleted",
            message_id=target.id,
        )
        history[idx] = map_from_delete(target, event)
        await self.bus.publish(reaction_topic(channel_name, "deleted"), event)


class InMemoryConversation(ConversationBackend):
    """Conversation handle bound to one client identity."""

    def __init__(self, server: InMemoryServer, client_id: str, channel_name: str):
        super().__init__(channel_name)
        self.server = server
        self.client_id = client_id

    async def query(
        self,
        limit: int = 100,
        direction: Direction = "backwards",
        start_id: Optional[str] = None,
    ) -> list[Message]:
        return await self.server.query(self.channel_name, limit, direction, start_id)

    async def send(self, text: str) -> None:
        await self.server.send(self.channel_name, self.client_id, text)

    async def edit(self, message_id: str, text: str) -> None:
        await self.server.edit(self.channel_name, message_id, text)

    async def delete(self, message_id: str) -> None:
        await self.server.delete(self.channel_name, message_id)

    async def add_reaction(self, message_id: str, type: str) -> None:
        await self.server.add_reaction(self.channel_name, self.client_id, message_id, type)

    async def remove_reaction(self, reaction_id: str) -> None:
        await self.server.remove_reaction(self.channel_name, self.client_id, reaction_id)

    def subscribe(self, kind: MessageKind, listener: MessageListener) -> Subscription:
        return self.server.bus.subscribe(message_topic(self.channel_name, kind), listener)

    def subscribe_reactions(self, kind: ReactionKind, listener: ReactionListener) -> Subscription:
        return self.server.bus.subscribe(reaction_topic(self.channel_name, kind), listener)


class InMemoryChatClient(ChatClient):
    """Chat client for one user against an in-memory server."""

    def __init__(self, client_id: str, server: Optional[InMemoryServer] = None):
        super().__init__(client_id)
        self.server = server or InMemoryServer()
        self._conversations: dict[str, InMemoryConversation] = {}

    def get_conversation(self, channel_name: str) -> InMemoryConversation:
        conv = self._conversations.get(channel_name)
        if conv is None:
            conv = InMemoryConversation(self.server, self.client_id, channel_name)
            self._conversations[channel_name] = conv
            logger.debug("Conversation attached | client={} channel={}", self.client_id, channel_name)
        return conv
