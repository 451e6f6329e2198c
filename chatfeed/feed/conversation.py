"""
Conversation view model.

Local mirror of one conversation's message list, kept in sync from
three inputs:
    - backward-paginated history queries
    - live message events (created / edited / deleted)
    - live reaction events (created / deleted)

Writes are forwarded to the backend only. Their effect comes back
through the event subscriptions, so there is no optimistic state.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Optional

from loguru import logger

from chatfeed.backend.base import ChatClient, ConversationBackend
from chatfeed.bus.events import Message, MessageEvent, ReactionEvent
from chatfeed.bus.queue import Subscription
from chatfeed.feed.reactions import map_from_delete, map_from_update
from chatfeed.errors import IdentityError, MalformedEventError


DEFAULT_PAGE_SIZE = 200

ChangeListener = Callable[[Any], None]


def dedupe(messages: Iterable[Message]) -> tuple[Message, ...]:
    """Keep the first occurrence of every id, preserving order."""
    seen: set[str] = set()
    out: list[Message] = []
    for m in messages:
        if m.id in seen:
            continue
        seen.add(m.id)
        out.append(m)
    return tuple(out)


class ConversationViewModel:
    """
    Live message list for one conversation at a time.

    Lifecycle:
        load(channel) -> events ... -> load(same channel) pages back
        load(other)   -> previous state discarded, fresh list
        close()       -> subscriptions released, state discarded

    A page query that resolves after a channel switch or close() is
    dropped without touching state.
    """

    def __init__(
        self,
        client: ChatClient,
        username: str,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        if not username:
            raise IdentityError("ConversationViewModel requires a username")

        self.client = client
        self.username = username
        self.page_size = page_size

        self.channel_name: Optional[str] = None
        self._backend: Optional[ConversationBackend] = None

        self._messages: tuple[Message, ...] = ()
        self._cursor: Optional[str] = None
        self._exhausted = False
        self._loading = False

        # bumped on every channel switch / close; stale loads compare against it
        self._generation = 0

        self._subscriptions: list[Subscription] = []
        self._observers: list[Subscription] = []

    # ==========================================================
    # State
    # ==========================================================

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    @property
    def history_exhausted(self) -> bool:
        return self._exhausted

    def get(self, message_id: str) -> Optional[Message]:
        return next((m for m in self._messages if m.id == message_id), None)

    # ==========================================================
    # Change notification
    # ==========================================================

    def add_listener(self, callback: ChangeListener) -> Subscription:
        """Call `callback(self)` after every state change."""
        sub = Subscription(topic="change", listener=callback, _on_release=self._observers.remove)
        self._observers.append(sub)
        return sub

    def _notify(self) -> None:
        for sub in list(self._observers):
            if not sub.active:
                continue
            try:
                sub.listener(self)
            except Exception:
                logger.exception("Change listener failed | channel={}", self.channel_name)

    def _set_messages(self, messages: tuple[Message, ...]) -> None:
        if len(messages) == len(self._messages) and all(
            a is b for a, b in zip(messages, self._messages)
        ):
            return
        self._messages = messages
        self._notify()

    def _set_loading(self, value: bool) -> None:
        if self._loading != value:
            self._loading = value
            self._notify()

    # ==========================================================
    # Lifecycle
    # ==========================================================

    def _attach(self, channel_name: str) -> None:
        self._detach()

        self.channel_name = channel_name
        self._backend = backend = self.client.get_conversation(channel_name)

        self._subscriptions = [
            backend.subscribe("created", self._handle_created),
            backend.subscribe("edited", self._handle_edited),
            backend.subscribe("deleted", self._handle_deleted),
            backend.subscribe_reactions("created", self._handle_reaction_created),
            backend.subscribe_reactions("deleted", self._handle_reaction_deleted),
        ]
        logger.info("Conversation opened | channel={} user={}", channel_name, self.username)

    def _detach(self) -> None:
        for sub in self._subscriptions:
            sub.release()
        self._subscriptions = []
        self._generation += 1

        if self.channel_name is not None:
            logger.info("Conversation closed | channel={}", self.channel_name)

        self.channel_name = None
        self._backend = None
        self._cursor = None
        self._exhausted = False
        self._loading = False
        self._set_messages(())

    def close(self) -> None:
        """Release subscriptions and discard state."""
        self._detach()

    @property
    def is_open(self) -> bool:
        return self._backend is not None

    # ==========================================================
    # History
    # ==========================================================

    async def load(self, channel_name: Optional[str] = None) -> tuple[Message, ...]:
        """
        Load one page of history.

        Switching to a new channel resets the list and cursor first.
        Repeated calls on the same channel page further back until an
        empty page marks history as exhausted.
        """
        name = channel_name or self.channel_name
        if name is None:
            raise ValueError("No channel to load")

        if name != self.channel_name:
            self._attach(name)
        elif self._exhausted:
            return self._messages

        generation = self._generation
        backend = self._backend
        self._set_loading(True)

        try:
            page = await backend.query(
                limit=self.page_size,
                direction="backwards",
                start_id=self._cursor,
            )
        except asyncio.CancelledError:
            if generation == self._generation:
                self._set_loading(False)
            raise
        except Exception as e:
            if generation == self._generation:
                logger.error("History query failed | channel={} err={}", name, e)
                self._set_loading(False)
            return self._messages

        if generation != self._generation:
            logger.debug("Discarding stale history page | channel={}", name)
            return self._messages

        self._cursor = page[-1].id if page else None
        self._exhausted = not page

        # page is newest-first; live entries win over fetched duplicates
        known = {m.id for m in self._messages}
        older = [m for m in reversed(page) if m.id not in known]

        self._loading = False
        self._messages = dedupe([*older, *self._messages])
        self._notify()

        logger.debug(
            "History page applied | channel={} fetched={} total={}",
            name, len(page), len(self._messages),
        )
        return self._messages

    # ==========================================================
    # Event application
    # ==========================================================

    def on_message_created(self, message: Message) -> None:
        if any(m.id == message.id for m in self._messages):
            return
        self._set_messages((*self._messages, message))

    def on_message_edited(self, message: Message) -> None:
        self._set_messages(tuple(message if m.id == message.id else m for m in self._messages))

    def on_message_deleted(self, message: Message) -> None:
        if message.id == self._cursor:
            # page on from the next newer entry; the deleted id no longer resolves
            self._cursor = self._next_newer(message.id)
        self._set_messages(tuple(m for m in self._messages if m.id != message.id))

    def _next_newer(self, message_id: str) -> Optional[str]:
        ids = [m.id for m in self._messages]
        if message_id not in ids:
            return self._cursor
        idx = ids.index(message_id)
        return ids[idx + 1] if idx + 1 < len(ids) else None

    def on_reaction_created(self, event: ReactionEvent) -> None:
        self._set_messages(tuple(map_from_update(m, event) for m in self._messages))

    def on_reaction_deleted(self, event: ReactionEvent) -> None:
        self._set_messages(tuple(map_from_delete(m, event) for m in self._messages))

    # ----------------------------------------------------------
    # Subscription callbacks
    # ----------------------------------------------------------

    def _handle_created(self, event: Any) -> None:
        self._apply_message_event(event, self.on_message_created)

    def _handle_edited(self, event: Any) -> None:
        self._apply_message_event(event, self.on_message_edited)

    def _handle_deleted(self, event: Any) -> None:
        self._apply_message_event(event, self.on_message_deleted)

    def _handle_reaction_created(self, event: Any) -> None:
        self._apply_reaction_event(event, self.on_reaction_created, needs_message=True)

    def _handle_reaction_deleted(self, event: Any) -> None:
        self._apply_reaction_event(event, self.on_reaction_deleted, needs_message=False)

    def _apply_message_event(self, event: Any, apply: Callable[[Message], None]) -> None:
        try:
            message = _validate_message_event(event)
        except MalformedEventError as e:
            logger.warning("Ignoring malformed message event | channel={} err={}", self.channel_name, e)
            return
        apply(message)

    def _apply_reaction_event(
        self,
        event: Any,
        apply: Callable[[ReactionEvent], None],
        needs_message: bool,
    ) -> None:
        try:
            _validate_reaction_event(event, needs_message)
        except MalformedEventError as e:
            logger.warning("Ignoring malformed reaction event | channel={} err={}", self.channel_name, e)
            return
        apply(event)

    # ==========================================================
    # Actions
    # ==========================================================

    async def send(self, text: str) -> bool:
        return await self._dispatch("send", text)

    async def edit(self, message_id: str, text: str) -> bool:
        return await self._dispatch("edit", message_id, text)

    async def delete(self, message_id: str) -> bool:
        return await self._dispatch("delete", message_id)

    async def add_reaction(self, message_id: str, type: str) -> bool:
        return await self._dispatch("add_reaction", message_id, type)

    async def remove_reaction(self, reaction_id: str) -> bool:
        return await self._dispatch("remove_reaction", reaction_id)

    async def _dispatch(self, action: str, *args: Any) -> bool:
        """Forward a write; failures are logged and leave state unchanged."""
        if self._backend is None:
            logger.warning("Action without open conversation | action={}", action)
            return False

        try:
            await getattr(self._backend, action)(*args)
            return True
        except Exception as e:
            logger.error("Action failed | action={} channel={} err={}", action, self.channel_name, e)
            return False


# ==========================================================
# Payload validation
# ==========================================================

def _validate_message_event(event: Any) -> Message:
    if not isinstance(event, MessageEvent):
        raise MalformedEventError(f"expected MessageEvent, got {type(event).__name__}")
    message = event.message
    if not isinstance(message, Message) or not message.id:
        raise MalformedEventError("event carries no message id")
    return message


def _validate_reaction_event(event: Any, needs_message: bool) -> None:
    if not isinstance(event, ReactionEvent):
        raise MalformedEventError(f"expected ReactionEvent, got {type(event).__name__}")
    if not event.reaction_id:
        raise MalformedEventError("reaction event carries no reaction id")
    if needs_message and not event.message_id:
        raise MalformedEventError("reaction event carries no message id")
