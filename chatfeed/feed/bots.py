"""
Scripted bot participants.

Produces a synthetic, replayable message stream for demos. Every script
entry is anchored to the conversation's earliest real message:

    created_at = anchor + entry.offset

and becomes visible only once the clock passes that instant. Reveals
happen in offset order and are never undone.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from loguru import logger

from chatfeed.bus.events import Message, ReactionEvent, utc_now
from chatfeed.bus.queue import Subscription
from chatfeed.config.schema import BotScriptEntry, BotsConfig
from chatfeed.feed.parts import parse_text
from chatfeed.feed.reactions import map_from_delete, map_from_update


MIN_TICK_S = 0.05

Clock = Callable[[], datetime]


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class BotFeedGenerator:
    """
    Timer-driven reveal of a bot script.

    Responsibilities:
        - Anchor tracking (first anchor wins)
        - Monotonic, offset-ordered reveal
        - Local reaction bookkeeping on bot messages
    """

    def __init__(
        self,
        config: BotsConfig,
        username: str,
        clock: Clock = utc_now,
    ):
        self.config = config
        self.username = username
        self.clock = clock

        # sorted() is stable: equal offsets keep script order
        self._script: list[BotScriptEntry] = sorted(config.script, key=lambda e: e.offset_s)

        self._anchor: Optional[datetime] = (
            _aware(config.default_anchor) if config.default_anchor else None
        )
        self._revealed = 0
        self._messages: tuple[Message, ...] = ()

        self._observers: list[Subscription] = []

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()

    # ============================================================
    # State
    # ============================================================

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    @property
    def is_loading(self) -> bool:
        return False

    @property
    def anchor(self) -> Optional[datetime]:
        return self._anchor

    @property
    def pending(self) -> int:
        """Script entries not revealed yet."""
        return len(self._script) - self._revealed

    def owns(self, message: Optional[Message]) -> bool:
        """Whether a message was produced by this generator."""
        if message is None:
            return False
        return (
            message.conversation_id == self.config.channel_name
            and message.created_by.startswith(self.config.username_prefix)
        )

    def message_id(self, index: int) -> str:
        return f"{self.config.channel_name}:{index}"

    # ============================================================
    # Change notification
    # ============================================================

    def add_listener(self, callback: Callable[[Any], None]) -> Subscription:
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
                logger.exception("Bot feed listener failed")

    # ============================================================
    # Anchor & reveal
    # ============================================================

    def set_anchor(self, anchor: Optional[datetime]) -> bool:
        """
        Provide the anchor timestamp.

        Only the first anchor is kept so revealed timestamps stay stable.
        """
        if anchor is None or self._anchor is not None:
            return False

        self._anchor = _aware(anchor)
        self._wakeup.set()
        logger.info("Bot feed anchored | channel={} anchor={}", self.config.channel_name, self._anchor)
        return True

    def next_due_at(self) -> Optional[datetime]:
        if self._anchor is None or self._revealed >= len(self._script):
            return None
        return self._anchor + self._script[self._revealed].offset

    def reveal_due(self, now: Optional[datetime] = None) -> list[Message]:
        """Reveal every entry whose time has come; returns the new messages."""
        if self._anchor is None:
            return []

        now = now or self.clock()
        revealed: list[Message] = []

        while self._revealed < len(self._script):
            entry = self._script[self._revealed]
            if self._anchor + entry.offset > now:
                break
            revealed.append(self._build(self._revealed, entry))
            self._revealed += 1

        if revealed:
            self._messages = (*self._messages, *revealed)
            logger.debug("Bot messages revealed | count={} pending={}", len(revealed), self.pending)
            self._notify()

        return revealed

    def _build(self, index: int, entry: BotScriptEntry) -> Message:
        prefix = self.config.username_prefix
        message = Message(
            id=self.message_id(index),
            conversation_id=self.config.channel_name,
            created_by=f"{prefix}{entry.author}",
            created_at=self._anchor + entry.offset,
            body=parse_text(entry.body),
        )

        for j, scripted in enumerate(entry.reactions):
            message = map_from_update(
                message,
                ReactionEvent(
                    reaction_id=f"{message.id}:r{j}",
                    type=scripted.type,
                    actor_id=f"{prefix}{scripted.actor or entry.author}",
                    kind="created",
                    message_id=message.id,
                ),
            )
        return message

    # ============================================================
    # Lifecycle
    # ============================================================

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="bot-feed")
        logger.info("Bot feed started | entries={}", len(self._script))

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Bot feed stopped | revealed={}", self._revealed)

    async def _run_loop(self) -> None:
        try:
            while self._running:
                self.reveal_due()

                timeout = self._sleep_interval()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout)
                except asyncio.TimeoutError:
                    pass
                finally:
                    self._wakeup.clear()

        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Bot feed loop crashed")

    def _sleep_interval(self) -> Optional[float]:
        due = self.next_due_at()
        if due is None:
            # wait for an anchor, or forever once the script is done
            return None

        delay = (due - self.clock()).total_seconds()
        return max(delay, MIN_TICK_S)

    # ============================================================
    # Reactions
    # ============================================================

    async def add_reaction(self, message_id: str, type: str) -> bool:
        if not any(m.id == message_id for m in self._messages):
            logger.warning("Reaction on unknown bot message | id={}", message_id)
            return False

        event = ReactionEvent(
            reaction_id=uuid.uuid4().hex,
            type=type,
            actor_id=self.username,
            kind="created",
            message_id=message_id,
        )
        self._apply(lambda m: map_from_update(m, event))
        return True

    async def remove_reaction(self, reaction_id: str) -> bool:
        """Retract one of the current user's reactions; scripted ones stay."""
        if not any(
            r.reaction_id == reaction_id and r.reactor_id == self.username
            for m in self._messages
            for entries in m.reactions.values()
            for r in entries
        ):
            logger.warning("Reaction not removable | id={} user={}", reaction_id, self.username)
            return False

        event = ReactionEvent(
            reaction_id=reaction_id,
            type="",
            actor_id=self.username,
            kind="deleted",
        )
        return self._apply(lambda m: map_from_delete(m, event))

    def _apply(self, transform: Callable[[Message], Message]) -> bool:
        updated = tuple(transform(m) for m in self._messages)
        if all(a is b for a, b in zip(updated, self._messages)):
            return False
        self._messages = updated
        self._notify()
        return True
