"""
Feed compositor.

Presents one ordered, deduplicated message list built from the real
conversation and, when enabled, the scripted bot feed. Writes are
routed back to whichever source owns the target message.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from loguru import logger

from chatfeed.backend.base import ChatClient
from chatfeed.bus.events import Message, utc_now
from chatfeed.config.schema import Config, FeedConfig
from chatfeed.feed.bots import BotFeedGenerator, Clock
from chatfeed.feed.conversation import ConversationViewModel, dedupe


def merge_feeds(
    real: Iterable[Message],
    synthetic: Iterable[Message],
    chronological: bool = True,
) -> tuple[Message, ...]:
    """
    Union of both sources by id; the real entry wins on collision.

    With `chronological`, entries are sorted by created_at. The sort is
    stable, so equal timestamps keep first-appearance order.
    """
    merged = dedupe([*real, *synthetic])
    if chronological:
        merged = tuple(sorted(merged, key=lambda m: m.created_at))
    return merged


class FeedCompositor:
    """
    Unified feed over a ConversationViewModel and a BotFeedGenerator.

    Never mutates either source list: reads their snapshots and writes
    through their action methods.
    """

    def __init__(
        self,
        conversation: ConversationViewModel,
        bots: Optional[BotFeedGenerator],
        config: FeedConfig,
    ):
        self.conversation = conversation
        self.bots = bots
        self.config = config

        self._sources: tuple[Any, Any] = (None, None)
        self._merged: tuple[Message, ...] = ()

        self._anchor_sub = conversation.add_listener(self._on_conversation_change)

    @classmethod
    def from_config(
        cls,
        client: ChatClient,
        config: Config,
        username: str,
        clock: Clock = utc_now,
    ) -> "FeedCompositor":
        conversation = ConversationViewModel(client, username, page_size=config.chat.page_size)
        bots = BotFeedGenerator(config.bots, username, clock=clock) if config.feed.with_bots else None
        return cls(conversation, bots, config.feed)

    # ==========================================================
    # Read side
    # ==========================================================

    @property
    def bots_enabled(self) -> bool:
        return self.config.with_bots and self.bots is not None

    @property
    def messages(self) -> tuple[Message, ...]:
        real = self.conversation.messages
        synthetic = self.bots.messages if self.bots_enabled else ()

        # recompute only when a source snapshot changed
        if real is not self._sources[0] or synthetic is not self._sources[1]:
            self._merged = merge_feeds(real, synthetic, self.config.chronological)
            self._sources = (real, synthetic)
        return self._merged

    @property
    def is_loading(self) -> bool:
        bots_loading = self.bots.is_loading if self.bots_enabled else False
        return self.conversation.is_loading or bots_loading

    def find(self, message_id: str) -> Optional[Message]:
        return next((m for m in self.messages if m.id == message_id), None)

    def _is_bot(self, message: Optional[Message]) -> bool:
        return self.bots_enabled and self.bots.owns(message)

    # ==========================================================
    # Write side
    # ==========================================================

    async def send(self, text: str) -> bool:
        return await self.conversation.send(text)

    async def edit(self, message_id: str, text: str) -> bool:
        return await self.conversation.edit(message_id, text)

    async def delete(self, message_id: str) -> bool:
        return await self.conversation.delete(message_id)

    async def add_reaction(self, message_id: str, type: str) -> bool:
        if self._is_bot(self.find(message_id)):
            return await self.bots.add_reaction(message_id, type)
        return await self.conversation.add_reaction(message_id, type)

    async def remove_reaction(self, message_id: str, reaction_id: str) -> bool:
        if self._is_bot(self.find(message_id)):
            return await self.bots.remove_reaction(reaction_id)
        return await self.conversation.remove_reaction(reaction_id)

    # ==========================================================
    # Lifecycle
    # ==========================================================

    async def open(self, channel_name: str) -> tuple[Message, ...]:
        await self.conversation.load(channel_name)
        if self.bots_enabled:
            await self.bots.start()
        logger.info("Feed opened | channel={} bots={}", channel_name, self.bots_enabled)
        return self.messages

    async def load_more(self) -> tuple[Message, ...]:
        """Page further back in the current conversation."""
        await self.conversation.load()
        return self.messages

    async def switch_channel(self, channel_name: str) -> tuple[Message, ...]:
        await self.conversation.load(channel_name)
        return self.messages

    async def close(self) -> None:
        if self.bots is not None:
            await self.bots.stop()
        self.conversation.close()
        self._anchor_sub.release()
        logger.info("Feed closed")

    async def __aenter__(self) -> "FeedCompositor":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ----------------------------------------------------------

    def _on_conversation_change(self, conversation: ConversationViewModel) -> None:
        if not self.bots_enabled or not conversation.messages:
            return
        self.bots.set_anchor(min(m.created_at for m in conversation.messages))
