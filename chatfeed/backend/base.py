"""Real-time chat backend contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Literal, Optional

from chatfeed.bus.events import Message, MessageEvent, MessageKind, ReactionEvent, ReactionKind
from chatfeed.bus.queue import Subscription


MessageListener = Callable[[MessageEvent], None]
ReactionListener = Callable[[ReactionEvent], None]

Direction = Literal["backwards", "forwards"]


class ConversationBackend(ABC):
    """
    One conversation on the hosted messaging service.

    Contract:
        - Writes do not return state; their effect arrives back as events
        - subscribe* return handles the caller must release
        - Transport failures raise BackendError
    """

    def __init__(self, channel_name: str):
        self.channel_name = channel_name

    # =============================
    # History
    # =============================

    @abstractmethod
    async def query(
        self,
        limit: int = 100,
        direction: Direction = "backwards",
        start_id: Optional[str] = None,
    ) -> list[Message]:
        """
        Fetch one page of history.

        backwards: newest first, strictly older than `start_id` if given.
        forwards:  oldest first, strictly newer than `start_id` if given.
        """
        ...

    # =============================
    # Writes
    # =============================

    @abstractmethod
    async def send(self, text: str) -> None:
        ...

    @abstractmethod
    async def edit(self, message_id: str, text: str) -> None:
        ...

    @abstractmethod
    async def delete(self, message_id: str) -> None:
        ...

    @abstractmethod
    async def add_reaction(self, message_id: str, type: str) -> None:
        ...

    @abstractmethod
    async def remove_reaction(self, reaction_id: str) -> None:
        ...

    # =============================
    # Subscriptions
    # =============================

    @abstractmethod
    def subscribe(self, kind: MessageKind, listener: MessageListener) -> Subscription:
        ...

    @abstractmethod
    def subscribe_reactions(self, kind: ReactionKind, listener: ReactionListener) -> Subscription:
        ...


class ChatClient(ABC):
    """Authenticated connection to the messaging service."""

    def __init__(self, client_id: str):
        self.client_id = client_id

    @abstractmethod
    def get_conversation(self, channel_name: str) -> ConversationBackend:
        ...
