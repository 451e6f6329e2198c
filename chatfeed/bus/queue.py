"""
Async event bus with scoped subscriptions.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, DefaultDict, Optional, Union

from loguru import logger


Listener = Callable[[Any], Union[Awaitable[None], None]]


@dataclass(eq=False, slots=True)
class Subscription:
    """
    Deregistration handle returned by every subscribe call.

    The holder must release it on scope exit. Releasing is idempotent
    and also works as a context manager:

        with bus.subscribe("general:created", on_created):
            ...
    """

    topic: str
    listener: Listener
    _on_release: Optional[Callable[["Subscription"], None]] = field(
        default=None, repr=False
    )
    active: bool = True

    def release(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._on_release:
            self._on_release(self)
            self._on_release = None

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.release()


class EventBus:
    """
    Topic-based async event bus.

    Architecture:
        publish -> queue -> dispatcher -> active listeners of the topic

    Guarantees:
        - Events are dispatched one at a time in publish order
        - A listener failure is logged and never stops the dispatcher
        - Released subscriptions never see events still in the queue
    """

    def __init__(self, maxsize: int = 0):
        self.queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue(maxsize=maxsize)

        self._subscribers: DefaultDict[str, list[Subscription]] = defaultdict(list)
        self._running = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    async def start(self) -> None:
        """Start dispatcher loop."""
        if self._running.is_set():
            return
        self._running.set()
        self._task = asyncio.create_task(self._dispatch_loop(), name="event-bus")

    async def stop(self) -> None:
        """Stop dispatcher loop; queued events are dropped."""
        self._running.clear()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    # ---------------------------------------------------------------------
    # Subscriptions
    # ---------------------------------------------------------------------

    def subscribe(self, topic: str, listener: Listener) -> Subscription:
        """Register a listener for a topic and return its handle."""
        sub = Subscription(topic=topic, listener=listener, _on_release=self._remove)
        self._subscribers[topic].append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.topic)
        if subs and sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscribers.pop(sub.topic, None)

    def listener_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    # ---------------------------------------------------------------------
    # Publishing
    # ---------------------------------------------------------------------

    async def publish(self, topic: str, event: Any) -> None:
        await self.queue.put((topic, event))

    async def drain(self) -> None:
        """Wait until every queued event has been dispatched."""
        await self.queue.join()

    # ---------------------------------------------------------------------
    # Dispatcher
    # ---------------------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        logger.debug("EventBus dispatcher started")

        while self._running.is_set():
            try:
                topic, event = await self.queue.get()
            except asyncio.CancelledError:
                break

            try:
                subs = list(self._subscribers.get(topic, ()))
                if subs:
                    await self._fanout(event, subs)
            except asyncio.CancelledError:
                self.queue.task_done()
                break
            except Exception as e:
                logger.exception("EventBus dispatch error | topic={} err={}", topic, e)

            self.queue.task_done()

        logger.debug("EventBus dispatcher stopped")

    async def _fanout(self, event: Any, subs: list[Subscription]) -> None:
        for sub in subs:
            # released while an earlier listener of this event ran
            if not sub.active:
                continue
            await self._safe_call(sub, event)

    async def _safe_call(self, sub: Subscription, event: Any) -> None:
        try:
            result = sub.listener(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Listener failed | topic={} listener={}", sub.topic, sub.listener)

    @property
    def pending(self) -> int:
        return self.queue.qsize()
