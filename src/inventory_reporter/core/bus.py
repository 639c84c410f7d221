"""
Asyncio-based event bus that carries signal updates to the delivery coordinator.

Signal sources publish typed payloads on fixed topics; consumers register
explicit subscriptions and hand the returned handle back to `unsubscribe`
when they tear down. Every handler runs on the bus' event loop, so state owned
by a consumer is only ever touched from one execution context.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from asyncio import QueueEmpty
from collections import defaultdict
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from dataclasses import dataclass

from .contracts import BasePayload, EventHandler

logger = logging.getLogger(__name__)


Handler = Callable[[str, BasePayload], Awaitable[None] | None]


@dataclass(frozen=True)
class Subscription:
    """Handle for a topic subscription."""

    topic: str
    handler: EventHandler


class EventBus:
    """
    Minimal asynchronous publish/subscribe bus.

    Topics are matched exactly. Events are dispatched in publish order; each
    handler invocation is scheduled as its own task on the bus loop.
    """

    def __init__(self, *, queue_size: int = 256) -> None:
        self._queue: asyncio.Queue[tuple[str, BasePayload]] = asyncio.Queue(maxsize=queue_size)
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._handler_tasks: set[asyncio.Task[None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._published_total = 0
        self._processed_total = 0
        self._dropped_total = 0

    @property
    def running(self) -> bool:
        return self._dispatcher_task is not None

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        """Register a handler for a topic."""
        self._subscribers[topic].append(handler)
        logger.debug("Subscribed handler %s to topic %s", handler, topic)
        return Subscription(topic=topic, handler=handler)

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a previously registered handler."""
        handlers = self._subscribers.get(subscription.topic, [])
        if subscription.handler in handlers:
            handlers.remove(subscription.handler)
            logger.debug(
                "Unsubscribed handler %s from topic %s", subscription.handler, subscription.topic
            )

    def subscriber_count(self, topic: str | None = None) -> int:
        if topic is not None:
            return len(self._subscribers.get(topic, []))
        return sum(len(handlers) for handlers in self._subscribers.values())

    async def publish(self, topic: str, payload: BasePayload) -> None:
        """Publish a payload for a specific topic."""
        self._published_total += 1
        if self._queue.full():
            logger.warning("Event bus queue is full; publisher will wait for free space.")
        await self._queue.put((topic, payload))
        logger.debug("Queued payload for topic %s", topic)

    def publish_threadsafe(self, topic: str, payload: BasePayload) -> Future[None]:
        """
        Publish from a thread that does not own the bus loop.

        OS-level callbacks usually arrive on their own delivery threads; this
        hops them onto the coordination loop instead of touching bus state
        directly. The caller may block on the returned future, the loop never
        blocks on the caller.
        """
        if self._loop is None:
            raise RuntimeError("EventBus has not been started.")
        return asyncio.run_coroutine_threadsafe(self.publish(topic, payload), self._loop)

    async def start(self) -> None:
        """Start the dispatcher loop."""
        if self._dispatcher_task is None:
            self._loop = asyncio.get_running_loop()
            self._dispatcher_task = asyncio.create_task(
                self._dispatcher(), name="inventory-reporter-bus"
            )
            logger.info("Event bus dispatcher started.")

    async def stop(self) -> None:
        """Stop the dispatcher loop and drop remaining events."""
        if self._dispatcher_task is None:
            return
        await self._queue.put(("", _StopPayload()))
        await self._dispatcher_task
        self._dispatcher_task = None
        # Wait for any in-flight handler tasks to complete
        if self._handler_tasks:
            pending = list(self._handler_tasks)
            self._handler_tasks.clear()
            await asyncio.gather(*pending, return_exceptions=True)
        self._loop = None
        logger.info(
            "Event bus dispatcher stopped (published=%d processed=%d dropped=%d).",
            self._published_total,
            self._processed_total,
            self._dropped_total,
        )

    async def _dispatcher(self) -> None:
        """Internal dispatcher loop that fans out events to subscribers."""
        while True:
            topic, payload = await self._queue.get()
            try:
                if isinstance(payload, _StopPayload):
                    break

                handlers = list(self._subscribers.get(topic, []))
                logger.debug("Dispatching payload on topic %s to %d handlers", topic, len(handlers))
                if not handlers:
                    continue

                # Handlers may publish back into the bus, so never await them inline.
                for handler in handlers:
                    task = asyncio.create_task(self._call_handler(handler, topic, payload))
                    self._handler_tasks.add(task)

                    def _on_done(t: asyncio.Task[None], _topic: str = topic) -> None:
                        self._handler_tasks.discard(t)
                        if t.cancelled():
                            return
                        exc = t.exception()
                        if exc is not None:
                            logger.error(
                                "Subscriber handler failed on topic %s", _topic, exc_info=exc
                            )

                    task.add_done_callback(_on_done)
                self._processed_total += 1
            finally:
                self._queue.task_done()
        while not self._queue.empty():
            with contextlib.suppress(QueueEmpty):
                self._queue.get_nowait()
                self._dropped_total += 1
                self._queue.task_done()

    async def _call_handler(self, handler: Handler, topic: str, payload: BasePayload) -> None:
        """
        Invoke a handler that may be sync or async. If it returns an awaitable, await it;
        otherwise execute synchronously.
        """
        result = handler(topic, payload)
        if inspect.isawaitable(result):
            await result


class _StopPayload(BasePayload):
    """Sentinel payload to signal dispatcher shutdown."""

    pass
