"""Durable message channel used between the API and the adjudication worker.

The channel owns its broker connection. Callers receive it through
dependency injection and never touch connection state directly.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue, AbstractRobustConnection

logger = logging.getLogger(__name__)

RETRY_COUNT_HEADER = "x-retry-count"
ORIGINAL_QUEUE_HEADER = "x-original-queue"
LAST_ERROR_HEADER = "x-last-error"


def delay_queue_name(queue: str, delay_ms: int) -> str:
    """Name of the holding queue that releases messages into ``queue`` after ``delay_ms``."""
    return f"{queue}.delay.{delay_ms}"


@runtime_checkable
class IncomingMessage(Protocol):
    """A delivered message awaiting a manual acknowledgement decision."""

    @property
    def body(self) -> bytes: ...

    @property
    def headers(self) -> dict[str, Any]: ...

    async def ack(self) -> None:
        """Remove the message from its queue."""
        ...

    async def reject(self, requeue: bool = False) -> None:
        """Give the message back to the broker, or drop it."""
        ...


@runtime_checkable
class MessageChannel(Protocol):
    """Interface for the durable message channel."""

    async def publish(
        self,
        queue: str,
        body: bytes,
        *,
        headers: dict[str, Any] | None = None,
        persistent: bool = True,
        delay_seconds: float = 0,
    ) -> None:
        """Publish ``body`` to ``queue``, optionally after ``delay_seconds``."""
        ...

    def consume(self, queue: str) -> AsyncIterator[IncomingMessage]:
        """Yield messages from ``queue`` one at a time."""
        ...

    async def ping(self) -> bool:
        """Return True when the broker is reachable."""
        ...

    async def close(self) -> None:
        """Close the broker connection."""
        ...


# ---------------------------------------------------------------------------
# AMQP implementation
# ---------------------------------------------------------------------------


class AmqpIncomingMessage:
    """Adapter exposing an aio-pika delivery through ``IncomingMessage``."""

    def __init__(self, message: AbstractIncomingMessage) -> None:
        self._message = message

    @property
    def body(self) -> bytes:
        return self._message.body

    @property
    def headers(self) -> dict[str, Any]:
        return dict(self._message.headers or {})

    async def ack(self) -> None:
        await self._message.ack()

    async def reject(self, requeue: bool = False) -> None:
        await self._message.reject(requeue=requeue)


class AmqpMessageChannel:
    """RabbitMQ channel backed by aio-pika.

    The connection is created lazily on first use with ``connect_robust``,
    which re-establishes the connection and its channels after a failure.
    Delayed delivery parks a message in a TTL holding queue whose
    dead-letter route points back at the target queue.
    """

    def __init__(self, url: str, prefetch_count: int = 1) -> None:
        self._url = url
        self._prefetch_count = prefetch_count
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._queues: dict[str, AbstractQueue] = {}
        self._lock = asyncio.Lock()

    async def _get_channel(self) -> AbstractChannel:
        async with self._lock:
            if self._connection is None or self._connection.is_closed:
                self._connection = await aio_pika.connect_robust(self._url)
                self._channel = None
                self._queues.clear()
                logger.info("RabbitMQ connection established")
            if self._channel is None or self._channel.is_closed:
                self._channel = await self._connection.channel()
                await self._channel.set_qos(prefetch_count=self._prefetch_count)
                self._queues.clear()
            return self._channel

    async def _declare(
        self,
        channel: AbstractChannel,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> AbstractQueue:
        queue = self._queues.get(name)
        if queue is None:
            queue = await channel.declare_queue(name, durable=True, arguments=arguments)
            self._queues[name] = queue
        return queue

    async def publish(
        self,
        queue: str,
        body: bytes,
        *,
        headers: dict[str, Any] | None = None,
        persistent: bool = True,
        delay_seconds: float = 0,
    ) -> None:
        channel = await self._get_channel()
        await self._declare(channel, queue)

        routing_key = queue
        if delay_seconds > 0:
            delay_ms = int(delay_seconds * 1000)
            routing_key = delay_queue_name(queue, delay_ms)
            await self._declare(
                channel,
                routing_key,
                arguments={
                    "x-message-ttl": delay_ms,
                    "x-dead-letter-exchange": "",
                    "x-dead-letter-routing-key": queue,
                },
            )

        message = aio_pika.Message(
            body=body,
            headers=headers or {},
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT if persistent else aio_pika.DeliveryMode.NOT_PERSISTENT,
        )
        await channel.default_exchange.publish(message, routing_key=routing_key)

    async def consume(self, queue: str) -> AsyncIterator[IncomingMessage]:
        channel = await self._get_channel()
        declared = await self._declare(channel, queue)
        async with declared.iterator() as messages:
            async for message in messages:
                yield AmqpIncomingMessage(message)

    async def ping(self) -> bool:
        try:
            await self._get_channel()
        except Exception:
            logger.exception("RabbitMQ ping failed")
            return False
        return True

    async def close(self) -> None:
        async with self._lock:
            if self._connection is not None and not self._connection.is_closed:
                await self._connection.close()
                logger.info("RabbitMQ connection closed")
            self._connection = None
            self._channel = None
            self._queues.clear()


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


@dataclass
class PublishedMessage:
    """Record of a publish call on the in-memory channel."""

    queue: str
    body: bytes
    headers: dict[str, Any] = field(default_factory=dict)
    persistent: bool = True
    delay_seconds: float = 0


class InMemoryIncomingMessage:
    """Delivery from the in-memory channel that remembers how it was settled."""

    def __init__(self, channel: InMemoryMessageChannel, queue: str, body: bytes, headers: dict[str, Any]) -> None:
        self._channel = channel
        self._queue = queue
        self._body = body
        self._headers = headers
        self.acked = False
        self.rejected = False
        self.requeued = False

    @property
    def body(self) -> bytes:
        return self._body

    @property
    def headers(self) -> dict[str, Any]:
        return dict(self._headers)

    async def ack(self) -> None:
        self.acked = True

    async def reject(self, requeue: bool = False) -> None:
        self.rejected = True
        self.requeued = requeue
        if requeue:
            self._channel.deliver(self._queue, self._body, self._headers)


class InMemoryMessageChannel:
    """In-memory stub implementation for development and tests."""

    def __init__(self) -> None:
        self.published: list[PublishedMessage] = []
        self._queues: dict[str, asyncio.Queue[InMemoryIncomingMessage | None]] = {}
        self._closed = False

    def _queue(self, name: str) -> asyncio.Queue[InMemoryIncomingMessage | None]:
        if name not in self._queues:
            self._queues[name] = asyncio.Queue()
        return self._queues[name]

    def deliver(self, queue: str, body: bytes, headers: dict[str, Any] | None = None) -> InMemoryIncomingMessage:
        """Place a message directly on ``queue`` without recording a publish."""
        message = InMemoryIncomingMessage(self, queue, body, dict(headers or {}))
        self._queue(queue).put_nowait(message)
        return message

    def messages(self, queue: str) -> list[PublishedMessage]:
        """All messages published to ``queue`` so far, in order."""
        return [m for m in self.published if m.queue == queue]

    def pending(self, queue: str) -> int:
        """Number of deliveries waiting on ``queue``."""
        return self._queue(queue).qsize()

    async def publish(
        self,
        queue: str,
        body: bytes,
        *,
        headers: dict[str, Any] | None = None,
        persistent: bool = True,
        delay_seconds: float = 0,
    ) -> None:
        headers = dict(headers or {})
        self.published.append(
            PublishedMessage(queue=queue, body=body, headers=headers, persistent=persistent, delay_seconds=delay_seconds)
        )
        if delay_seconds > 0:
            asyncio.get_running_loop().call_later(delay_seconds, self.deliver, queue, body, headers)
        else:
            self.deliver(queue, body, headers)

    async def consume(self, queue: str) -> AsyncIterator[IncomingMessage]:
        source = self._queue(queue)
        while not self._closed:
            message = await source.get()
            if message is None:
                break
            yield message

    async def ping(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        """Stop consumers, including those waiting on an empty queue."""
        self._closed = True
        for source in self._queues.values():
            source.put_nowait(None)


_channel: MessageChannel = InMemoryMessageChannel()


def get_message_channel() -> MessageChannel:
    """FastAPI dependency for the message channel."""
    return _channel


def set_message_channel(channel: MessageChannel) -> None:
    """Override the channel (for testing or production wiring)."""
    global _channel
    _channel = channel
