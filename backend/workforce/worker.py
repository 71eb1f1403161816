"""Worker process that auto-adjudicates short leave requests.

Consumes ``{"idempotencyKey", "leaveId"}`` messages from the leave queue and
approves the referenced request. Every message is acknowledged only after
its outcome is decided:

* success: ack;
* failure below the retry limit: re-publish with ``x-retry-count`` + 1 after
  an exponential backoff delay, then ack the original;
* failure above the retry limit: publish to the dead-letter queue with
  ``x-original-queue``, then ack the original;
* failure to publish the retry or dead-letter copy: reject with requeue so
  the broker redelivers the original.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from workforce.config import Settings, get_settings
from workforce.exceptions import BadRequestError, ConflictError
from workforce.messaging import LAST_ERROR_HEADER, ORIGINAL_QUEUE_HEADER, RETRY_COUNT_HEADER
from workforce.models.enums import LeaveStatus
from workforce.schemas.leave_request import LeaveRequestMessage
from workforce.services.leave_request import update_status

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from workforce.cache import CacheGateway
    from workforce.messaging import IncomingMessage, MessageChannel
    from workforce.schemas.leave_request import LeaveRequestResponse

logger = logging.getLogger(__name__)

MAX_ERROR_HEADER_LENGTH = 255


class MessageOutcome(enum.StrEnum):
    """How a delivered message was settled."""

    ACKED = "ACKED"
    RETRIED = "RETRIED"
    DEAD_LETTERED = "DEAD_LETTERED"
    REQUEUED = "REQUEUED"


class FailureKind(enum.StrEnum):
    """Whether retrying a failed message can change the result."""

    PERMANENT = "PERMANENT"
    TRANSIENT = "TRANSIENT"


class PermanentMessageError(Exception):
    """The message body can never be processed (bad JSON, missing fields)."""


def parse_message(body: bytes) -> LeaveRequestMessage:
    """Decode a queue message body. Raises PermanentMessageError when malformed."""
    try:
        return LeaveRequestMessage.model_validate_json(body)
    except (ValidationError, UnicodeDecodeError) as exc:
        msg = f"Malformed leave request message: {exc}"
        raise PermanentMessageError(msg) from exc


def classify_failure(exc: BaseException) -> FailureKind:
    """Malformed messages, invalid transitions and replayed keys are permanent.

    Everything else, including a missing leave request that may simply not be
    visible yet and store/cache outages, is transient.
    """
    if isinstance(exc, (PermanentMessageError, BadRequestError, ConflictError)):
        return FailureKind.PERMANENT
    return FailureKind.TRANSIENT


def compute_backoff(retry_count: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay before retry number ``retry_count`` (1-based), capped at ``max_delay``."""
    if retry_count < 1:
        return 0.0
    return min(base_delay * 2 ** (retry_count - 1), max_delay)


def read_retry_count(headers: dict[str, Any]) -> int:
    """Retry count carried by a message; absent or unreadable counts as 0."""
    raw = headers.get(RETRY_COUNT_HEADER)
    if raw is None:
        return 0
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return max(int(raw), 0)
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable %s header: %r", RETRY_COUNT_HEADER, raw)
        return 0


class LeaveAdjudicationWorker:
    """Consumes the leave queue and applies automatic approvals."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheGateway,
        channel: MessageChannel,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._channel = channel
        self._settings = settings or get_settings()

    @property
    def queue_name(self) -> str:
        return self._settings.leave_queue_name

    @property
    def dead_letter_queue_name(self) -> str:
        return self._settings.leave_dlq_name

    async def adjudicate(self, message: LeaveRequestMessage) -> LeaveRequestResponse | None:
        """Approve the referenced leave request in a fresh session."""
        async with self._session_factory() as session:
            return await update_status(
                session,
                self._cache,
                message.leave_id,
                LeaveStatus.APPROVED,
                message.idempotency_key,
            )

    async def handle_message(self, message: IncomingMessage) -> MessageOutcome:
        """Process one delivery and settle it. Never raises for processing errors."""
        try:
            payload = parse_message(message.body)
            logger.info("Received leave request %s (key %s)", payload.leave_id, payload.idempotency_key)
            result = await self.adjudicate(payload)
        except Exception as exc:
            logger.exception("Error processing message")
            return await self._handle_failure(message, exc)

        if result is None:
            logger.info("Leave request %s was no longer pending; nothing to do", payload.leave_id)
        await message.ack()
        return MessageOutcome.ACKED

    async def _handle_failure(self, message: IncomingMessage, exc: Exception) -> MessageOutcome:
        headers = message.headers
        retry_count = read_retry_count(headers) + 1
        kind = classify_failure(exc)

        drop_now = kind is FailureKind.PERMANENT and self._settings.worker_drop_permanent_failures
        if retry_count > self._settings.max_retries or drop_now:
            return await self._dead_letter(message, headers, retry_count, kind)

        delay = compute_backoff(
            retry_count,
            self._settings.retry_base_delay_seconds,
            self._settings.retry_max_delay_seconds,
        )
        retry_headers = {
            **headers,
            RETRY_COUNT_HEADER: retry_count,
            LAST_ERROR_HEADER: str(exc)[:MAX_ERROR_HEADER_LENGTH],
        }
        try:
            await self._channel.publish(
                self.queue_name,
                message.body,
                headers=retry_headers,
                persistent=True,
                delay_seconds=delay,
            )
        except Exception:
            logger.exception("Could not schedule retry; returning message to the broker")
            await message.reject(requeue=True)
            return MessageOutcome.REQUEUED

        logger.warning(
            "Retrying message (%d/%d) in %.1fs after %s failure",
            retry_count,
            self._settings.max_retries,
            delay,
            kind.value.lower(),
        )
        await message.ack()
        return MessageOutcome.RETRIED

    async def _dead_letter(
        self,
        message: IncomingMessage,
        headers: dict[str, Any],
        retry_count: int,
        kind: FailureKind,
    ) -> MessageOutcome:
        dlq_headers = {**headers, ORIGINAL_QUEUE_HEADER: self.queue_name}
        try:
            await self._channel.publish(
                self.dead_letter_queue_name,
                message.body,
                headers=dlq_headers,
                persistent=True,
            )
        except Exception:
            logger.exception("Could not publish to dead-letter queue; returning message to the broker")
            await message.reject(requeue=True)
            return MessageOutcome.REQUEUED

        logger.warning(
            "Sent message to %s after %d attempts (%s failure): %s",
            self.dead_letter_queue_name,
            retry_count,
            kind.value.lower(),
            message.body.decode("utf-8", errors="replace"),
        )
        await message.ack()
        return MessageOutcome.DEAD_LETTERED

    async def run(self, limit: int | None = None) -> None:
        """Consume the leave queue one message at a time.

        Runs until the channel stops yielding, or after ``limit`` messages.
        """
        logger.info("Leave adjudication worker consuming %s", self.queue_name)
        handled = 0
        async for message in self._channel.consume(self.queue_name):
            try:
                await self.handle_message(message)
            except Exception:
                # Settling failed; the broker redelivers unacknowledged messages.
                logger.exception("Failed to settle message")
            handled += 1
            if limit is not None and handled >= limit:
                break


async def run_worker() -> None:
    """Wire store, cache and broker, then consume until cancelled."""
    from workforce.cache import RedisCache
    from workforce.db import dispose_engine, get_session_factory
    from workforce.messaging import AmqpMessageChannel

    settings = get_settings()
    cache = RedisCache.from_url(settings.redis_url)
    channel = AmqpMessageChannel(settings.rabbitmq_url)
    worker = LeaveAdjudicationWorker(get_session_factory(), cache, channel, settings)

    logger.info("Starting worker...")
    try:
        await worker.run()
    finally:
        await channel.close()
        await cache.close()
        await dispose_engine()
        logger.info("Worker stopped")


def main() -> None:
    """Entry point for the worker process."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")


if __name__ == "__main__":
    main()
