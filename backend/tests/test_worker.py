"""Tests for the leave adjudication worker: settlement, retry and dead-lettering."""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from conftest import seed_leave_request

from workforce.config import Settings
from workforce.exceptions import BadRequestError, ConflictError, NotFoundError
from workforce.idempotency import record_key
from workforce.messaging import LAST_ERROR_HEADER, ORIGINAL_QUEUE_HEADER, RETRY_COUNT_HEADER
from workforce.models import LeaveRequest, LeaveStatus
from workforce.worker import (
    FailureKind,
    LeaveAdjudicationWorker,
    MessageOutcome,
    PermanentMessageError,
    classify_failure,
    compute_backoff,
    parse_message,
    read_retry_count,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from workforce.cache import InMemoryCache
    from workforce.messaging import IncomingMessage, InMemoryMessageChannel
    from workforce.models import Employee
    from workforce.schemas.leave_request import LeaveRequestMessage, LeaveRequestResponse

QUEUE = "leave_requests"
DLQ = "leave_requests_dlq"


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "leave_queue_name": QUEUE,
        "leave_dlq_name": DLQ,
        "max_retries": 5,
        "retry_base_delay_seconds": 1.0,
        "retry_max_delay_seconds": 60.0,
    }
    values.update(overrides)
    return Settings(**values)


def _body(leave_id: uuid.UUID, key: str = "worker-key-1") -> bytes:
    return json.dumps({"idempotencyKey": key, "leaveId": str(leave_id)}).encode()


@pytest.fixture
def worker(
    session_factory: async_sessionmaker[AsyncSession],
    cache: InMemoryCache,
    channel: InMemoryMessageChannel,
) -> LeaveAdjudicationWorker:
    return LeaveAdjudicationWorker(session_factory, cache, channel, _settings())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_parse_message_reads_camel_case_fields() -> None:
    leave_id = uuid.uuid4()
    message = parse_message(_body(leave_id, "parse-key"))
    assert message.leave_id == leave_id
    assert message.idempotency_key == "parse-key"


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"{}",
        b'{"idempotencyKey": "abc"}',
        b'{"idempotencyKey": "", "leaveId": "0b7d3a52-51b8-4c1e-a0a3-1ab1e0a4d3d1"}',
        b'{"idempotencyKey": "abc", "leaveId": "not-a-uuid"}',
        b"\xff\xfe",
    ],
)
def test_parse_message_rejects_malformed_bodies(body: bytes) -> None:
    with pytest.raises(PermanentMessageError):
        parse_message(body)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (PermanentMessageError("bad"), FailureKind.PERMANENT),
        (BadRequestError("not pending"), FailureKind.PERMANENT),
        (ConflictError("replay"), FailureKind.PERMANENT),
        (NotFoundError("missing"), FailureKind.TRANSIENT),
        (ConnectionError("store down"), FailureKind.TRANSIENT),
    ],
)
def test_classify_failure(exc: Exception, expected: FailureKind) -> None:
    assert classify_failure(exc) is expected


@pytest.mark.parametrize(
    ("retry_count", "expected"),
    [(0, 0.0), (1, 1.0), (2, 2.0), (3, 4.0), (5, 16.0), (7, 60.0), (20, 60.0)],
)
def test_compute_backoff(retry_count: int, expected: float) -> None:
    assert compute_backoff(retry_count, 1.0, 60.0) == expected


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({}, 0),
        ({RETRY_COUNT_HEADER: 3}, 3),
        ({RETRY_COUNT_HEADER: "2"}, 2),
        ({RETRY_COUNT_HEADER: b"4"}, 4),
        ({RETRY_COUNT_HEADER: "garbage"}, 0),
        ({RETRY_COUNT_HEADER: -2}, 0),
    ],
)
def test_read_retry_count(headers: dict[str, Any], expected: int) -> None:
    assert read_retry_count(headers) == expected


# ---------------------------------------------------------------------------
# Successful processing
# ---------------------------------------------------------------------------


async def test_pending_leave_is_approved_and_acked(
    worker: LeaveAdjudicationWorker,
    session_factory: async_sessionmaker[AsyncSession],
    cache: InMemoryCache,
    channel: InMemoryMessageChannel,
    employee: Employee,
) -> None:
    leave = await seed_leave_request(session_factory, employee.id)
    message = channel.deliver(QUEUE, _body(leave.id, "approve-via-worker"))

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.ACKED
    assert message.acked is True
    assert message.rejected is False
    async with session_factory() as session:
        stored = await session.get(LeaveRequest, leave.id)
        assert stored is not None
        assert stored.status == LeaveStatus.APPROVED
    assert await cache.get(record_key("leaverequest:update", "approve-via-worker")) is not None
    assert channel.published == []


async def test_concurrently_adjudicated_leave_is_acked(
    worker: LeaveAdjudicationWorker,
    session_factory: async_sessionmaker[AsyncSession],
    channel: InMemoryMessageChannel,
    employee: Employee,
) -> None:
    leave = await seed_leave_request(session_factory, employee.id)
    worker.adjudicate = AsyncMock(return_value=None)  # type: ignore[method-assign]
    message = channel.deliver(QUEUE, _body(leave.id))

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.ACKED
    assert message.acked is True
    assert channel.published == []


# ---------------------------------------------------------------------------
# Retry path
# ---------------------------------------------------------------------------


async def test_first_failure_is_republished_with_retry_count(
    worker: LeaveAdjudicationWorker,
    channel: InMemoryMessageChannel,
) -> None:
    worker.adjudicate = AsyncMock(side_effect=ConnectionError("store down"))  # type: ignore[method-assign]
    body = _body(uuid.uuid4())
    message = channel.deliver(QUEUE, body)

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.RETRIED
    assert message.acked is True
    [retry] = channel.messages(QUEUE)
    assert retry.body == body
    assert retry.headers[RETRY_COUNT_HEADER] == 1
    assert retry.headers[LAST_ERROR_HEADER] == "store down"
    assert retry.persistent is True
    assert retry.delay_seconds == 1.0


async def test_retry_preserves_headers_and_increments_count(
    worker: LeaveAdjudicationWorker,
    channel: InMemoryMessageChannel,
) -> None:
    worker.adjudicate = AsyncMock(side_effect=ConnectionError("store down"))  # type: ignore[method-assign]
    message = channel.deliver(QUEUE, _body(uuid.uuid4()), {RETRY_COUNT_HEADER: 3, "x-trace": "abc"})

    await worker.handle_message(message)

    [retry] = channel.messages(QUEUE)
    assert retry.headers[RETRY_COUNT_HEADER] == 4
    assert retry.headers["x-trace"] == "abc"
    assert retry.delay_seconds == 8.0


async def test_malformed_body_enters_retry_path_by_default(
    worker: LeaveAdjudicationWorker,
    channel: InMemoryMessageChannel,
) -> None:
    message = channel.deliver(QUEUE, b"not json")

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.RETRIED
    [retry] = channel.messages(QUEUE)
    assert retry.body == b"not json"
    assert retry.headers[RETRY_COUNT_HEADER] == 1


async def test_unknown_leave_is_retried(
    worker: LeaveAdjudicationWorker,
    channel: InMemoryMessageChannel,
    employee: Employee,
) -> None:
    message = channel.deliver(QUEUE, _body(uuid.uuid4()))

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.RETRIED
    assert len(channel.messages(QUEUE)) == 1


# ---------------------------------------------------------------------------
# Dead-letter path
# ---------------------------------------------------------------------------


async def test_exhausted_retries_go_to_dead_letter_queue(
    worker: LeaveAdjudicationWorker,
    channel: InMemoryMessageChannel,
) -> None:
    worker.adjudicate = AsyncMock(side_effect=ConnectionError("store down"))  # type: ignore[method-assign]
    body = _body(uuid.uuid4())
    message = channel.deliver(QUEUE, body, {RETRY_COUNT_HEADER: 5})

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.DEAD_LETTERED
    assert message.acked is True
    assert channel.messages(QUEUE) == []
    [dead] = channel.messages(DLQ)
    assert dead.body == body
    assert dead.headers[ORIGINAL_QUEUE_HEADER] == QUEUE
    assert dead.headers[RETRY_COUNT_HEADER] == 5
    assert dead.persistent is True


async def test_fifth_retry_is_still_republished(
    worker: LeaveAdjudicationWorker,
    channel: InMemoryMessageChannel,
) -> None:
    worker.adjudicate = AsyncMock(side_effect=ConnectionError("store down"))  # type: ignore[method-assign]
    message = channel.deliver(QUEUE, _body(uuid.uuid4()), {RETRY_COUNT_HEADER: 4})

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.RETRIED
    assert channel.messages(DLQ) == []


async def test_drop_permanent_failures_goes_straight_to_dead_letter(
    session_factory: async_sessionmaker[AsyncSession],
    cache: InMemoryCache,
    channel: InMemoryMessageChannel,
) -> None:
    worker = LeaveAdjudicationWorker(
        session_factory, cache, channel, _settings(worker_drop_permanent_failures=True)
    )
    message = channel.deliver(QUEUE, b"not json")

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.DEAD_LETTERED
    assert channel.messages(QUEUE) == []
    assert len(channel.messages(DLQ)) == 1


async def test_drop_permanent_failures_still_retries_transient(
    session_factory: async_sessionmaker[AsyncSession],
    cache: InMemoryCache,
    channel: InMemoryMessageChannel,
) -> None:
    worker = LeaveAdjudicationWorker(
        session_factory, cache, channel, _settings(worker_drop_permanent_failures=True)
    )
    worker.adjudicate = AsyncMock(side_effect=ConnectionError("store down"))  # type: ignore[method-assign]
    message = channel.deliver(QUEUE, _body(uuid.uuid4()))

    assert await worker.handle_message(message) is MessageOutcome.RETRIED


# ---------------------------------------------------------------------------
# Publish failures
# ---------------------------------------------------------------------------


async def test_failed_retry_publish_requeues_original(
    worker: LeaveAdjudicationWorker,
    channel: InMemoryMessageChannel,
) -> None:
    worker.adjudicate = AsyncMock(side_effect=ConnectionError("store down"))  # type: ignore[method-assign]
    message = channel.deliver(QUEUE, _body(uuid.uuid4()))
    channel.publish = AsyncMock(side_effect=ConnectionError("broker down"))  # type: ignore[method-assign]

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.REQUEUED
    assert message.acked is False
    assert message.rejected is True
    assert message.requeued is True


async def test_failed_dead_letter_publish_requeues_original(
    worker: LeaveAdjudicationWorker,
    channel: InMemoryMessageChannel,
) -> None:
    worker.adjudicate = AsyncMock(side_effect=ConnectionError("store down"))  # type: ignore[method-assign]
    message = channel.deliver(QUEUE, _body(uuid.uuid4()), {RETRY_COUNT_HEADER: 5})
    channel.publish = AsyncMock(side_effect=ConnectionError("broker down"))  # type: ignore[method-assign]

    outcome = await worker.handle_message(message)

    assert outcome is MessageOutcome.REQUEUED
    assert message.acked is False
    assert message.requeued is True


# ---------------------------------------------------------------------------
# Consumer loop
# ---------------------------------------------------------------------------


async def test_run_processes_queued_messages(
    worker: LeaveAdjudicationWorker,
    session_factory: async_sessionmaker[AsyncSession],
    channel: InMemoryMessageChannel,
    employee: Employee,
) -> None:
    first = await seed_leave_request(session_factory, employee.id)
    second = await seed_leave_request(session_factory, employee.id)
    channel.deliver(QUEUE, _body(first.id, "run-key-0001"))
    channel.deliver(QUEUE, _body(second.id, "run-key-0002"))

    await worker.run(limit=2)

    assert channel.pending(QUEUE) == 0
    async with session_factory() as session:
        for leave_id in (first.id, second.id):
            stored = await session.get(LeaveRequest, leave_id)
            assert stored is not None
            assert stored.status == LeaveStatus.APPROVED


async def test_replayed_message_is_retried_not_reapplied(
    worker: LeaveAdjudicationWorker,
    session_factory: async_sessionmaker[AsyncSession],
    channel: InMemoryMessageChannel,
    employee: Employee,
) -> None:
    leave = await seed_leave_request(session_factory, employee.id)
    body = _body(leave.id, "replayed-key")

    assert await worker.handle_message(channel.deliver(QUEUE, body)) is MessageOutcome.ACKED
    assert await worker.handle_message(channel.deliver(QUEUE, body)) is MessageOutcome.RETRIED

    [retry] = channel.messages(QUEUE)
    assert "Duplicate request" in retry.headers[LAST_ERROR_HEADER]


async def test_message_succeeds_after_transient_failures(
    session_factory: async_sessionmaker[AsyncSession],
    cache: InMemoryCache,
    channel: InMemoryMessageChannel,
    employee: Employee,
) -> None:
    worker = LeaveAdjudicationWorker(
        session_factory, cache, channel, _settings(retry_base_delay_seconds=0.01, retry_max_delay_seconds=0.05)
    )
    leave = await seed_leave_request(session_factory, employee.id)
    real_adjudicate = worker.adjudicate
    attempts = 0

    async def _flaky_adjudicate(message: LeaveRequestMessage) -> LeaveRequestResponse | None:
        nonlocal attempts
        attempts += 1
        if attempts <= 2:
            raise ConnectionError("store down")
        return await real_adjudicate(message)

    settled: list[tuple[int, MessageOutcome]] = []
    real_handle = worker.handle_message

    async def _recording_handle(message: IncomingMessage) -> MessageOutcome:
        outcome = await real_handle(message)
        settled.append((read_retry_count(message.headers), outcome))
        return outcome

    worker.adjudicate = _flaky_adjudicate  # type: ignore[method-assign]
    worker.handle_message = _recording_handle  # type: ignore[method-assign]
    channel.deliver(QUEUE, _body(leave.id, "flaky-key-0001"))

    await asyncio.wait_for(worker.run(limit=3), timeout=5)

    assert settled == [
        (0, MessageOutcome.RETRIED),
        (1, MessageOutcome.RETRIED),
        (2, MessageOutcome.ACKED),
    ]
    assert [m.headers[RETRY_COUNT_HEADER] for m in channel.messages(QUEUE)] == [1, 2]
    assert channel.messages(DLQ) == []
    async with session_factory() as session:
        stored = await session.get(LeaveRequest, leave.id)
        assert stored is not None
        assert stored.status == LeaveStatus.APPROVED
