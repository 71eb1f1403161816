# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlmodel import col

from workforce.config import get_settings
from workforce.exceptions import BadRequestError, NotFoundError
from workforce.idempotency import IdempotencyGuard, Namespace, now_utc
from workforce.models.employee import Employee
from workforce.models.enums import LeaveStatus
from workforce.models.leave_request import LeaveRequest
from workforce.schemas.leave_request import LeaveRequestMessage, LeaveRequestResponse
from workforce.services.cache_policy import invalidate_department_employee_caches

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from workforce.cache import CacheGateway
    from workforce.messaging import MessageChannel
    from workforce.schemas.leave_request import CreateLeaveRequestPayload

logger = logging.getLogger(__name__)

# Leaves shorter than this are auto-adjudicated by the worker.
SHORT_LEAVE_THRESHOLD = timedelta(days=2)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_leave_request_response(leave: LeaveRequest) -> LeaveRequestResponse:
    """Map a leave request model to its response schema."""
    return LeaveRequestResponse(
        id=leave.id,
        employee_id=leave.employee_id,
        start_date=leave.start_date,
        end_date=leave.end_date,
        status=LeaveStatus(leave.status),
    )


async def _get_leave_request_or_404(session: AsyncSession, leave_id: uuid.UUID) -> LeaveRequest:
    """Fetch a leave request by ID. Raises 404 if not found."""
    leave = await session.get(LeaveRequest, leave_id)
    if leave is None:
        raise NotFoundError(f"Leave request with ID {leave_id} not found")
    return leave


async def _commit(session: AsyncSession) -> None:
    """Commit the unit of work, rolling back before re-raising on failure."""
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise


def is_short_leave(start_date: date, end_date: date) -> bool:
    """Whether a leave is short enough to be approved without a manager."""
    return end_date - start_date < SHORT_LEAVE_THRESHOLD


async def enqueue_adjudication(channel: MessageChannel, idempotency_key: str, leave_id: uuid.UUID) -> None:
    """Publish a leave request to the adjudication queue."""
    settings = get_settings()
    message = LeaveRequestMessage(idempotency_key=idempotency_key, leave_id=leave_id)
    await channel.publish(
        settings.leave_queue_name,
        message.model_dump_json(by_alias=True).encode("utf-8"),
        persistent=True,
    )
    logger.info("Queued leave request %s for adjudication", leave_id)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def create_leave_request(
    session: AsyncSession,
    cache: CacheGateway,
    channel: MessageChannel,
    payload: CreateLeaveRequestPayload,
    idempotency_key: str,
) -> LeaveRequestResponse:
    """Create a PENDING leave request.

    Flow:
    1. Reject a replayed idempotency key (409)
    2. Resolve the employee (404)
    3. Validate the date range (400)
    4. Insert and commit
    5. Record the idempotency key
    6. Invalidate the employee's department listings
    7. Queue short leaves for automatic approval

    Steps 5-7 only happen once the commit has succeeded.
    """
    guard = IdempotencyGuard(cache)
    await guard.ensure_not_done(Namespace.LEAVE_REQUEST_CREATE, idempotency_key)

    employee = await session.get(Employee, payload.employee_id)
    if employee is None:
        raise NotFoundError(f"Employee with ID {payload.employee_id} not found")
    department_id = employee.department_id

    if payload.start_date >= payload.end_date:
        raise BadRequestError("End date must be after start date")

    leave = LeaveRequest(
        employee_id=payload.employee_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=LeaveStatus.PENDING.value,
    )
    session.add(leave)
    await _commit(session)

    await guard.record(
        Namespace.LEAVE_REQUEST_CREATE,
        idempotency_key,
        {"leaveRequestId": leave.id, "createdAt": now_utc()},
    )
    await invalidate_department_employee_caches(cache, department_id)

    if is_short_leave(leave.start_date, leave.end_date):
        await enqueue_adjudication(channel, idempotency_key, leave.id)

    return _build_leave_request_response(leave)


async def update_status(
    session: AsyncSession,
    cache: CacheGateway,
    leave_id: uuid.UUID,
    new_status: LeaveStatus,
    idempotency_key: str,
) -> LeaveRequestResponse | None:
    """Move a PENDING leave request to APPROVED or REJECTED.

    Returns None when the request was adjudicated concurrently between the
    status check and the conditional update. That path records nothing and
    leaves caches untouched.
    """
    guard = IdempotencyGuard(cache)
    await guard.ensure_not_done(Namespace.LEAVE_REQUEST_UPDATE, idempotency_key)

    leave = await _get_leave_request_or_404(session, leave_id)

    current_status = LeaveStatus(leave.status)
    if current_status != LeaveStatus.PENDING:
        raise BadRequestError(
            f"Cannot update leave request status from {current_status} to {new_status}. "
            "Only PENDING requests can be updated."
        )
    if new_status == LeaveStatus.PENDING:
        raise BadRequestError("Leave requests can only be moved to APPROVED or REJECTED")

    result = await session.execute(
        update(LeaveRequest)
        .where(
            col(LeaveRequest.id) == leave_id,
            col(LeaveRequest.status) == LeaveStatus.PENDING.value,
        )
        .values(status=new_status.value)
        .execution_options(synchronize_session=False)
    )
    updated_rows = result.rowcount  # type: ignore[attr-defined]
    await _commit(session)

    if not updated_rows:
        logger.info("Leave request %s was adjudicated concurrently; skipping", leave_id)
        return None

    await session.refresh(leave)

    await guard.record(
        Namespace.LEAVE_REQUEST_UPDATE,
        idempotency_key,
        {"leaveRequestId": leave.id, "updatedAt": now_utc(), "status": new_status},
    )

    employee = await session.get(Employee, leave.employee_id)
    if employee is not None:
        await invalidate_department_employee_caches(cache, employee.department_id)

    logger.info("Leave request %s moved from %s to %s", leave_id, current_status, new_status)
    return _build_leave_request_response(leave)


async def delete_leave_request(
    session: AsyncSession,
    cache: CacheGateway,
    leave_id: uuid.UUID,
    idempotency_key: str,
) -> None:
    """Delete a leave request and invalidate its department's listings.

    The owning employee is resolved before the delete so the department is
    still known afterwards.
    """
    guard = IdempotencyGuard(cache)
    await guard.ensure_not_done(Namespace.LEAVE_REQUEST_DELETE, idempotency_key)

    leave = await _get_leave_request_or_404(session, leave_id)
    employee = await session.get(Employee, leave.employee_id)
    department_id = employee.department_id if employee is not None else None

    await session.delete(leave)
    await _commit(session)

    await guard.record(
        Namespace.LEAVE_REQUEST_DELETE,
        idempotency_key,
        {"leaveRequestId": leave_id, "deletedAt": now_utc()},
    )
    await invalidate_department_employee_caches(cache, department_id)


async def get_leave_request(session: AsyncSession, leave_id: uuid.UUID) -> LeaveRequestResponse:
    """Get a single leave request."""
    leave = await _get_leave_request_or_404(session, leave_id)
    return _build_leave_request_response(leave)


async def list_leave_requests_for_employee(
    session: AsyncSession,
    employee_id: uuid.UUID,
) -> list[LeaveRequestResponse]:
    """All leave requests of an employee, oldest first."""
    result = await session.execute(
        select(LeaveRequest)
        .where(col(LeaveRequest.employee_id) == employee_id)
        .order_by(col(LeaveRequest.start_date), col(LeaveRequest.id))
    )
    return [_build_leave_request_response(leave) for leave in result.scalars().all()]
