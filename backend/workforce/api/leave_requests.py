# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Response, status

from workforce.api.deps import CacheDep, ChannelDep, IdempotencyKeyDep
from workforce.db import SessionDep
from workforce.models.enums import LeaveStatus
from workforce.schemas.leave_request import (
    CreateLeaveRequestPayload,
    LeaveRequestResponse,
    UpdateLeaveStatusPayload,
)
from workforce.services import leave_request as leave_request_service

leave_requests_router = APIRouter(prefix="/leave-requests", tags=["leave-requests"])


@leave_requests_router.post("", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_leave_request(
    payload: CreateLeaveRequestPayload,
    session: SessionDep,
    cache: CacheDep,
    channel: ChannelDep,
    idempotency_key: IdempotencyKeyDep,
) -> LeaveRequestResponse:
    """Submit a leave request. Short leaves are queued for automatic approval."""
    return await leave_request_service.create_leave_request(session, cache, channel, payload, idempotency_key)


@leave_requests_router.get("/{leave_id}", response_model=LeaveRequestResponse)
async def get_leave_request(leave_id: uuid.UUID, session: SessionDep) -> LeaveRequestResponse:
    """Get a single leave request."""
    return await leave_request_service.get_leave_request(session, leave_id)


@leave_requests_router.patch(
    "/{leave_id}/status",
    response_model=LeaveRequestResponse,
    responses={status.HTTP_204_NO_CONTENT: {"description": "Request was adjudicated concurrently"}},
)
async def update_leave_request_status(
    leave_id: uuid.UUID,
    payload: UpdateLeaveStatusPayload,
    session: SessionDep,
    cache: CacheDep,
    idempotency_key: IdempotencyKeyDep,
) -> LeaveRequestResponse | Response:
    """Approve or reject a pending leave request."""
    updated = await leave_request_service.update_status(
        session, cache, leave_id, LeaveStatus(payload.status), idempotency_key
    )
    if updated is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return updated


@leave_requests_router.delete("/{leave_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_leave_request(
    leave_id: uuid.UUID,
    session: SessionDep,
    cache: CacheDep,
    idempotency_key: IdempotencyKeyDep,
) -> Response:
    """Delete a leave request."""
    await leave_request_service.delete_leave_request(session, cache, leave_id, idempotency_key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
