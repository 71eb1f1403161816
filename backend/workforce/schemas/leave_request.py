# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date
from typing import Literal

from pydantic import Field

from workforce.models.enums import LeaveStatus
from workforce.schemas.common import CamelModel

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class CreateLeaveRequestPayload(CamelModel):
    """Request body for creating a leave request.

    The date range is checked by the service, after the idempotency and
    employee checks, so that errors are reported in a fixed order.
    """

    employee_id: uuid.UUID
    start_date: date
    end_date: date


class UpdateLeaveStatusPayload(CamelModel):
    """Request body for adjudicating a pending leave request."""

    status: Literal["APPROVED", "REJECTED"]


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LeaveRequestResponse(CamelModel):
    """Response schema for a single leave request."""

    id: uuid.UUID
    employee_id: uuid.UUID
    start_date: date
    end_date: date
    status: LeaveStatus


# ---------------------------------------------------------------------------
# Queue messages
# ---------------------------------------------------------------------------


class LeaveRequestMessage(CamelModel):
    """Body of a message asking the worker to adjudicate a leave request."""

    idempotency_key: str = Field(min_length=1)
    leave_id: uuid.UUID
