# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import EmailStr, Field

from workforce.schemas.common import CamelModel
from workforce.schemas.leave_request import LeaveRequestResponse


class CreateEmployeePayload(CamelModel):
    """Request body for creating an employee."""

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr = Field(max_length=255)
    department_id: uuid.UUID


class EmployeeResponse(CamelModel):
    """Response schema for an employee."""

    id: uuid.UUID
    name: str
    email: str
    department_id: uuid.UUID
    created_at: datetime
    updated_at: datetime


class EmployeeWithLeavesResponse(EmployeeResponse):
    """An employee together with all of their leave requests."""

    leave_requests: list[LeaveRequestResponse] = Field(default_factory=list)
