# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date

import sqlalchemy as sa
from sqlmodel import Field

from workforce.models.base import UUIDBase
from workforce.models.enums import LeaveStatus


class LeaveRequest(UUIDBase, table=True):
    """An employee's request for leave between two calendar dates."""

    __tablename__ = "leave_request"
    __table_args__ = (
        sa.Index("ix_leave_request_start_date", "start_date"),
        sa.Index("ix_leave_request_end_date", "end_date"),
    )

    employee_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid, sa.ForeignKey("employee.id", ondelete="CASCADE"), nullable=False, index=True
        ),
    )
    start_date: date
    end_date: date
    status: str = Field(
        default=LeaveStatus.PENDING, max_length=20, index=True, sa_column_kwargs={"server_default": "PENDING"}
    )
