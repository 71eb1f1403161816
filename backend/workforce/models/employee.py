# ruff: noqa: TC003
from __future__ import annotations

import uuid

import sqlalchemy as sa
from sqlmodel import Field

from workforce.models.base import TimestampMixin, UpdatedAtMixin, UUIDBase


class Employee(UUIDBase, TimestampMixin, UpdatedAtMixin, table=True):
    """A person employed in exactly one department."""

    __tablename__ = "employee"

    name: str = Field(max_length=255)
    email: str = Field(max_length=255, unique=True)
    department_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid, sa.ForeignKey("department.id", ondelete="RESTRICT"), nullable=False, index=True
        ),
    )
