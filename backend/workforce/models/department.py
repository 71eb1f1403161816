from __future__ import annotations

from sqlmodel import Field

from workforce.models.base import TimestampMixin, UUIDBase


class Department(UUIDBase, TimestampMixin, table=True):
    """An organisational unit that employees belong to."""

    __tablename__ = "department"

    name: str = Field(max_length=255, index=True)
