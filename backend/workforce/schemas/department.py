# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import Field

from workforce.schemas.common import CamelModel


class CreateDepartmentPayload(CamelModel):
    """Request body for creating a department."""

    name: str = Field(min_length=1, max_length=255)


class DepartmentResponse(CamelModel):
    """Response schema for a department."""

    id: uuid.UUID
    name: str
    created_at: datetime
