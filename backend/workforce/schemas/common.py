from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base schema exchanged as camelCase JSON, also accepting snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PaginatedResponse(CamelModel, Generic[T]):
    """One page of a department-scoped listing."""

    data: list[T]
    count: int
    page: int
    limit: int
