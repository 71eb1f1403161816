from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlmodel import col

from workforce.idempotency import IdempotencyGuard, Namespace, now_utc
from workforce.models.department import Department
from workforce.schemas.common import PaginatedResponse
from workforce.schemas.department import DepartmentResponse
from workforce.schemas.employee import EmployeeResponse
from workforce.services.cache_policy import (
    DEPARTMENTS_ALL_KEY,
    department_employees_key,
    invalidate_keys,
    read_through,
)
from workforce.services.employee import build_employee_response, paginate_department_employees

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from workforce.cache import CacheGateway
    from workforce.schemas.department import CreateDepartmentPayload

logger = logging.getLogger(__name__)


def _build_department_response(department: Department) -> DepartmentResponse:
    return DepartmentResponse(id=department.id, name=department.name, created_at=department.created_at)


async def create_department(
    session: AsyncSession,
    cache: CacheGateway,
    payload: CreateDepartmentPayload,
    idempotency_key: str,
) -> DepartmentResponse:
    """Create a department and drop the cached department list."""
    guard = IdempotencyGuard(cache)
    await guard.ensure_not_done(Namespace.DEPARTMENT, idempotency_key)

    department = Department(name=payload.name)
    session.add(department)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await guard.record(
        Namespace.DEPARTMENT,
        idempotency_key,
        {"departmentId": department.id, "createdAt": now_utc()},
    )
    await invalidate_keys(cache, DEPARTMENTS_ALL_KEY)

    logger.info("Created department %s", department.id)
    return _build_department_response(department)


async def list_departments(session: AsyncSession, cache: CacheGateway) -> list[dict[str, Any]]:
    """List all departments, cached under ``departments:all``."""

    async def _load() -> list[dict[str, Any]]:
        result = await session.execute(
            select(Department).order_by(col(Department.created_at), col(Department.id))
        )
        return [
            _build_department_response(d).model_dump(mode="json", by_alias=True) for d in result.scalars().all()
        ]

    return await read_through(cache, DEPARTMENTS_ALL_KEY, _load)


async def list_department_employees(
    session: AsyncSession,
    cache: CacheGateway,
    department_id: uuid.UUID,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    """Paginated employees of a department, cached per page and limit."""

    async def _load() -> dict[str, Any]:
        employees, total = await paginate_department_employees(session, department_id, page, limit)
        response = PaginatedResponse[EmployeeResponse](
            data=[build_employee_response(e) for e in employees],
            count=total,
            page=page,
            limit=limit,
        )
        return response.model_dump(mode="json", by_alias=True)

    return await read_through(cache, department_employees_key(department_id, page, limit), _load)
