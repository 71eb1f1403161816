# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from workforce.exceptions import ConflictError, NotFoundError
from workforce.idempotency import IdempotencyGuard, Namespace, now_utc
from workforce.models.department import Department
from workforce.models.employee import Employee
from workforce.schemas.common import PaginatedResponse
from workforce.schemas.employee import EmployeeResponse, EmployeeWithLeavesResponse
from workforce.services.cache_policy import (
    EMPLOYEES_ALL_KEY,
    department_employees_with_leaves_key,
    invalidate_department_employee_caches,
    invalidate_keys,
    read_through,
)
from workforce.services.leave_request import list_leave_requests_for_employee

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from workforce.cache import CacheGateway
    from workforce.schemas.employee import CreateEmployeePayload

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def build_employee_response(employee: Employee) -> EmployeeResponse:
    """Map an employee model to its response schema."""
    return EmployeeResponse(
        id=employee.id,
        name=employee.name,
        email=employee.email,
        department_id=employee.department_id,
        created_at=employee.created_at,
        updated_at=employee.updated_at,
    )


async def _require_department(session: AsyncSession, department_id: uuid.UUID) -> Department:
    department = await session.get(Department, department_id)
    if department is None:
        raise NotFoundError(f"Department with ID {department_id} not found")
    return department


async def paginate_department_employees(
    session: AsyncSession,
    department_id: uuid.UUID,
    page: int,
    limit: int,
) -> tuple[list[Employee], int]:
    """Return one page of a department's employees and the department's headcount."""
    base_filter = col(Employee.department_id) == department_id

    count_result = await session.execute(select(func.count()).select_from(Employee).where(base_filter))
    total = count_result.scalar_one()

    result = await session.execute(
        select(Employee)
        .where(base_filter)
        .order_by(col(Employee.created_at), col(Employee.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def create_employee(
    session: AsyncSession,
    cache: CacheGateway,
    payload: CreateEmployeePayload,
    idempotency_key: str,
) -> EmployeeResponse:
    """Create an employee in an existing department.

    The department and email checks run before anything is written, so a
    rejected request leaves no trace in the store or the cache.
    """
    guard = IdempotencyGuard(cache)
    await guard.ensure_not_done(Namespace.EMPLOYEE, idempotency_key)

    await _require_department(session, payload.department_id)

    existing = await session.execute(select(Employee).where(col(Employee.email) == payload.email))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"Employee with email {payload.email} already exists")

    employee = Employee(name=payload.name, email=payload.email, department_id=payload.department_id)
    session.add(employee)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError(f"Employee with email {payload.email} already exists") from None
    except Exception:
        await session.rollback()
        raise

    await guard.record(
        Namespace.EMPLOYEE,
        idempotency_key,
        {"employeeId": employee.id, "createdAt": now_utc()},
    )
    await invalidate_department_employee_caches(cache, employee.department_id)
    await invalidate_keys(cache, EMPLOYEES_ALL_KEY)

    logger.info("Created employee %s in department %s", employee.id, employee.department_id)
    return build_employee_response(employee)


async def list_employees(session: AsyncSession, cache: CacheGateway) -> list[dict[str, Any]]:
    """List all employees, cached under ``employees:all``."""

    async def _load() -> list[dict[str, Any]]:
        result = await session.execute(select(Employee).order_by(col(Employee.created_at), col(Employee.id)))
        return [build_employee_response(e).model_dump(mode="json", by_alias=True) for e in result.scalars().all()]

    return await read_through(cache, EMPLOYEES_ALL_KEY, _load)


async def get_employee_with_leaves(session: AsyncSession, employee_id: uuid.UUID) -> EmployeeWithLeavesResponse:
    """A single employee and their leave requests. Always read from the store."""
    employee = await session.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError(f"Employee with ID {employee_id} not found")
    leaves = await list_leave_requests_for_employee(session, employee_id)
    return EmployeeWithLeavesResponse(**build_employee_response(employee).model_dump(), leave_requests=leaves)


async def list_department_employees_with_leaves(
    session: AsyncSession,
    cache: CacheGateway,
    department_id: uuid.UUID,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    """Paginated employees of a department with their leave requests, cached per page."""
    await _require_department(session, department_id)

    async def _load() -> dict[str, Any]:
        employees, total = await paginate_department_employees(session, department_id, page, limit)
        data = [
            EmployeeWithLeavesResponse(
                **build_employee_response(e).model_dump(),
                leave_requests=await list_leave_requests_for_employee(session, e.id),
            )
            for e in employees
        ]
        response = PaginatedResponse[EmployeeWithLeavesResponse](data=data, count=total, page=page, limit=limit)
        return response.model_dump(mode="json", by_alias=True)

    return await read_through(cache, department_employees_with_leaves_key(department_id, page, limit), _load)
