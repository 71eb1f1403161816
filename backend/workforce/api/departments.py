# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Query, status

from workforce.api.deps import CacheDep, IdempotencyKeyDep
from workforce.db import SessionDep
from workforce.schemas.common import PaginatedResponse
from workforce.schemas.department import CreateDepartmentPayload, DepartmentResponse
from workforce.schemas.employee import EmployeeResponse, EmployeeWithLeavesResponse
from workforce.services import department as department_service
from workforce.services import employee as employee_service

departments_router = APIRouter(prefix="/departments", tags=["departments"])


@departments_router.post("", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(
    payload: CreateDepartmentPayload,
    session: SessionDep,
    cache: CacheDep,
    idempotency_key: IdempotencyKeyDep,
) -> DepartmentResponse:
    """Create a department."""
    return await department_service.create_department(session, cache, payload, idempotency_key)


@departments_router.get("", response_model=list[DepartmentResponse])
async def list_departments(session: SessionDep, cache: CacheDep) -> list[dict[str, Any]]:
    """List all departments (cached)."""
    return await department_service.list_departments(session, cache)


@departments_router.get("/{department_id}/employees", response_model=PaginatedResponse[EmployeeResponse])
async def list_department_employees(
    department_id: uuid.UUID,
    session: SessionDep,
    cache: CacheDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> dict[str, Any]:
    """Paginated employees of a department (cached per page)."""
    return await department_service.list_department_employees(session, cache, department_id, page, limit)


@departments_router.get(
    "/{department_id}/employees-with-leaves",
    response_model=PaginatedResponse[EmployeeWithLeavesResponse],
)
async def list_department_employees_with_leaves(
    department_id: uuid.UUID,
    session: SessionDep,
    cache: CacheDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> dict[str, Any]:
    """Paginated employees of a department with their leave requests (cached per page)."""
    return await employee_service.list_department_employees_with_leaves(session, cache, department_id, page, limit)
