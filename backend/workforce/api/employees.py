# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, status

from workforce.api.deps import CacheDep, IdempotencyKeyDep
from workforce.db import SessionDep
from workforce.schemas.employee import CreateEmployeePayload, EmployeeResponse, EmployeeWithLeavesResponse
from workforce.services import employee as employee_service

employees_router = APIRouter(prefix="/employees", tags=["employees"])


@employees_router.post("", response_model=EmployeeResponse, status_code=status.HTTP_201_CREATED)
async def create_employee(
    payload: CreateEmployeePayload,
    session: SessionDep,
    cache: CacheDep,
    idempotency_key: IdempotencyKeyDep,
) -> EmployeeResponse:
    """Create an employee in an existing department."""
    return await employee_service.create_employee(session, cache, payload, idempotency_key)


@employees_router.get("", response_model=list[EmployeeResponse])
async def list_employees(session: SessionDep, cache: CacheDep) -> list[dict[str, Any]]:
    """List all employees (cached)."""
    return await employee_service.list_employees(session, cache)


@employees_router.get("/{employee_id}", response_model=EmployeeWithLeavesResponse)
async def get_employee(employee_id: uuid.UUID, session: SessionDep) -> EmployeeWithLeavesResponse:
    """Get an employee with their leave requests."""
    return await employee_service.get_employee_with_leaves(session, employee_id)
