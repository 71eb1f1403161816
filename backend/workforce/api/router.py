from fastapi import APIRouter

from workforce.api.departments import departments_router
from workforce.api.employees import employees_router
from workforce.api.leave_requests import leave_requests_router

api_router = APIRouter()
api_router.include_router(departments_router)
api_router.include_router(employees_router)
api_router.include_router(leave_requests_router)
