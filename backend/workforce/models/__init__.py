from sqlmodel import SQLModel

from workforce.models.base import TimestampMixin, UpdatedAtMixin, UUIDBase
from workforce.models.department import Department
from workforce.models.employee import Employee
from workforce.models.enums import LeaveStatus
from workforce.models.leave_request import LeaveRequest

__all__ = [
    "Department",
    "Employee",
    "LeaveRequest",
    "LeaveStatus",
    "SQLModel",
    "TimestampMixin",
    "UUIDBase",
    "UpdatedAtMixin",
]
