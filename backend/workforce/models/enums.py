from __future__ import annotations

import enum


class LeaveStatus(enum.StrEnum):
    """State machine for leave requests.

    Requests are created PENDING. APPROVED and REJECTED are terminal.
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
