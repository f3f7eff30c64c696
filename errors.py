"""
errors.py
Typed failures raised by the scheduler core. Each carries a stable code and a
message the UI can show as-is.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    # === Not Found ===
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"

    # === Validation Failures ===
    INVALID_RECORD = "INVALID_RECORD"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # === State Restrictions ===
    RECORD_LOCKED = "RECORD_LOCKED"
    MONTH_LOCKED = "MONTH_LOCKED"
    ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
    NOT_SUBMITTED = "NOT_SUBMITTED"

    # === Ledger ===
    NO_ACTIVE_MEMBERSHIP = "NO_ACTIVE_MEMBERSHIP"
    OVERCONSUMPTION = "OVERCONSUMPTION"

    # === Access / Concurrency ===
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"


class SchedulerError(Exception):
    code: ErrorCode = ErrorCode.INVALID_RECORD

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RecordNotFoundError(SchedulerError):
    code = ErrorCode.RECORD_NOT_FOUND


class InvalidRecordError(SchedulerError):
    code = ErrorCode.INVALID_RECORD


class InvalidTransitionError(SchedulerError):
    code = ErrorCode.INVALID_TRANSITION


class LockedRecordError(SchedulerError):
    code = ErrorCode.RECORD_LOCKED


class MonthLockedError(LockedRecordError):
    """Raised by the monthly gate; a LockedRecordError scoped to a (staff, month)."""

    code = ErrorCode.MONTH_LOCKED

    def __init__(self, staff_id: int, year_month: str, status: str):
        super().__init__(f"{year_month} schedule is locked ({status}); changes need admin review first.")
        self.staff_id = staff_id
        self.year_month = year_month
        self.status = status


class NoActiveMembershipError(SchedulerError):
    code = ErrorCode.NO_ACTIVE_MEMBERSHIP

    def __init__(self, member_id: int):
        super().__init__("No active membership to deduct from.")
        self.member_id = member_id


class OverconsumptionError(SchedulerError):
    code = ErrorCode.OVERCONSUMPTION

    def __init__(self, membership_id: int, used: int, total: int):
        super().__init__(f"Membership sessions are used up ({used}/{total}).")
        self.membership_id = membership_id
        self.used = used
        self.total = total


class AlreadySubmittedError(SchedulerError):
    code = ErrorCode.ALREADY_SUBMITTED


class NotSubmittedError(SchedulerError):
    code = ErrorCode.NOT_SUBMITTED


class NotAuthorizedError(SchedulerError):
    code = ErrorCode.NOT_AUTHORIZED


class ConcurrentUpdateError(SchedulerError):
    code = ErrorCode.CONCURRENT_UPDATE
