"""
models.py
Domain types for the staff scheduler (disciplines, statuses, records, ledgers, submissions).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Discipline(str, Enum):
    PT = "PT"
    OT = "OT"
    CONSULTING = "Consulting"
    PERSONAL = "Personal"

    @property
    def is_session_based(self) -> bool:
        return self in (Discipline.PT, Discipline.OT)


class PTStatus(str, Enum):
    RESERVED = "reserved"
    COMPLETED = "completed"
    NO_SHOW_DEDUCTED = "no_show_deducted"
    NO_SHOW = "no_show"
    SERVICE = "service"
    CANCELLED = "cancelled"


class OTStatus(str, Enum):
    RESERVED = "reserved"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"
    CONVERTED = "converted"


ClassStatus = PTStatus | OTStatus

# Closed status vocabulary per discipline; Consulting/Personal carry no status
STATUS_TYPES: dict[Discipline, type] = {
    Discipline.PT: PTStatus,
    Discipline.OT: OTStatus,
}

# Sub-type tags offered by the UI; the column itself is free text
CONSULTING_SUB_TYPES = ["sales", "info", "status", "other"]
PERSONAL_SUB_TYPES = ["meal", "conference", "meeting", "rest", "workout", "other"]


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    PAUSED = "paused"


class SubmissionStatus(str, Enum):
    NONE = "none"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def locks_month(self) -> bool:
        return self in (SubmissionStatus.SUBMITTED, SubmissionStatus.APPROVED)


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


ADMIN_ROLES = ("system_admin", "company_admin", "admin")
STAFF_ROLES = ("staff",) + ADMIN_ROLES


@dataclass(frozen=True)
class Staff:
    id: int
    username: str
    role: str  # one of STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


@dataclass(frozen=True)
class ClassRecord:
    id: int | None
    staff_id: int
    member_id: int | None
    discipline: Discipline
    status: ClassStatus | None
    sub_type: str | None
    start_time: datetime
    end_time: datetime
    is_locked: bool = False  # derived from the month's submission, never stored
    last_charged_consumed: bool = False
    member_name: str | None = None

    @property
    def year_month(self) -> str:
        return self.start_time.strftime("%Y-%m")


@dataclass(frozen=True)
class MembershipLedger:
    id: int | None
    member_id: int
    name: str
    total_sessions: int
    used_sessions: int
    status: MembershipStatus
    created_at: str

    @property
    def remaining_sessions(self) -> int:
        return max(self.total_sessions - self.used_sessions, 0)


@dataclass(frozen=True)
class MonthlySubmission:
    staff_id: int
    year_month: str
    status: SubmissionStatus = SubmissionStatus.NONE
    submitted_at: str | None = None
    reviewed_at: str | None = None
    reviewed_by: int | None = None
    admin_memo: str | None = None
    stats: dict = field(default_factory=dict)
    version: int = 0  # 0 = no row persisted yet


@dataclass(frozen=True)
class Transition:
    new_status: ClassStatus
    ledger_delta: int  # -1, 0 or +1


@dataclass(frozen=True)
class IndexedRecord:
    record: ClassRecord
    session_number: int | None
    pending: bool
    total_sessions: int | None = None
