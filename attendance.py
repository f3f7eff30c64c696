"""
attendance.py
Attendance state machine: validates a class status change and tells the
caller whether it debits or credits a paid session.
"""

from __future__ import annotations

from errors import InvalidTransitionError, LockedRecordError
from models import (
    ClassRecord,
    ClassStatus,
    Discipline,
    OTStatus,
    PTStatus,
    STATUS_TYPES,
    Transition,
)

# Statuses that debit the membership counter ("consumed-fact")
CONSUMING_STATUSES = frozenset({"completed", "no_show_deducted"})


def status_domain(discipline: Discipline) -> tuple[ClassStatus, ...]:
    """Legal statuses for a discipline; empty for Consulting/Personal."""
    status_type = STATUS_TYPES.get(discipline)
    return tuple(status_type) if status_type else ()


def default_status(discipline: Discipline) -> ClassStatus | None:
    if discipline is Discipline.PT:
        return PTStatus.RESERVED
    if discipline is Discipline.OT:
        return OTStatus.RESERVED
    return None


def consumes_session(status: ClassStatus | str | None) -> bool:
    if status is None:
        return False
    value = status.value if isinstance(status, (PTStatus, OTStatus)) else str(status)
    return value in CONSUMING_STATUSES


def coerce_status(discipline: Discipline, requested: ClassStatus | str) -> ClassStatus:
    """Map a raw or foreign-enum status onto the discipline's own enum."""
    status_type = STATUS_TYPES.get(discipline)
    if status_type is None:
        raise InvalidTransitionError(
            f"{discipline.value} entries have no attendance status; reclassify the sub-type instead."
        )
    value = requested.value if isinstance(requested, (PTStatus, OTStatus)) else str(requested)
    try:
        return status_type(value)
    except ValueError:
        allowed = ", ".join(s.value for s in status_type)
        raise InvalidTransitionError(
            f"'{value}' is not a valid {discipline.value} status (allowed: {allowed})."
        ) from None


def ensure_mutable(record: ClassRecord) -> None:
    if record.is_locked:
        raise LockedRecordError(
            f"This {record.year_month} entry is locked while the month is under review."
        )


def apply_transition(record: ClassRecord, requested_status: ClassStatus | str) -> Transition:
    """
    Validate `record -> requested_status` and compute the ledger delta.

    Any status of the discipline can follow any other. The delta is
    consumes(new) - consumes(old), so completed <-> no_show_deducted moves
    nothing while entering or leaving that pair moves exactly one session.
    Nothing is written here.
    """
    ensure_mutable(record)
    new_status = coerce_status(record.discipline, requested_status)
    delta = int(consumes_session(new_status)) - int(consumes_session(record.status))
    return Transition(new_status=new_status, ledger_delta=delta)


def reclassify_sub_type(record: ClassRecord, sub_type: str) -> str:
    """Validate a sub-type change for Consulting/Personal entries and return the cleaned tag."""
    ensure_mutable(record)
    if record.discipline.is_session_based:
        raise InvalidTransitionError(
            f"{record.discipline.value} sessions are changed through their status, not a sub-type."
        )
    cleaned = (sub_type or "").strip()
    if not cleaned:
        raise InvalidTransitionError("Sub-type cannot be empty.")
    return cleaned
