"""
service.py
Scheduler operations used by the UI: status changes, record edits, the
numbered session listing and the monthly submit/review workflow.

Each mutating call runs in one db.transaction(): the month lock is checked,
the ledger is charged, then the record is written. Any failure rolls the
whole call back, so a status is never stored without its session charge.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

import attendance
import db
import utils
from errors import NotAuthorizedError
from gate import MonthlySubmissionGate
from indexer import index_sessions
from ledger import SessionLedgerEngine, charged_after
from models import (
    ClassRecord,
    ClassStatus,
    Discipline,
    IndexedRecord,
    MembershipLedger,
    MembershipStatus,
    MonthlySubmission,
    ReviewDecision,
    Staff,
    SubmissionStatus,
)
from stores import ClassRecordStore, MembershipLedgerStore, MonthlySubmissionStore

logger = logging.getLogger(__name__)

_UNSET = object()


def _authorize(record: ClassRecord, actor: Staff | None) -> None:
    # Trainers may only touch their own schedule; admins may touch any
    if actor is not None and not actor.is_admin and actor.id != record.staff_id:
        raise NotAuthorizedError("You can only change your own schedule.")


# ---------- Class records ----------

def change_status(
    record_id: int,
    requested_status: ClassStatus | str,
    actor: Staff | None = None,
    overconsumption_policy: str | None = None,
) -> ClassRecord:
    with db.transaction() as conn:
        records = ClassRecordStore(conn)
        record = records.get(record_id)
        _authorize(record, actor)
        MonthlySubmissionGate(MonthlySubmissionStore(conn)).ensure_unlocked(record.staff_id, record.start_time)

        transition = attendance.apply_transition(record, requested_status)
        engine = SessionLedgerEngine(MembershipLedgerStore(conn), overconsumption_policy)
        charged = engine.charge_for_transition(record, transition.new_status)
        if charged != transition.ledger_delta:
            logger.debug(
                "Record %s: status delta %+d, charged %+d against last charge",
                record.id, transition.ledger_delta, charged,
            )

        updated = records.update(
            replace(
                record,
                status=transition.new_status,
                last_charged_consumed=charged_after(record, transition.new_status, charged),
            )
        )
    logger.info(
        "Record %s (%s) status %s -> %s",
        record_id, record.discipline.value,
        record.status.value if record.status else None, transition.new_status.value,
    )
    return updated


def reclassify(record_id: int, sub_type: str, actor: Staff | None = None) -> ClassRecord:
    with db.transaction() as conn:
        records = ClassRecordStore(conn)
        record = records.get(record_id)
        _authorize(record, actor)
        MonthlySubmissionGate(MonthlySubmissionStore(conn)).ensure_unlocked(record.staff_id, record.start_time)
        cleaned = attendance.reclassify_sub_type(record, sub_type)
        return records.update(replace(record, sub_type=cleaned))


def create_record(
    staff_id: int,
    discipline: Discipline | str,
    start_time: datetime,
    end_time: datetime,
    member_id: int | None = None,
    status: ClassStatus | str | None = None,
    sub_type: str | None = None,
    actor: Staff | None = None,
    overconsumption_policy: str | None = None,
) -> ClassRecord:
    discipline = Discipline(discipline)
    utils.raise_for_errors(utils.validate_record_inputs(discipline, member_id, start_time, end_time))

    if discipline.is_session_based:
        new_status = attendance.coerce_status(discipline, status) if status else attendance.default_status(discipline)
    else:
        new_status = None

    draft = ClassRecord(
        id=None,
        staff_id=staff_id,
        member_id=member_id,
        discipline=discipline,
        status=new_status,
        sub_type=(sub_type or "").strip() or None,
        start_time=start_time,
        end_time=end_time,
    )
    _authorize(draft, actor)

    with db.transaction() as conn:
        MonthlySubmissionGate(MonthlySubmissionStore(conn)).ensure_unlocked(staff_id, start_time)
        records = ClassRecordStore(conn)
        created = records.insert(draft)
        if attendance.consumes_session(new_status):
            charged = SessionLedgerEngine(MembershipLedgerStore(conn), overconsumption_policy).charge_for_transition(
                created, new_status
            )
            if charged > 0:
                created = records.update(replace(created, last_charged_consumed=True))
    logger.info("Created %s record %s for staff %s", discipline.value, created.id, staff_id)
    return created


def edit_record(
    record_id: int,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    member_id=_UNSET,
    sub_type: str | None = None,
    actor: Staff | None = None,
    overconsumption_policy: str | None = None,
) -> ClassRecord:
    with db.transaction() as conn:
        records = ClassRecordStore(conn)
        record = records.get(record_id)
        _authorize(record, actor)

        edited = replace(
            record,
            start_time=start_time or record.start_time,
            end_time=end_time or record.end_time,
            member_id=record.member_id if member_id is _UNSET else member_id,
            sub_type=attendance.reclassify_sub_type(record, sub_type) if sub_type is not None else record.sub_type,
        )
        utils.raise_for_errors(
            utils.validate_record_inputs(edited.discipline, edited.member_id, edited.start_time, edited.end_time)
        )

        # Both the month it leaves and the month it lands in must be open
        gate = MonthlySubmissionGate(MonthlySubmissionStore(conn))
        gate.ensure_unlocked(record.staff_id, record.start_time)
        gate.ensure_unlocked(record.staff_id, edited.start_time)
        attendance.ensure_mutable(record)

        if edited.member_id != record.member_id and record.last_charged_consumed:
            # Move the charge to the new member
            engine = SessionLedgerEngine(MembershipLedgerStore(conn), overconsumption_policy)
            engine.refund_record(record)
            moved = replace(edited, last_charged_consumed=False)
            charged = engine.charge_for_transition(moved, edited.status)
            edited = replace(edited, last_charged_consumed=charged_after(moved, edited.status, charged))

        return records.update(edited)


def delete_record(record_id: int, actor: Staff | None = None) -> None:
    with db.transaction() as conn:
        records = ClassRecordStore(conn)
        record = records.get(record_id)
        _authorize(record, actor)
        MonthlySubmissionGate(MonthlySubmissionStore(conn)).ensure_unlocked(record.staff_id, record.start_time)
        attendance.ensure_mutable(record)
        SessionLedgerEngine(MembershipLedgerStore(conn)).refund_record(record)
        records.delete(record_id)
    logger.info("Deleted record %s (staff %s)", record_id, record.staff_id)


def get_record(record_id: int) -> ClassRecord:
    with db.get_conn() as conn:
        return ClassRecordStore(conn).get(record_id)


# ---------- Session listing ----------

class SessionListing:
    """
    Numbered view of one staff member's schedule.

    Iterating re-reads the store and renumbers from scratch, so the listing
    can be walked any number of times and always reflects current data.
    Numbering always runs over the staff's full history; `start`/`end` only
    filter what is yielded.
    """

    def __init__(self, staff_id: int, start: datetime | None = None, end: datetime | None = None):
        self.staff_id = staff_id
        self.start = start
        self.end = end

    def _in_range(self, record: ClassRecord) -> bool:
        if self.start is not None and record.start_time < self.start:
            return False
        if self.end is not None and record.start_time >= self.end:
            return False
        return True

    def __iter__(self):
        with db.get_conn() as conn:
            records = ClassRecordStore(conn).list_by_staff(self.staff_id)
            ledgers = MembershipLedgerStore(conn)
            totals: dict[int, int | None] = {}
            for member_id in {r.member_id for r in records if r.member_id is not None}:
                current = ledgers.get_active_for_member(member_id)
                totals[member_id] = current.total_sessions if current else None

        for item in index_sessions(records, totals.get):
            if self._in_range(item.record):
                yield item

    def to_list(self) -> list[IndexedRecord]:
        return list(self)


def list_with_session_numbers(
    staff_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> SessionListing:
    return SessionListing(staff_id, start, end)


# ---------- Monthly submission ----------

def get_submission(staff_id: int, year_month: str) -> MonthlySubmission:
    with db.get_conn() as conn:
        return MonthlySubmissionGate(MonthlySubmissionStore(conn)).get(staff_id, year_month)


def list_submissions(status: SubmissionStatus | None = None, staff_id: int | None = None) -> list[MonthlySubmission]:
    with db.get_conn() as conn:
        return MonthlySubmissionStore(conn).list(status=status, staff_id=staff_id)


def submit_month(staff_id: int, year_month: str, actor: Staff | None = None) -> MonthlySubmission:
    if actor is not None and not actor.is_admin and actor.id != staff_id:
        raise NotAuthorizedError("You can only submit your own schedule.")
    start, end = utils.year_month_bounds(year_month)
    with db.transaction() as conn:
        month_records = ClassRecordStore(conn).list_by_staff(staff_id, start, end)
        stats = utils.submission_stats(month_records)
        return MonthlySubmissionGate(MonthlySubmissionStore(conn)).submit(staff_id, year_month, stats)


def review_month(
    staff_id: int,
    year_month: str,
    decision: ReviewDecision | str,
    memo: str | None,
    reviewer: Staff,
) -> MonthlySubmission:
    with db.transaction() as conn:
        return MonthlySubmissionGate(MonthlySubmissionStore(conn)).review(
            staff_id, year_month, decision, memo, reviewer
        )


# ---------- Memberships ----------

def open_membership(member_id: int, name: str, total_sessions: int, used_sessions: int = 0) -> MembershipLedger:
    utils.raise_for_errors(utils.validate_membership_inputs(name, total_sessions, used_sessions))
    with db.transaction() as conn:
        ledger = MembershipLedgerStore(conn).insert(
            MembershipLedger(
                id=None,
                member_id=member_id,
                name=name.strip(),
                total_sessions=int(total_sessions),
                used_sessions=int(used_sessions),
                status=MembershipStatus.ACTIVE,
                created_at=db.now_iso(),
            )
        )
    logger.info("Opened membership %s (%s sessions) for member %s", ledger.id, ledger.total_sessions, member_id)
    return ledger


def set_membership_status(membership_id: int, status: MembershipStatus | str) -> MembershipLedger:
    with db.transaction() as conn:
        return MembershipLedgerStore(conn).set_status(membership_id, MembershipStatus(status))


def current_membership(member_id: int) -> MembershipLedger | None:
    with db.get_conn() as conn:
        return MembershipLedgerStore(conn).get_active_for_member(member_id)


def memberships_for(member_id: int) -> list[MembershipLedger]:
    with db.get_conn() as conn:
        return MembershipLedgerStore(conn).list_for_member(member_id)
