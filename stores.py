"""
stores.py
SQLite-backed stores for class records, membership ledgers and monthly submissions.

Every store works on a connection handed in by the caller so several stores
can take part in one db.transaction().
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import replace
from datetime import datetime

import db
from errors import ConcurrentUpdateError, RecordNotFoundError
from models import (
    ClassRecord,
    Discipline,
    MembershipLedger,
    MembershipStatus,
    MonthlySubmission,
    STATUS_TYPES,
    SubmissionStatus,
)

LOCKING_STATUSES = tuple(s.value for s in SubmissionStatus if s.locks_month)


def to_db_time(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def _row_to_record(row: sqlite3.Row) -> ClassRecord:
    discipline = Discipline(row["discipline"])
    status = None
    if row["status"] is not None and discipline in STATUS_TYPES:
        status = STATUS_TYPES[discipline](row["status"])
    return ClassRecord(
        id=row["id"],
        staff_id=row["staff_id"],
        member_id=row["member_id"],
        discipline=discipline,
        status=status,
        sub_type=row["sub_type"],
        start_time=datetime.fromisoformat(row["start_time"]),
        end_time=datetime.fromisoformat(row["end_time"]),
        is_locked=row["month_status"] in LOCKING_STATUSES,
        last_charged_consumed=bool(row["last_charged_consumed"]),
        member_name=row["member_name"],
    )


def _row_to_ledger(row: sqlite3.Row) -> MembershipLedger:
    return MembershipLedger(
        id=row["id"],
        member_id=row["member_id"],
        name=row["name"],
        total_sessions=int(row["total_sessions"]),
        used_sessions=int(row["used_sessions"]),
        status=MembershipStatus(row["status"]),
        created_at=row["created_at"],
    )


def _row_to_submission(row: sqlite3.Row) -> MonthlySubmission:
    return MonthlySubmission(
        staff_id=row["staff_id"],
        year_month=row["year_month"],
        status=SubmissionStatus(row["status"]),
        submitted_at=row["submitted_at"],
        reviewed_at=row["reviewed_at"],
        reviewed_by=row["reviewed_by"],
        admin_memo=row["admin_memo"],
        stats=json.loads(row["stats"] or "{}"),
        version=int(row["version"]),
    )


class ClassRecordStore:
    _select = """
        SELECT r.*, m.full_name AS member_name, COALESCE(s.status, 'none') AS month_status
        FROM class_records r
        LEFT JOIN members m ON m.id = r.member_id
        LEFT JOIN monthly_submissions s
            ON s.staff_id = r.staff_id AND s.year_month = substr(r.start_time, 1, 7)
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, record_id: int) -> ClassRecord:
        row = self.conn.execute(self._select + " WHERE r.id = ?", (record_id,)).fetchone()
        if row is None:
            raise RecordNotFoundError(f"Class record {record_id} not found.")
        return _row_to_record(row)

    def list_by_staff(
        self,
        staff_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ClassRecord]:
        sql = self._select + " WHERE r.staff_id = ?"
        params: list = [staff_id]
        if start is not None:
            sql += " AND r.start_time >= ?"
            params.append(to_db_time(start))
        if end is not None:
            sql += " AND r.start_time < ?"
            params.append(to_db_time(end))
        sql += " ORDER BY r.start_time ASC, r.id ASC"
        return [_row_to_record(r) for r in self.conn.execute(sql, tuple(params)).fetchall()]

    def insert(self, record: ClassRecord) -> ClassRecord:
        cur = self.conn.execute(
            """
            INSERT INTO class_records(staff_id, member_id, discipline, status, sub_type,
                start_time, end_time, last_charged_consumed)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (
                record.staff_id,
                record.member_id,
                record.discipline.value,
                record.status.value if record.status else None,
                record.sub_type,
                to_db_time(record.start_time),
                to_db_time(record.end_time),
                int(record.last_charged_consumed),
            ),
        )
        return self.get(cur.lastrowid)

    def update(self, record: ClassRecord) -> ClassRecord:
        cur = self.conn.execute(
            """
            UPDATE class_records SET member_id=?, status=?, sub_type=?, start_time=?, end_time=?,
                last_charged_consumed=?
            WHERE id=?
            """,
            (
                record.member_id,
                record.status.value if record.status else None,
                record.sub_type,
                to_db_time(record.start_time),
                to_db_time(record.end_time),
                int(record.last_charged_consumed),
                record.id,
            ),
        )
        if cur.rowcount == 0:
            raise RecordNotFoundError(f"Class record {record.id} not found.")
        return self.get(record.id)

    def delete(self, record_id: int) -> None:
        cur = self.conn.execute("DELETE FROM class_records WHERE id = ?", (record_id,))
        if cur.rowcount == 0:
            raise RecordNotFoundError(f"Class record {record_id} not found.")


class MembershipLedgerStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, membership_id: int) -> MembershipLedger:
        row = self.conn.execute("SELECT * FROM memberships WHERE id = ?", (membership_id,)).fetchone()
        if row is None:
            raise RecordNotFoundError(f"Membership {membership_id} not found.")
        return _row_to_ledger(row)

    def get_active_for_member(self, member_id: int) -> MembershipLedger | None:
        row = self.conn.execute(
            """
            SELECT * FROM memberships
            WHERE member_id = ? AND status = 'active'
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (member_id,),
        ).fetchone()
        return _row_to_ledger(row) if row else None

    def list_for_member(self, member_id: int) -> list[MembershipLedger]:
        rows = self.conn.execute(
            "SELECT * FROM memberships WHERE member_id = ? ORDER BY created_at DESC, id DESC",
            (member_id,),
        ).fetchall()
        return [_row_to_ledger(r) for r in rows]

    def insert(self, ledger: MembershipLedger) -> MembershipLedger:
        cur = self.conn.execute(
            """
            INSERT INTO memberships(member_id, name, total_sessions, used_sessions, status, created_at)
            VALUES(?,?,?,?,?,?)
            """,
            (
                ledger.member_id,
                ledger.name,
                ledger.total_sessions,
                ledger.used_sessions,
                ledger.status.value,
                ledger.created_at or db.now_iso(),
            ),
        )
        return self.get(cur.lastrowid)

    def set_status(self, membership_id: int, status: MembershipStatus) -> MembershipLedger:
        self.conn.execute("UPDATE memberships SET status = ? WHERE id = ?", (status.value, membership_id))
        return self.get(membership_id)

    def atomic_adjust(self, membership_id: int, delta: int, clamp_ceiling: bool) -> bool:
        """
        Apply `delta` to used_sessions in one UPDATE statement.

        The floor is always clamped at 0. With clamp_ceiling the value is also
        capped at total_sessions; otherwise an increment that would exceed it
        matches no row and False is returned.
        """
        if clamp_ceiling:
            cur = self.conn.execute(
                """
                UPDATE memberships
                SET used_sessions = MAX(0, MIN(total_sessions, used_sessions + ?))
                WHERE id = ? AND status = 'active'
                """,
                (delta, membership_id),
            )
        else:
            cur = self.conn.execute(
                """
                UPDATE memberships
                SET used_sessions = MAX(0, used_sessions + ?)
                WHERE id = ? AND status = 'active' AND used_sessions + ? <= total_sessions
                """,
                (delta, membership_id, delta),
            )
        return cur.rowcount == 1

    def append_entry(
        self,
        record_id: int,
        ledger: MembershipLedger,
        delta: int,
        from_status: str | None,
        to_status: str | None,
        memo: str,
    ) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO session_ledger_entries(record_id, membership_id, member_id, delta,
                from_status, to_status, memo, created_at)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (record_id, ledger.id, ledger.member_id, delta, from_status, to_status, memo, db.now_iso()),
        )
        return cur.lastrowid

    def charged_membership_id(self, record_id: int) -> int | None:
        """Membership that took the record's most recent session charge."""
        row = self.conn.execute(
            """
            SELECT membership_id FROM session_ledger_entries
            WHERE record_id = ? AND delta > 0
            ORDER BY id DESC
            LIMIT 1
            """,
            (record_id,),
        ).fetchone()
        return row["membership_id"] if row else None

    def entries_for_record(self, record_id: int) -> list[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM session_ledger_entries WHERE record_id = ? ORDER BY id ASC",
            (record_id,),
        ).fetchall()


class MonthlySubmissionStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, staff_id: int, year_month: str) -> MonthlySubmission:
        row = self.conn.execute(
            "SELECT * FROM monthly_submissions WHERE staff_id = ? AND year_month = ?",
            (staff_id, year_month),
        ).fetchone()
        if row is None:
            return MonthlySubmission(staff_id=staff_id, year_month=year_month)
        return _row_to_submission(row)

    def list(self, status: SubmissionStatus | None = None, staff_id: int | None = None) -> list[MonthlySubmission]:
        sql = "SELECT * FROM monthly_submissions WHERE 1=1"
        params: list = []
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        if staff_id is not None:
            sql += " AND staff_id = ?"
            params.append(staff_id)
        sql += " ORDER BY year_month DESC, staff_id ASC"
        return [_row_to_submission(r) for r in self.conn.execute(sql, tuple(params)).fetchall()]

    def upsert(self, submission: MonthlySubmission) -> MonthlySubmission:
        """
        Compare-and-set write keyed on `submission.version` (the version that was read).

        Raises ConcurrentUpdateError when another writer got there first.
        """
        params = (
            submission.status.value,
            submission.submitted_at,
            submission.reviewed_at,
            submission.reviewed_by,
            submission.admin_memo,
            json.dumps(submission.stats),
        )
        if submission.version == 0:
            try:
                self.conn.execute(
                    """
                    INSERT INTO monthly_submissions(status, submitted_at, reviewed_at, reviewed_by,
                        admin_memo, stats, staff_id, year_month, version)
                    VALUES(?,?,?,?,?,?,?,?,1)
                    """,
                    params + (submission.staff_id, submission.year_month),
                )
            except sqlite3.IntegrityError as exc:
                raise ConcurrentUpdateError(
                    f"Submission {submission.year_month} was created concurrently."
                ) from exc
        else:
            cur = self.conn.execute(
                """
                UPDATE monthly_submissions
                SET status=?, submitted_at=?, reviewed_at=?, reviewed_by=?, admin_memo=?, stats=?,
                    version = version + 1
                WHERE staff_id=? AND year_month=? AND version=?
                """,
                params + (submission.staff_id, submission.year_month, submission.version),
            )
            if cur.rowcount == 0:
                raise ConcurrentUpdateError(
                    f"Submission {submission.year_month} was modified concurrently."
                )
        return replace(submission, version=submission.version + 1)
