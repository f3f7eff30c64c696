"""
utils.py
Validation, month helpers, report frames/exports, sample data.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable
from datetime import date, datetime, timedelta

import pandas as pd

import db
from errors import InvalidRecordError
from models import ClassRecord, Discipline, IndexedRecord

_YEAR_MONTH = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def today_iso() -> str:
    return date.today().isoformat()


def current_year_month(today: date | None = None) -> str:
    return (today or date.today()).strftime("%Y-%m")


def year_month_bounds(year_month: str) -> tuple[datetime, datetime]:
    """
    "2024-05" -> (2024-05-01 00:00, 2024-06-01 00:00); the end is exclusive.
    """
    if not isinstance(year_month, str) or not _YEAR_MONTH.match(year_month):
        raise InvalidRecordError(f"Month must be in YYYY-MM format (got {year_month!r}).")
    year, month = (int(p) for p in year_month.split("-"))
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def raise_for_errors(errors: list[str]) -> None:
    if errors:
        raise InvalidRecordError(" ".join(errors))


def validate_record_inputs(
    discipline: Discipline,
    member_id: int | None,
    start_time: datetime,
    end_time: datetime,
) -> list[str]:
    errors: list[str] = []
    if discipline.is_session_based and member_id is None:
        errors.append(f"{discipline.value} sessions need a member.")
    if not isinstance(start_time, datetime) or not isinstance(end_time, datetime):
        errors.append("Start/end must be date-times.")
    elif end_time <= start_time:
        errors.append("End time must be after start time.")
    return errors


def validate_membership_inputs(name: str, total_sessions, used_sessions) -> list[str]:
    errors: list[str] = []
    if not (name or "").strip():
        errors.append("Membership name is required.")
    try:
        total = int(total_sessions)
        used = int(used_sessions)
    except (TypeError, ValueError):
        errors.append("Session counts must be whole numbers.")
        return errors
    if total < 0:
        errors.append("Total sessions cannot be negative.")
    if not 0 <= used <= total:
        errors.append("Used sessions must be between 0 and total sessions.")
    return errors


# ---------- Reports ----------

def submission_stats(records: Iterable[ClassRecord]) -> dict:
    """Counters snapshotted with a monthly submission: status_<x>, type_<x>, total."""
    stats: Counter = Counter()
    for r in records:
        status_key = r.status.value if r.status is not None else "none"
        stats[f"status_{status_key}"] += 1
        stats[f"type_{r.discipline.value}"] += 1
        stats["total"] += 1
    return dict(stats)


def records_to_frame(records: Iterable[ClassRecord]) -> pd.DataFrame:
    rows = [
        {
            "id": r.id,
            "start_time": r.start_time,
            "end_time": r.end_time,
            "discipline": r.discipline.value,
            "status": r.status.value if r.status is not None else None,
            "sub_type": r.sub_type,
            "member_id": r.member_id,
            "member_name": r.member_name,
            "hours": (r.end_time - r.start_time).total_seconds() / 3600,
            "locked": r.is_locked,
        }
        for r in records
    ]
    if not rows:
        return pd.DataFrame(
            columns=["id", "start_time", "end_time", "discipline", "status", "sub_type",
                     "member_id", "member_name", "hours", "locked"]
        )
    return pd.DataFrame(rows)


def indexed_to_frame(items: Iterable[IndexedRecord]) -> pd.DataFrame:
    items = list(items)
    df = records_to_frame(i.record for i in items)
    df["session_number"] = pd.array([i.session_number for i in items], dtype="Int64")
    df["pending"] = [i.pending for i in items]
    df["total_sessions"] = pd.array([i.total_sessions for i in items], dtype="Int64")
    return df


def monthly_stats_frame(records: Iterable[ClassRecord]) -> pd.DataFrame:
    """
    Count and hours per discipline/status for one month's records.
    """
    df = records_to_frame(records)
    if df.empty:
        return pd.DataFrame(columns=["discipline", "status", "count", "hours"])
    df["status"] = df["status"].fillna("-")
    summary = (
        df.groupby(["discipline", "status"], as_index=False)
        .agg(count=("id", "count"), hours=("hours", "sum"))
        .sort_values(["discipline", "status"])
    )
    return summary.reset_index(drop=True)


def pt_attendance_rate(records: Iterable[ClassRecord]) -> int:
    """Attended (completed + service) PT sessions as a rounded percentage of all PT sessions."""
    pt = [r for r in records if r.discipline is Discipline.PT]
    if not pt:
        return 0
    attended = sum(1 for r in pt if r.status is not None and r.status.value in ("completed", "service"))
    return round(attended / len(pt) * 100)


def sessions_to_csv_bytes(items: Iterable[IndexedRecord]) -> bytes:
    df = indexed_to_frame(items)
    return df.to_csv(index=False).encode("utf-8")


# ---------- Sample data ----------

def insert_sample_data(staff_id: int) -> None:
    """
    Insert 2 members with PT memberships and a week of classes for `staff_id`
    (safe to run multiple times: adds new rows each time).
    """
    import service

    today = date.today()
    join = today_iso()

    m1 = db.execute(
        "INSERT INTO members(full_name, phone, join_date) VALUES(?,?,?)",
        ("Ahmed Hassan", "01000000001", join),
    )
    m2 = db.execute(
        "INSERT INTO members(full_name, phone, join_date) VALUES(?,?,?)",
        ("Mona Ali", "01000000002", join),
    )
    service.open_membership(m1, "PT 30 sessions", 30, 10)
    service.open_membership(m2, "PT 10 sessions", 10, 0)

    base = datetime.combine(today, datetime.min.time()) - timedelta(days=3)
    plan = [
        (0, 9, Discipline.PT, m1, "completed", None),
        (0, 10, Discipline.PT, m2, "completed", None),
        (1, 9, Discipline.PT, m1, "service", None),
        (1, 12, Discipline.PERSONAL, None, None, "meal"),
        (2, 9, Discipline.PT, m1, "no_show_deducted", None),
        (2, 15, Discipline.CONSULTING, None, None, "sales"),
        (3, 11, Discipline.OT, m2, "reserved", None),
        (4, 9, Discipline.PT, m1, "reserved", None),
    ]
    for day, hour, discipline, member_id, status, sub_type in plan:
        start = base + timedelta(days=day, hours=hour)
        service.create_record(
            staff_id,
            discipline,
            start,
            start + timedelta(hours=1),
            member_id=member_id,
            status=status,
            sub_type=sub_type,
        )
