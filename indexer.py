"""
indexer.py
Session numbering for PT/OT classes, recomputed from the records on every read.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator

from models import ClassRecord, IndexedRecord

# Statuses that advance the displayed session number. Unlike the billing
# set in attendance.CONSUMING_STATUSES this includes "service": service
# sessions are numbered for continuity but never debited.
INDEX_COUNTING_STATUSES = frozenset({"completed", "service", "no_show_deducted"})


def counts_for_index(record: ClassRecord) -> bool:
    return record.status is not None and record.status.value in INDEX_COUNTING_STATUSES


def _sort_key(record: ClassRecord):
    return (record.start_time, record.id if record.id is not None else 0)


def index_sessions(
    records: Iterable[ClassRecord],
    total_sessions_for: Callable[[int], int | None] | None = None,
) -> Iterator[IndexedRecord]:
    """
    Yield every record in chronological order with its session number.

    PT and OT records are numbered per (member, discipline): the counter
    moves only on counting statuses; a counting record shows the counter, any
    other record shows counter + 1 flagged pending. PT/OT records without a
    member cannot be numbered and come out pending with no number.
    Consulting/Personal entries pass through unnumbered.

    `total_sessions_for(member_id)` optionally annotates each numbered entry
    with the member's purchased session count (None when unknown).
    """
    ordered = sorted(records, key=_sort_key)
    counters: dict[tuple[int, str], int] = defaultdict(int)
    totals: dict[int, int | None] = {}

    for record in ordered:
        if not record.discipline.is_session_based:
            yield IndexedRecord(record=record, session_number=None, pending=False)
            continue
        if record.member_id is None:
            yield IndexedRecord(record=record, session_number=None, pending=True)
            continue

        key = (record.member_id, record.discipline.value)
        total = None
        if total_sessions_for is not None:
            if record.member_id not in totals:
                totals[record.member_id] = total_sessions_for(record.member_id)
            total = totals[record.member_id]

        if counts_for_index(record):
            counters[key] += 1
            yield IndexedRecord(record=record, session_number=counters[key], pending=False, total_sessions=total)
        else:
            yield IndexedRecord(record=record, session_number=counters[key] + 1, pending=True, total_sessions=total)
