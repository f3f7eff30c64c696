# tests/test_indexer.py

from datetime import datetime

from indexer import index_sessions
from models import Discipline, OTStatus, PTStatus


def _numbers(items):
    return [(i.record.id, i.session_number, i.pending) for i in items]


def test_counter_only_moves_on_counting_records(make_record):
    records = [
        make_record(record_id=3, status=PTStatus.SERVICE, start=datetime(2024, 5, 1, 11)),
        make_record(record_id=1, status=PTStatus.COMPLETED, start=datetime(2024, 5, 1, 9)),
        make_record(record_id=2, status=PTStatus.RESERVED, start=datetime(2024, 5, 1, 10)),
    ]

    assert _numbers(index_sessions(records)) == [(1, 1, False), (2, 2, True), (3, 2, False)]


def test_groups_by_member_and_discipline(make_record):
    records = [
        make_record(record_id=1, member_id=1, status=PTStatus.COMPLETED, start=datetime(2024, 5, 1, 9)),
        make_record(record_id=2, member_id=2, status=PTStatus.COMPLETED, start=datetime(2024, 5, 1, 10)),
        make_record(
            record_id=3, member_id=1, discipline=Discipline.OT, status=OTStatus.COMPLETED,
            start=datetime(2024, 5, 1, 11),
        ),
        make_record(record_id=4, member_id=1, status=PTStatus.NO_SHOW_DEDUCTED, start=datetime(2024, 5, 2, 9)),
        make_record(record_id=5, member_id=1, status=PTStatus.NO_SHOW, start=datetime(2024, 5, 3, 9)),
    ]

    assert _numbers(index_sessions(records)) == [
        (1, 1, False),
        (2, 1, False),
        (3, 1, False),
        (4, 2, False),
        (5, 3, True),
    ]


def test_non_session_and_incomplete_records(make_record):
    records = [
        make_record(record_id=1, discipline=Discipline.PERSONAL, status=None, member_id=None),
        make_record(record_id=2, status=PTStatus.COMPLETED, member_id=None, start=datetime(2024, 5, 15, 9)),
    ]

    assert _numbers(index_sessions(records)) == [(1, None, False), (2, None, True)]


def test_is_deterministic_and_restartable(make_record):
    records = [
        make_record(record_id=i, status=s, start=datetime(2024, 5, i, 9))
        for i, s in enumerate(
            [PTStatus.COMPLETED, PTStatus.CANCELLED, PTStatus.SERVICE, PTStatus.RESERVED], start=1
        )
    ]

    first = _numbers(index_sessions(records))
    second = _numbers(index_sessions(list(reversed(records))))
    assert first == second == [(1, 1, False), (2, 2, True), (3, 2, False), (4, 3, True)]


def test_total_sessions_annotation(make_record):
    calls = []

    def totals(member_id):
        calls.append(member_id)
        return {1: 30}.get(member_id)

    records = [
        make_record(record_id=1, member_id=1, start=datetime(2024, 5, 1, 9)),
        make_record(record_id=2, member_id=1, start=datetime(2024, 5, 2, 9)),
        make_record(record_id=3, member_id=2, start=datetime(2024, 5, 3, 9)),
    ]

    items = list(index_sessions(records, totals))
    assert [i.total_sessions for i in items] == [30, 30, None]
    assert calls == [1, 2]
