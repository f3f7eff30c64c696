# tests/test_service.py

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

import db
import service
from errors import (
    InvalidRecordError,
    InvalidTransitionError,
    LockedRecordError,
    NoActiveMembershipError,
    NotAuthorizedError,
    OverconsumptionError,
    RecordNotFoundError,
)
from models import Discipline, OTStatus, PTStatus, ReviewDecision
from stores import MembershipLedgerStore


def _used(member_id):
    return service.current_membership(member_id).used_sessions


# --- status changes and the ledger ---


def test_pt_ledger_scenario(pt_record, member_id):
    assert _used(member_id) == 10

    record = service.change_status(pt_record.id, "completed")
    assert record.status is PTStatus.COMPLETED
    assert record.last_charged_consumed
    assert _used(member_id) == 11

    service.change_status(pt_record.id, "no_show_deducted")
    assert _used(member_id) == 11

    record = service.change_status(pt_record.id, "cancelled")
    assert record.status is PTStatus.CANCELLED
    assert not record.last_charged_consumed
    assert _used(member_id) == 10


def test_retried_transition_charges_once(pt_record, member_id):
    service.change_status(pt_record.id, "completed")
    service.change_status(pt_record.id, "completed")
    service.change_status(pt_record.id, PTStatus.COMPLETED)

    assert _used(member_id) == 11
    with db.get_conn() as conn:
        assert len(MembershipLedgerStore(conn).entries_for_record(pt_record.id)) == 1


def test_floor_holds_over_repeated_refunds(trainer, member_id):
    service.open_membership(member_id, "PT 3", 3, 0)
    start = datetime(2024, 5, 20, 9)
    record = service.create_record(trainer.id, "PT", start, start.replace(hour=10), member_id=member_id)

    for status in ["completed", "cancelled", "no_show_deducted", "no_show", "service", "reserved"]:
        service.change_status(record.id, status)
        assert _used(member_id) >= 0
    assert _used(member_id) == 0


def test_ledger_failure_leaves_status_unchanged(trainer, member_id):
    start = datetime(2024, 5, 20, 9)
    record = service.create_record(trainer.id, "PT", start, start.replace(hour=10), member_id=member_id)

    with pytest.raises(NoActiveMembershipError) as exc:
        service.change_status(record.id, "completed")
    assert exc.value.message == "No active membership to deduct from."
    assert service.get_record(record.id).status is PTStatus.RESERVED


def test_overconsumption_aborts_status_change(trainer, member_id):
    service.open_membership(member_id, "PT 1", 1, 1)
    start = datetime(2024, 5, 20, 9)
    record = service.create_record(trainer.id, "PT", start, start.replace(hour=10), member_id=member_id)

    with pytest.raises(OverconsumptionError):
        service.change_status(record.id, "no_show_deducted")
    unchanged = service.get_record(record.id)
    assert unchanged.status is PTStatus.RESERVED
    assert not unchanged.last_charged_consumed

    clamped = service.change_status(record.id, "completed", overconsumption_policy="clamp")
    assert clamped.status is PTStatus.COMPLETED
    assert not clamped.last_charged_consumed
    assert _used(member_id) == 1


def test_clamped_charge_is_not_refunded(trainer, member_id):
    service.open_membership(member_id, "PT 1", 1, 0)
    start = datetime(2024, 5, 20, 9)
    first = service.create_record(trainer.id, "PT", start, start.replace(hour=10), member_id=member_id)
    second = service.create_record(
        trainer.id, "PT", start.replace(hour=11), start.replace(hour=12), member_id=member_id
    )

    service.change_status(first.id, "completed")
    service.change_status(second.id, "completed", overconsumption_policy="clamp")
    assert _used(member_id) == 1

    service.change_status(second.id, "cancelled", overconsumption_policy="clamp")
    assert _used(member_id) == 1
    with db.get_conn() as conn:
        assert MembershipLedgerStore(conn).entries_for_record(second.id) == []


def test_create_with_clamped_charge_stays_uncharged(trainer, member_id):
    service.open_membership(member_id, "PT 1", 1, 1)
    start = datetime(2024, 5, 20, 9)
    record = service.create_record(
        trainer.id, "PT", start, start.replace(hour=10), member_id=member_id,
        status="completed", overconsumption_policy="clamp",
    )
    assert not record.last_charged_consumed

    service.delete_record(record.id)
    assert _used(member_id) == 1


def test_concurrent_charges_are_serialized(trainer, member_id, membership):
    start = datetime(2024, 5, 1, 6)
    records = [
        service.create_record(
            trainer.id, "PT", start.replace(day=day), start.replace(day=day, hour=7), member_id=member_id
        )
        for day in range(1, 13)
    ]

    with ThreadPoolExecutor(max_workers=len(records)) as pool:
        results = list(pool.map(lambda r: service.change_status(r.id, "completed"), records))

    assert all(r.last_charged_consumed for r in results)
    assert _used(member_id) == 10 + len(records)


def test_refund_goes_back_to_charged_membership(pt_record, member_id, membership):
    service.change_status(pt_record.id, "completed")
    renewal = service.open_membership(member_id, "PT 10 renewal", 10, 0)

    service.change_status(pt_record.id, "cancelled")
    used = {m.id: m.used_sessions for m in service.memberships_for(member_id)}
    assert used == {membership.id: 10, renewal.id: 0}


def test_refund_falls_back_to_current_membership(pt_record, member_id, membership):
    service.change_status(pt_record.id, "completed")
    service.set_membership_status(membership.id, "expired")
    renewal = service.open_membership(member_id, "PT 10 renewal", 10, 3)

    service.delete_record(pt_record.id)
    assert service.current_membership(member_id).id == renewal.id
    assert _used(member_id) == 2


def test_service_status_is_numbered_but_not_billed(pt_record, member_id):
    service.change_status(pt_record.id, "service")
    assert _used(member_id) == 10

    items = service.list_with_session_numbers(pt_record.staff_id).to_list()
    assert [(i.session_number, i.pending) for i in items] == [(1, False)]


def test_ot_record_charges_on_completed(trainer, member_id, membership):
    start = datetime(2024, 5, 21, 9)
    record = service.create_record(trainer.id, "OT", start, start.replace(hour=10), member_id=member_id)
    assert record.status is OTStatus.RESERVED

    service.change_status(record.id, "completed")
    assert _used(member_id) == 11
    service.change_status(record.id, "converted")
    assert _used(member_id) == 10

    with pytest.raises(InvalidTransitionError):
        service.change_status(record.id, "no_show_deducted")


def test_change_status_unknown_record(tmp_db):
    with pytest.raises(RecordNotFoundError):
        service.change_status(999, "completed")


def test_only_owner_or_admin_may_change(pt_record, other_trainer, admin, member_id):
    with pytest.raises(NotAuthorizedError):
        service.change_status(pt_record.id, "completed", actor=other_trainer)
    assert _used(member_id) == 10

    service.change_status(pt_record.id, "completed", actor=admin)
    assert _used(member_id) == 11


# --- create / edit / delete ---


def test_create_validates_inputs(trainer, member_id):
    start = datetime(2024, 5, 20, 9)
    with pytest.raises(InvalidRecordError):
        service.create_record(trainer.id, "PT", start, start.replace(hour=10))
    with pytest.raises(InvalidRecordError):
        service.create_record(trainer.id, "Consulting", start, start)
    with pytest.raises(InvalidTransitionError):
        service.create_record(trainer.id, "PT", start, start.replace(hour=10), member_id=member_id, status="converted")


def test_create_completed_charges_immediately(trainer, member_id, membership):
    start = datetime(2024, 5, 20, 9)
    record = service.create_record(
        trainer.id, Discipline.PT, start, start.replace(hour=10), member_id=member_id, status="completed"
    )
    assert record.last_charged_consumed
    assert _used(member_id) == 11


def test_delete_refunds_charged_record(pt_record, member_id):
    service.change_status(pt_record.id, "completed")
    assert _used(member_id) == 11

    service.delete_record(pt_record.id)
    assert _used(member_id) == 10
    with pytest.raises(RecordNotFoundError):
        service.get_record(pt_record.id)


def test_edit_moves_charge_to_new_member(pt_record, member_id):
    other = db.execute(
        "INSERT INTO members(full_name, phone, join_date) VALUES(?,?,?)", ("Member N", "010", "2024-01-01")
    )
    service.open_membership(other, "PT 10", 10, 0)
    service.change_status(pt_record.id, "completed")

    edited = service.edit_record(pt_record.id, member_id=other)
    assert edited.member_id == other
    assert _used(member_id) == 10
    assert _used(other) == 1


def test_edit_rejects_bad_times(pt_record):
    with pytest.raises(InvalidRecordError):
        service.edit_record(pt_record.id, end_time=pt_record.start_time)


def test_edit_sub_type_only_on_tagged_disciplines(pt_record, trainer):
    with pytest.raises(InvalidTransitionError):
        service.edit_record(pt_record.id, sub_type="meal")
    assert service.get_record(pt_record.id).sub_type is None

    start = datetime(2024, 5, 20, 15)
    record = service.create_record(trainer.id, "Consulting", start, start.replace(hour=16), sub_type="sales")
    assert service.edit_record(record.id, sub_type=" info ").sub_type == "info"


def test_reclassify_personal_entry(trainer):
    start = datetime(2024, 5, 20, 12)
    record = service.create_record(trainer.id, "Personal", start, start.replace(hour=13), sub_type="meal")

    updated = service.reclassify(record.id, "rest")
    assert updated.sub_type == "rest"
    assert updated.status is None


# --- monthly lock ---


def test_submitted_month_locks_every_mutation(pt_record, trainer, admin, member_id):
    service.submit_month(trainer.id, "2024-05")
    assert service.get_record(pt_record.id).is_locked

    with pytest.raises(LockedRecordError):
        service.change_status(pt_record.id, "completed")
    with pytest.raises(LockedRecordError):
        service.edit_record(pt_record.id, end_time=pt_record.end_time.replace(hour=11))
    with pytest.raises(LockedRecordError):
        service.delete_record(pt_record.id)
    with pytest.raises(LockedRecordError):
        service.create_record(
            trainer.id, "PT", datetime(2024, 5, 28, 9), datetime(2024, 5, 28, 10), member_id=member_id
        )
    # Admins are held to the lock as well
    with pytest.raises(LockedRecordError):
        service.change_status(pt_record.id, "completed", actor=admin)
    assert _used(member_id) == 10


def test_may_2024_submit_reject_scenario(pt_record, trainer, admin, member_id):
    service.submit_month(trainer.id, "2024-05")
    with pytest.raises(LockedRecordError):
        service.change_status(pt_record.id, "completed")

    service.review_month(trainer.id, "2024-05", ReviewDecision.REJECT, "missing session 4", admin)
    assert not service.get_record(pt_record.id).is_locked

    record = service.change_status(pt_record.id, "completed")
    assert record.status is PTStatus.COMPLETED
    assert _used(member_id) == 11


def test_approved_month_stays_locked(pt_record, trainer, admin):
    service.submit_month(trainer.id, "2024-05")
    service.review_month(trainer.id, "2024-05", "approve", None, admin)

    with pytest.raises(LockedRecordError):
        service.reclassify(pt_record.id, "sales")
    with pytest.raises(LockedRecordError):
        service.change_status(pt_record.id, "completed")


def test_edit_into_locked_month_is_blocked(trainer, member_id, membership):
    service.submit_month(trainer.id, "2024-06")
    start = datetime(2024, 5, 30, 9)
    record = service.create_record(trainer.id, "PT", start, start.replace(hour=10), member_id=member_id)

    with pytest.raises(LockedRecordError):
        service.edit_record(record.id, start_time=datetime(2024, 6, 3, 9), end_time=datetime(2024, 6, 3, 10))


# --- session listing ---


def test_listing_scenario(trainer, member_id, membership):
    for hour, status in [(9, "completed"), (10, "reserved"), (11, "service")]:
        service.create_record(
            trainer.id, "PT", datetime(2024, 5, 14, hour), datetime(2024, 5, 14, hour + 1),
            member_id=member_id, status=status,
        )

    listing = service.list_with_session_numbers(trainer.id)
    first = [(i.session_number, i.pending) for i in listing]
    second = [(i.session_number, i.pending) for i in listing]

    assert first == second == [(1, False), (2, True), (2, False)]
    assert {i.total_sessions for i in listing} == {30}


def test_listing_range_keeps_full_history_numbering(trainer, member_id, membership):
    service.create_record(
        trainer.id, "PT", datetime(2024, 4, 30, 9), datetime(2024, 4, 30, 10),
        member_id=member_id, status="completed",
    )
    service.create_record(
        trainer.id, "PT", datetime(2024, 5, 2, 9), datetime(2024, 5, 2, 10),
        member_id=member_id, status="completed",
    )

    items = service.list_with_session_numbers(trainer.id, datetime(2024, 5, 1), datetime(2024, 6, 1)).to_list()
    assert [(i.record.start_time.day, i.session_number) for i in items] == [(2, 2)]


def test_listing_reflects_new_data_on_each_iteration(pt_record):
    listing = service.list_with_session_numbers(pt_record.staff_id)
    assert [i.pending for i in listing] == [True]

    service.change_status(pt_record.id, "completed")
    assert [i.pending for i in listing] == [False]
