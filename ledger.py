"""
ledger.py
Session ledger engine: debits/credits a member's current membership counter.
"""

from __future__ import annotations

import logging

import config
from attendance import consumes_session
from errors import InvalidRecordError, NoActiveMembershipError, OverconsumptionError
from models import ClassRecord, ClassStatus, MembershipLedger, MembershipStatus
from stores import MembershipLedgerStore

logger = logging.getLogger(__name__)

POLICIES = ("reject", "clamp")


def _status_value(status: ClassStatus | None) -> str | None:
    return status.value if status is not None else None


class SessionLedgerEngine:
    """
    Applies signed session deltas to the member's current ledger (the most
    recently created active membership).

    The counter is changed with a single conditional UPDATE run inside the
    caller's write transaction; concurrent charges against one membership
    are serialized by the database, never by reading and writing back here.
    """

    def __init__(self, store: MembershipLedgerStore, overconsumption_policy: str | None = None):
        policy = (overconsumption_policy or config.OVERCONSUMPTION_POLICY).lower()
        if policy not in POLICIES:
            raise ValueError(f"Unknown overconsumption policy {policy!r}; expected one of {POLICIES}")
        self.store = store
        self.policy = policy

    def _ledger_for(self, member_id: int, membership_id: int | None) -> MembershipLedger | None:
        if membership_id is not None:
            charged = self.store.get(membership_id)
            if charged.status is MembershipStatus.ACTIVE and charged.member_id == member_id:
                return charged
        return self.store.get_active_for_member(member_id)

    def _adjust(
        self,
        member_id: int,
        delta: int,
        record_id: int | None = None,
        from_status: ClassStatus | None = None,
        to_status: ClassStatus | None = None,
        membership_id: int | None = None,
    ) -> tuple[MembershipLedger | None, int]:
        ledger = self._ledger_for(member_id, membership_id)
        if delta == 0:
            return ledger, 0
        if ledger is None:
            raise NoActiveMembershipError(member_id)

        clamp = self.policy == "clamp"
        if not self.store.atomic_adjust(ledger.id, delta, clamp_ceiling=clamp):
            current = self.store.get(ledger.id)
            if current.status is not MembershipStatus.ACTIVE:
                raise NoActiveMembershipError(member_id)
            logger.warning(
                "Rejected charge of %+d on membership %s (%s/%s used)",
                delta, current.id, current.used_sessions, current.total_sessions,
            )
            raise OverconsumptionError(current.id, current.used_sessions, current.total_sessions)

        updated = self.store.get(ledger.id)
        applied = updated.used_sessions - ledger.used_sessions
        if applied != delta:
            logger.warning(
                "Membership %s clamped: requested %+d, applied %+d (now %s/%s)",
                ledger.id, delta, applied, updated.used_sessions, updated.total_sessions,
            )

        if applied != 0 and record_id is not None:
            verb = "deducted" if applied > 0 else "restored"
            memo = f"[auto] {_status_value(to_status) or '-'} / {ledger.name} ({abs(applied)} {verb})"
            self.store.append_entry(
                record_id, ledger, applied, _status_value(from_status), _status_value(to_status), memo
            )

        logger.info(
            "Membership %s for member %s: used %s -> %s of %s",
            ledger.id, member_id, ledger.used_sessions, updated.used_sessions, updated.total_sessions,
        )
        return updated, applied

    def apply_delta(
        self,
        member_id: int,
        delta: int,
        record_id: int | None = None,
        from_status: ClassStatus | None = None,
        to_status: ClassStatus | None = None,
        membership_id: int | None = None,
    ) -> MembershipLedger | None:
        """
        Move the member's ledger by `delta` and return it afterwards.

        `membership_id` names the ledger to move when it is still active
        (refunds go back to the membership that was charged); otherwise the
        member's current ledger is used.
        """
        updated, _ = self._adjust(member_id, delta, record_id, from_status, to_status, membership_id)
        return updated

    def charge_for_transition(self, record: ClassRecord, to_status: ClassStatus) -> int:
        """
        Bring the ledger in line with `to_status` for this record and return the delta applied.

        The delta is taken against what was last charged for the record
        (record.last_charged_consumed), so repeating the same transition, for
        instance after a retry, charges nothing the second time. Under the
        clamp policy a charge capped at the ceiling applies 0, and the record
        must then stay uncharged; see `charged_after`.
        """
        target = consumes_session(to_status)
        delta = int(target) - int(record.last_charged_consumed)
        if delta == 0:
            return 0
        if record.member_id is None:
            raise InvalidRecordError(f"{record.discipline.value} entry {record.id} has no member to charge.")
        membership_id = self.store.charged_membership_id(record.id) if delta < 0 else None
        _, applied = self._adjust(
            record.member_id,
            delta,
            record_id=record.id,
            from_status=record.status,
            to_status=to_status,
            membership_id=membership_id,
        )
        return applied

    def refund_record(self, record: ClassRecord) -> int:
        """Return the session charged for a record that is being removed."""
        if not record.last_charged_consumed or record.member_id is None:
            return 0
        _, applied = self._adjust(
            record.member_id,
            -1,
            record_id=record.id,
            from_status=record.status,
            to_status=None,
            membership_id=self.store.charged_membership_id(record.id),
        )
        return applied


def charged_after(record: ClassRecord, to_status: ClassStatus, applied: int) -> bool:
    """
    Whether `record` holds a session charge once moved to `to_status`.

    A refund always clears the charge, even when the floor absorbed it. An
    increment only sets it when a session was actually taken.
    """
    if not consumes_session(to_status):
        return False
    return record.last_charged_consumed or applied > 0
