"""
gate.py
Monthly submission gate: per staff/month lock, submit and admin review.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

import config
import db
import utils
from errors import (
    AlreadySubmittedError,
    ConcurrentUpdateError,
    InvalidRecordError,
    MonthLockedError,
    NotAuthorizedError,
    NotSubmittedError,
)
from models import MonthlySubmission, ReviewDecision, Staff, SubmissionStatus
from stores import MonthlySubmissionStore

logger = logging.getLogger(__name__)


class MonthlySubmissionGate:
    """
    none --submit--> submitted --approve--> approved
                     submitted --reject--> rejected --submit--> submitted

    `submitted` and `approved` lock every class record the staff member has
    in that month. Mutating code calls ensure_unlocked() inside its own
    transaction, so the lock holds whatever the UI did or did not check.
    """

    def __init__(self, store: MonthlySubmissionStore):
        self.store = store

    def get(self, staff_id: int, year_month: str) -> MonthlySubmission:
        utils.year_month_bounds(year_month)
        return self.store.get(staff_id, year_month)

    def is_locked(self, staff_id: int, year_month: str) -> bool:
        return self.get(staff_id, year_month).status.locks_month

    def ensure_unlocked(self, staff_id: int, when: datetime | str) -> None:
        year_month = when.strftime("%Y-%m") if isinstance(when, datetime) else when
        submission = self.get(staff_id, year_month)
        if submission.status.locks_month:
            logger.info("Blocked change to staff %s %s (%s)", staff_id, year_month, submission.status.value)
            raise MonthLockedError(staff_id, year_month, submission.status.value)

    def submit(self, staff_id: int, year_month: str, stats: dict | None = None) -> MonthlySubmission:
        utils.year_month_bounds(year_month)
        for attempt in range(1, config.SUBMIT_MAX_RETRIES + 1):
            current = self.store.get(staff_id, year_month)
            if current.status.locks_month:
                raise AlreadySubmittedError(
                    f"{year_month} is already {current.status.value}; wait for the admin review."
                )
            pending = replace(
                current,
                status=SubmissionStatus.SUBMITTED,
                submitted_at=db.now_iso(),
                reviewed_at=None,
                reviewed_by=None,
                stats=stats if stats is not None else current.stats,
            )
            try:
                saved = self.store.upsert(pending)
            except ConcurrentUpdateError:
                logger.warning("Submit of %s for staff %s raced another write (attempt %s)", year_month, staff_id, attempt)
                continue
            logger.info("Staff %s submitted %s (%s -> submitted)", staff_id, year_month, current.status.value)
            return saved
        raise ConcurrentUpdateError(f"Could not submit {year_month}; please retry.")

    def review(
        self,
        staff_id: int,
        year_month: str,
        decision: ReviewDecision | str,
        memo: str | None,
        reviewer: Staff,
    ) -> MonthlySubmission:
        if not reviewer.is_admin:
            raise NotAuthorizedError("Only admins can approve or reject a monthly schedule.")
        try:
            decision = ReviewDecision(decision)
        except ValueError:
            raise InvalidRecordError(f"Unknown review decision {decision!r}; use approve or reject.") from None
        current = self.get(staff_id, year_month)
        if current.status is not SubmissionStatus.SUBMITTED:
            raise NotSubmittedError(f"{year_month} is {current.status.value}, not awaiting review.")

        new_status = SubmissionStatus.APPROVED if decision is ReviewDecision.APPROVE else SubmissionStatus.REJECTED
        saved = self.store.upsert(
            replace(
                current,
                status=new_status,
                reviewed_at=db.now_iso(),
                reviewed_by=reviewer.id,
                admin_memo=(memo or "").strip() or None,
            )
        )
        logger.info("%s %s %s for staff %s", reviewer.username, new_status.value, year_month, staff_id)
        return saved
