# tests/conftest.py

from datetime import datetime

import pytest

import db
import service
from models import ClassRecord, Discipline, PTStatus, Staff


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "gym_test.db")
    # Hash value is never verified in these tests; skip the bcrypt cost
    db.init_db("not-a-real-hash")
    return tmp_path / "gym_test.db"


def _add_staff(username: str, role: str) -> Staff:
    staff_id = db.execute(
        "INSERT INTO staff_users(username, password_hash, role, created_at) VALUES(?,?,?,?)",
        (username, "x", role, db.now_iso()),
    )
    return Staff(id=staff_id, username=username, role=role)


@pytest.fixture
def trainer(tmp_db):
    return _add_staff("trainer_kim", "staff")


@pytest.fixture
def other_trainer(tmp_db):
    return _add_staff("trainer_lee", "staff")


@pytest.fixture
def admin(tmp_db):
    return _add_staff("manager", "admin")


@pytest.fixture
def member_id(tmp_db):
    return db.execute(
        "INSERT INTO members(full_name, phone, join_date) VALUES(?,?,?)",
        ("Member M", "01000000009", "2024-01-02"),
    )


@pytest.fixture
def membership(member_id):
    return service.open_membership(member_id, "PT 30 sessions", 30, 10)


@pytest.fixture
def pt_record(trainer, member_id, membership):
    start = datetime(2024, 5, 14, 9, 0)
    return service.create_record(trainer.id, Discipline.PT, start, start.replace(hour=10), member_id=member_id)


@pytest.fixture
def make_record():
    """Build an unsaved ClassRecord for pure (no database) tests."""

    def _make(
        discipline=Discipline.PT,
        status=PTStatus.RESERVED,
        start=datetime(2024, 5, 14, 9, 0),
        member_id=1,
        record_id=1,
        is_locked=False,
        last_charged_consumed=False,
        sub_type=None,
    ):
        return ClassRecord(
            id=record_id,
            staff_id=1,
            member_id=member_id,
            discipline=discipline,
            status=status,
            sub_type=sub_type,
            start_time=start,
            end_time=start.replace(hour=start.hour + 1),
            is_locked=is_locked,
            last_charged_consumed=last_charged_consumed,
        )

    return _make
