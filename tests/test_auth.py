# tests/test_auth.py

import pytest

import auth
import db
from errors import InvalidRecordError


def test_hash_and_verify():
    hashed = auth.hash_password("s3cret!")
    assert hashed != "s3cret!"
    assert auth.verify_password("s3cret!", hashed)
    assert not auth.verify_password("wrong", hashed)


def test_long_passwords_are_truncated_to_72_bytes():
    hashed = auth.hash_password("a" * 100)
    assert auth.verify_password("a" * 72, hashed)


def test_create_staff_and_login(tmp_db):
    staff = auth.create_staff("coach", "pass1234", "admin")
    assert staff.is_admin
    assert auth.is_admin("admin")
    assert not auth.is_admin("staff")

    assert auth.login("coach", "pass1234") == staff
    assert auth.login("coach", "nope") is None
    assert auth.login("ghost", "pass1234") is None


def test_create_staff_validation(tmp_db):
    auth.create_staff("coach", "pass1234")
    with pytest.raises(InvalidRecordError):
        auth.create_staff("coach", "pass1234")
    with pytest.raises(InvalidRecordError):
        auth.create_staff("newbie", "123")
    with pytest.raises(InvalidRecordError):
        auth.create_staff("boss", "pass1234", "owner")


def test_change_password_clears_forced_change(tmp_db):
    assert db.is_force_password_change()
    auth.change_password("admin", "brand-new-pw")

    assert not db.is_force_password_change()
    assert auth.login("admin", "brand-new-pw") is not None
