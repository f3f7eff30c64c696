"""
auth.py
Authentication utilities (bcrypt hashing, verify, login, change password, staff accounts).

This avoids passlib's bcrypt backend auto-detection issues on some Python 3.13 Windows setups.
"""

from __future__ import annotations

import logging

import bcrypt

import db
from errors import InvalidRecordError
from models import ADMIN_ROLES, STAFF_ROLES, Staff

logger = logging.getLogger(__name__)


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str) -> str:
    """
    Returns a bcrypt hash as a UTF-8 string (stored in SQLite).
    """
    secret = _to_bcrypt_secret(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(secret, salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against stored bcrypt hash.
    """
    secret = _to_bcrypt_secret(password)
    stored = password_hash.encode("utf-8")
    return bcrypt.checkpw(secret, stored)


def is_admin(role: str | None) -> bool:
    return role in ADMIN_ROLES


def _row_to_staff(row) -> Staff:
    return Staff(id=row["id"], username=row["username"], role=row["role"])


def get_staff_by_username(username: str):
    return db.fetch_one("SELECT * FROM staff_users WHERE username = ?", (username,))


def list_staff() -> list[Staff]:
    rows = db.fetch_all("SELECT * FROM staff_users ORDER BY username ASC")
    return [_row_to_staff(r) for r in rows]


def login(username: str, password: str) -> Staff | None:
    row = get_staff_by_username(username)
    if not row or not verify_password(password, row["password_hash"]):
        logger.info("Failed login for %r", username)
        return None
    return _row_to_staff(row)


def create_staff(username: str, password: str, role: str = "staff") -> Staff:
    username = username.strip()
    if not username:
        raise InvalidRecordError("Username is required.")
    if role not in STAFF_ROLES:
        raise InvalidRecordError(f"Unknown role {role!r}.")
    if len(password) < 6:
        raise InvalidRecordError("Password must be at least 6 characters.")
    if get_staff_by_username(username):
        raise InvalidRecordError(f"Username {username!r} is taken.")
    staff_id = db.execute(
        "INSERT INTO staff_users(username, password_hash, role, created_at) VALUES(?,?,?,?)",
        (username, hash_password(password), role, db.now_iso()),
    )
    logger.info("Created %s account %r", role, username)
    return Staff(id=staff_id, username=username, role=role)


def change_password(username: str, new_password: str) -> None:
    new_hash = hash_password(new_password)
    db.execute(
        "UPDATE staff_users SET password_hash = ? WHERE username = ?",
        (new_hash, username),
    )
    db.clear_force_password_change()
