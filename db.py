"""
db.py
SQLite helpers + initialization (creates DB/tables, inserts default admin, etc.)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime

import config

DB_FILE = config.DB_FILE

logger = logging.getLogger(__name__)


def _connect(**kwargs) -> sqlite3.Connection:
    conn = sqlite3.connect(DB_FILE, check_same_thread=False, timeout=30, **kwargs)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_conn():
    conn = _connect()
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


@contextmanager
def transaction():
    """
    Write transaction for operations that must be atomic across tables.

    BEGIN IMMEDIATE takes SQLite's write lock up front, so concurrent writers
    (two trainers charging the same membership, a submit racing a review)
    are serialized instead of interleaving their reads and writes.
    """
    conn = _connect(isolation_level=None)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def now_iso() -> str:
    return datetime.now().isoformat(timespec="microseconds")


def _create_tables() -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS staff_users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'staff'
                CHECK(role IN ('staff','admin','company_admin','system_admin')),
            created_at TEXT NOT NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            full_name TEXT NOT NULL,
            phone TEXT NOT NULL,
            join_date TEXT NOT NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS memberships (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            member_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            total_sessions INTEGER NOT NULL CHECK(total_sessions >= 0),
            used_sessions INTEGER NOT NULL DEFAULT 0
                CHECK(used_sessions >= 0 AND used_sessions <= total_sessions),
            status TEXT NOT NULL CHECK(status IN ('active','expired','paused')),
            created_at TEXT NOT NULL,
            FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS class_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            staff_id INTEGER NOT NULL,
            member_id INTEGER,
            discipline TEXT NOT NULL CHECK(discipline IN ('PT','OT','Consulting','Personal')),
            status TEXT,
            sub_type TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            last_charged_consumed INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(staff_id) REFERENCES staff_users(id),
            FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE SET NULL
        )
        """
    )
    execute("CREATE INDEX IF NOT EXISTS idx_class_records_staff ON class_records (staff_id, start_time)")

    # Append-only trail of every counter adjustment (one row per charge/refund)
    execute(
        """
        CREATE TABLE IF NOT EXISTS session_ledger_entries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            record_id INTEGER NOT NULL,
            membership_id INTEGER NOT NULL,
            member_id INTEGER NOT NULL,
            delta INTEGER NOT NULL CHECK(delta <> 0),
            from_status TEXT,
            to_status TEXT,
            memo TEXT,
            created_at TEXT NOT NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS monthly_submissions (
            staff_id INTEGER NOT NULL,
            year_month TEXT NOT NULL,
            status TEXT NOT NULL CHECK(status IN ('none','submitted','approved','rejected')),
            submitted_at TEXT,
            reviewed_at TEXT,
            reviewed_by INTEGER,
            admin_memo TEXT,
            stats TEXT NOT NULL DEFAULT '{}',
            version INTEGER NOT NULL DEFAULT 1,
            PRIMARY KEY(staff_id, year_month),
            FOREIGN KEY(staff_id) REFERENCES staff_users(id)
        )
        """
    )

    # Small settings table (used to force password change on first login)
    execute(
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


def _get_setting(key: str, default: str | None = None) -> str | None:
    row = fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
    if row:
        return str(row["value"])
    return default


def _set_setting(key: str, value: str) -> None:
    execute(
        """
        INSERT INTO app_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def init_db(default_admin_hash: str) -> None:
    """
    Initialize the database.
    - Create tables
    - Insert default system admin if no staff user exists
    - Force password change on first login
    """
    _create_tables()

    admin = fetch_one("SELECT id FROM staff_users LIMIT 1")
    if not admin:
        execute(
            "INSERT INTO staff_users(username, password_hash, role, created_at) VALUES(?,?,?,?)",
            (config.DEFAULT_ADMIN_USERNAME, default_admin_hash, "system_admin", now_iso()),
        )
        _set_setting("force_password_change", "1")
        logger.info("Created default admin account %r", config.DEFAULT_ADMIN_USERNAME)
    else:
        # ensure setting exists
        if _get_setting("force_password_change") is None:
            _set_setting("force_password_change", "0")


def is_force_password_change() -> bool:
    val = fetch_one("SELECT value FROM app_settings WHERE key = ?", ("force_password_change",))
    return bool(val and str(val["value"]) == "1")


def clear_force_password_change() -> None:
    _set_setting("force_password_change", "0")
