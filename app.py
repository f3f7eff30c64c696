"""
app.py
Streamlit Gym Scheduler (staff schedules, session ledger, monthly submission).
Run: streamlit run app.py
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
import pandas as pd
import streamlit as st

import attendance
import auth
import config
import db
import service
import utils
from errors import SchedulerError
from logger import setup_logger
from models import (
    CONSULTING_SUB_TYPES,
    PERSONAL_SUB_TYPES,
    Discipline,
    MembershipStatus,
    ReviewDecision,
    SubmissionStatus,
)

st.set_page_config(page_title="Gym Scheduler", layout="wide")

logger = setup_logger()


def init_once():
    # Initialize DB + default admin if needed
    default_hash = auth.hash_password(config.DEFAULT_ADMIN_PASSWORD)
    db.init_db(default_hash)


def require_login():
    if "staff" not in st.session_state:
        st.session_state.staff = None


def logout():
    st.session_state.staff = None
    st.success("Logged out.")


def login_screen():
    st.title("🔐 Staff Login")

    col1, col2 = st.columns([1, 1])
    with col1:
        username = st.text_input("Username", value=config.DEFAULT_ADMIN_USERNAME)
        password = st.text_input("Password", type="password")
        if st.button("Login", type="primary"):
            staff = auth.login(username.strip(), password)
            if staff:
                st.session_state.staff = staff
                st.rerun()
            else:
                st.error("Invalid username or password.")

    with col2:
        st.info(
            "First run creates a default system admin:\n\n"
            f"- username: **{config.DEFAULT_ADMIN_USERNAME}**\n"
            "- password: **admin123** (or GYM_DEFAULT_ADMIN_PASSWORD)\n\n"
            "You will be forced to change it on first login."
        )


def force_change_password_screen():
    st.title("⚠️ Change Password (Required)")

    st.warning("You must change the default password before using the app.")
    new1 = st.text_input("New password", type="password")
    new2 = st.text_input("Confirm new password", type="password")

    if st.button("Update password", type="primary"):
        if len(new1) < 6:
            st.error("Password must be at least 6 characters.")
            return
        if new1 != new2:
            st.error("Passwords do not match.")
            return
        auth.change_password(st.session_state.staff.username, new1)
        st.success("Password updated. You can continue.")
        st.rerun()


# ---------- Helpers ----------

def run_action(action, success_message: str) -> bool:
    """Run a service call and render its typed failure as an actionable message."""
    try:
        action()
    except SchedulerError as e:
        st.error(e.message)
        return False
    st.success(success_message)
    return True


def pick_staff(label: str = "Staff"):
    me = st.session_state.staff
    if not me.is_admin:
        return me
    staff = auth.list_staff()
    names = [s.username for s in staff]
    chosen = st.selectbox(label, names, index=names.index(me.username) if me.username in names else 0)
    return staff[names.index(chosen)]


def pick_month(key: str) -> str:
    first = st.date_input("Month", value=date.today().replace(day=1), key=key)
    return utils.current_year_month(first)


def fetch_members():
    return db.fetch_all("SELECT id, full_name, phone FROM members ORDER BY full_name ASC")


def member_options() -> dict[str, int]:
    return {f"{m['full_name']} ({m['phone']}) - ID {m['id']}": m["id"] for m in fetch_members()}


def month_banner(staff_id: int, year_month: str):
    sub = service.get_submission(staff_id, year_month)
    if sub.status.locks_month:
        st.warning(f"🔒 {year_month} is **{sub.status.value}**; entries are read-only.")
    elif sub.status is SubmissionStatus.REJECTED:
        st.error(f"↩️ {year_month} was rejected: {sub.admin_memo or 'no memo'}. Fix and resubmit.")
    return sub


# ---------- Pages ----------

def dashboard_page():
    st.header("📊 Dashboard")

    me = st.session_state.staff
    today = date.today()
    start = datetime.combine(today, time.min)
    items = service.list_with_session_numbers(me.id, start, start + timedelta(days=1)).to_list()
    month_start, month_end = utils.year_month_bounds(utils.current_year_month())
    month_items = service.list_with_session_numbers(me.id, month_start, month_end).to_list()
    month_records = [i.record for i in month_items]

    c1, c2, c3 = st.columns(3)
    c1.metric("Classes today", len(items))
    c2.metric("Entries this month", len(month_records))
    c3.metric("PT attendance rate", f"{utils.pt_attendance_rate(month_records)}%")

    month_banner(me.id, utils.current_year_month())

    st.divider()
    st.subheader("Today")
    if items:
        st.dataframe(utils.indexed_to_frame(items), use_container_width=True, hide_index=True)
    else:
        st.caption("No classes scheduled today.")


def status_controls(record):
    st.subheader(f"Entry #{record.id}: {record.discipline.value} {record.start_time:%Y-%m-%d %H:%M}")
    if record.discipline.is_session_based:
        domain = [s.value for s in attendance.status_domain(record.discipline)]
        current = record.status.value if record.status else domain[0]
        new_status = st.selectbox("Status", domain, index=domain.index(current), key=f"status_{record.id}")
        if st.button("Change status", type="primary", disabled=record.is_locked):
            if run_action(
                lambda: service.change_status(record.id, new_status, actor=st.session_state.staff),
                "Status updated.",
            ):
                st.rerun()
    else:
        tags = CONSULTING_SUB_TYPES if record.discipline is Discipline.CONSULTING else PERSONAL_SUB_TYPES
        current = record.sub_type if record.sub_type in tags else tags[-1]
        sub_type = st.selectbox("Sub-type", tags, index=tags.index(current), key=f"sub_{record.id}")
        if st.button("Reclassify", type="primary", disabled=record.is_locked):
            if run_action(
                lambda: service.reclassify(record.id, sub_type, actor=st.session_state.staff),
                "Sub-type updated.",
            ):
                st.rerun()

    delete_confirm = st.checkbox("Confirm delete", value=False, key=f"del_{record.id}")
    if st.button("Delete", type="secondary", disabled=not delete_confirm or record.is_locked):
        if run_action(lambda: service.delete_record(record.id, actor=st.session_state.staff), "Entry deleted."):
            st.rerun()


def create_form(staff):
    st.subheader("➕ Add entry")
    col1, col2, col3 = st.columns(3)
    with col1:
        discipline = Discipline(st.selectbox("Type", [d.value for d in Discipline]))
        day = st.date_input("Date", value=date.today(), key="new_day")
    with col2:
        start_t = st.time_input("Start", value=time(9, 0))
        minutes = st.number_input("Duration (min)", min_value=10, max_value=480, value=60, step=10)
    with col3:
        member_id = None
        sub_type = None
        if discipline.is_session_based:
            options = member_options()
            if not options:
                st.info("No members yet. Add a member first.")
                return
            member_id = options[st.selectbox("Member", list(options.keys()))]
        else:
            tags = CONSULTING_SUB_TYPES if discipline is Discipline.CONSULTING else PERSONAL_SUB_TYPES
            sub_type = st.selectbox("Sub-type", tags)

    if st.button("Save entry", type="primary"):
        start = datetime.combine(day, start_t)
        if run_action(
            lambda: service.create_record(
                staff.id,
                discipline,
                start,
                start + timedelta(minutes=int(minutes)),
                member_id=member_id,
                sub_type=sub_type,
                actor=st.session_state.staff,
            ),
            "Entry added.",
        ):
            st.rerun()


def schedule_page():
    st.header("🗓️ Schedule")

    with st.sidebar:
        st.subheader("Filters")
        staff = pick_staff()
        year_month = pick_month("schedule_month")

    start, end = utils.year_month_bounds(year_month)
    month_banner(staff.id, year_month)

    items = service.list_with_session_numbers(staff.id, start, end).to_list()
    df = utils.indexed_to_frame(items)
    st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()

    if items:
        by_id = {i.record.id: i.record for i in items}
        selected = st.selectbox("Entry ID", options=["(none)"] + [str(i) for i in by_id])
        if selected != "(none)":
            status_controls(by_id[int(selected)])
        st.divider()

    create_form(staff)


def memberships_page():
    st.header("🎟️ Members & Memberships")

    st.subheader("Add member")
    c1, c2 = st.columns(2)
    with c1:
        full_name = st.text_input("Full name")
    with c2:
        phone = st.text_input("Phone")
    if st.button("Add member"):
        if not full_name.strip() or not phone.strip():
            st.error("Full name and phone are required.")
        else:
            db.execute(
                "INSERT INTO members(full_name, phone, join_date) VALUES(?,?,?)",
                (full_name.strip(), phone.strip(), utils.today_iso()),
            )
            st.success("Member added.")
            st.rerun()

    st.divider()

    options = member_options()
    if not options:
        st.info("No members yet.")
        return
    member_id = options[st.selectbox("Member", list(options.keys()))]

    ledgers = service.memberships_for(member_id)
    if ledgers:
        st.dataframe(
            pd.DataFrame(
                [
                    {
                        "id": m.id,
                        "name": m.name,
                        "used": m.used_sessions,
                        "total": m.total_sessions,
                        "remaining": m.remaining_sessions,
                        "status": m.status.value,
                        "created_at": m.created_at,
                    }
                    for m in ledgers
                ]
            ),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("No memberships for this member yet.")

    st.subheader("Open membership")
    c1, c2, c3 = st.columns(3)
    with c1:
        name = st.text_input("Name", value="PT 30 sessions")
    with c2:
        total = st.number_input("Total sessions", min_value=0, value=30, step=1)
    with c3:
        used = st.number_input("Already used", min_value=0, value=0, step=1)
    if st.button("Open membership", type="primary"):
        if run_action(lambda: service.open_membership(member_id, name, int(total), int(used)), "Membership opened."):
            st.rerun()

    if ledgers:
        st.subheader("Change membership status")
        ids = [m.id for m in ledgers]
        chosen = st.selectbox("Membership ID", ids)
        status = st.selectbox("Status", [s.value for s in MembershipStatus])
        if st.button("Update status"):
            if run_action(lambda: service.set_membership_status(chosen, status), "Membership updated."):
                st.rerun()


def submission_page():
    st.header("📤 Monthly Submission")

    me = st.session_state.staff
    year_month = pick_month("submit_month")
    sub = month_banner(me.id, year_month)

    start, end = utils.year_month_bounds(year_month)
    records = [i.record for i in service.list_with_session_numbers(me.id, start, end)]
    st.dataframe(utils.monthly_stats_frame(records), use_container_width=True, hide_index=True)

    st.write(f"Status: **{sub.status.value}**")
    if sub.submitted_at:
        st.caption(f"Submitted at {sub.submitted_at}")
    if sub.admin_memo:
        st.info(f"Admin memo: {sub.admin_memo}")

    if st.button("Submit month for approval", type="primary", disabled=sub.status.locks_month):
        if run_action(
            lambda: service.submit_month(me.id, year_month, actor=me),
            "Submitted. The month stays locked until an admin reviews it.",
        ):
            st.rerun()


def review_page():
    st.header("✅ Review Submissions")

    me = st.session_state.staff
    if not me.is_admin:
        st.error("Only admins can review monthly submissions.")
        return

    pending = service.list_submissions(status=SubmissionStatus.SUBMITTED)
    if not pending:
        st.caption("No submissions awaiting review.")
        return

    names = {s.id: s.username for s in auth.list_staff()}
    labels = {f"{names.get(p.staff_id, p.staff_id)} - {p.year_month}": p for p in pending}
    chosen = labels[st.selectbox("Submission", list(labels.keys()))]

    st.json(chosen.stats)
    memo = st.text_input("Memo")
    c1, c2 = st.columns(2)
    with c1:
        if st.button("Approve", type="primary"):
            if run_action(
                lambda: service.review_month(chosen.staff_id, chosen.year_month, ReviewDecision.APPROVE, memo, me),
                "Approved; the month stays locked.",
            ):
                st.rerun()
    with c2:
        if st.button("Reject"):
            if run_action(
                lambda: service.review_month(chosen.staff_id, chosen.year_month, ReviewDecision.REJECT, memo, me),
                "Rejected; the month is unlocked for corrections.",
            ):
                st.rerun()


def reports_page():
    st.header("🧾 Reports")

    with st.sidebar:
        staff = pick_staff("Report staff")
        year_month = pick_month("report_month")

    start, end = utils.year_month_bounds(year_month)
    items = service.list_with_session_numbers(staff.id, start, end).to_list()
    records = [i.record for i in items]

    st.metric("PT attendance rate", f"{utils.pt_attendance_rate(records)}%")
    st.dataframe(utils.monthly_stats_frame(records), use_container_width=True, hide_index=True)

    if items:
        st.download_button(
            "Download sessions.csv",
            data=utils.sessions_to_csv_bytes(items),
            file_name=f"sessions_{staff.username}_{year_month}.csv",
            mime="text/csv",
        )
    else:
        st.caption("No entries to export.")


def settings_page():
    st.header("⚙️ Settings")

    me = st.session_state.staff

    st.subheader("Change password")
    p1 = st.text_input("New password", type="password")
    p2 = st.text_input("Confirm new password", type="password")
    if st.button("Update password", type="primary"):
        if len(p1) < 6:
            st.error("Password must be at least 6 characters.")
        elif p1 != p2:
            st.error("Passwords do not match.")
        else:
            auth.change_password(me.username, p1)
            st.success("Password updated.")

    if me.is_admin:
        st.divider()
        st.subheader("Add staff account")
        c1, c2, c3 = st.columns(3)
        with c1:
            username = st.text_input("Username", key="new_staff_user")
        with c2:
            password = st.text_input("Password", type="password", key="new_staff_pw")
        with c3:
            role = st.selectbox("Role", ["staff", "admin", "company_admin", "system_admin"])
        if st.button("Create account"):
            run_action(lambda: auth.create_staff(username, password, role), "Account created.")

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert 2 members with memberships and a few classes for you (adds new rows each run).")
    if st.button("Insert sample data"):
        if run_action(lambda: utils.insert_sample_data(me.id), "Sample data inserted."):
            st.rerun()


def main_app():
    me = st.session_state.staff
    st.sidebar.title("🏋️ Gym Scheduler")
    st.sidebar.caption(f"Logged in as: {me.username} ({me.role})")

    pages = ["Dashboard", "Schedule", "Memberships", "Submission", "Reports", "Settings"]
    if me.is_admin:
        pages.insert(4, "Review")
    if st.session_state.get("page") not in pages:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    if st.session_state.page == "Dashboard":
        dashboard_page()
    elif st.session_state.page == "Schedule":
        schedule_page()
    elif st.session_state.page == "Memberships":
        memberships_page()
    elif st.session_state.page == "Submission":
        submission_page()
    elif st.session_state.page == "Review":
        review_page()
    elif st.session_state.page == "Reports":
        reports_page()
    elif st.session_state.page == "Settings":
        settings_page()


# --------- App entry ---------

def run():
    init_once()
    require_login()

    if st.session_state.staff is None:
        login_screen()
        return

    # Force password change on first login after DB creation
    if db.is_force_password_change():
        force_change_password_screen()
        return

    main_app()


if __name__ == "__main__":
    run()
