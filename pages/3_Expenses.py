# pages/3_Expenses.py

# ----------------------------------------
# Imports
# ----------------------------------------
import math

from datetime import date

import streamlit as st

import admin
import auth
import changes
import db
import exports
import ledger

user = auth.session_user()
st.title("Expenses")

STATUS_BADGE = {"Pending": "🟡 Pending", "Approved": "🟢 Approved", "Rejected": "🔴 Rejected"}

# ----------------------------------------
# Schema check
# ----------------------------------------
ready, ready_msg = db.expenses_table_ready()
if not ready:
    st.error(ready_msg)
    st.caption("The expenses table needs: description, amount, date, status, approved_by, member_id, project_id.")
    if st.button("Retry"):
        st.rerun()
    st.stop()

changes.watch_tables(["expenses"], key="expenses")

is_admin = admin.render_gate(user.id if user else None, key="expense_admin")


# ----------------------------------------
# Session state helpers
# ----------------------------------------
def _ss_get(key: str, default=None):
    if key not in st.session_state:
        st.session_state[key] = default
    return st.session_state[key]


def _clear_filters():
    st.session_state["ef_status"] = "all"
    st.session_state["ef_start"] = None
    st.session_state["ef_end"] = None
    st.session_state["ef_page"] = 1


PAGE_SIZES = [10, 20, 50]


# ----------------------------------------
# Log an expense
# ----------------------------------------
with st.expander("Log expense", expanded=False):
    try:
        members = db.list_members()
        projects = db.list_project_titles()
    except db.BackendError as e:
        members, projects = [], []
        st.caption(str(e))
    member_by_id = {m["id"]: m.get("name") or "Unknown" for m in members}
    project_by_id = {p["id"]: p["title"] for p in projects}

    with st.form("add_expense_form", clear_on_submit=True):
        description = st.text_input("Description")
        c1, c2 = st.columns(2)
        with c1:
            amount = st.number_input(f"Amount ({db.CURRENCY})", min_value=0.0, step=100.0)
        with c2:
            expense_date = st.date_input("Date", value=date.today())
        member_id = st.selectbox(
            "Member (optional)",
            options=[None] + list(member_by_id.keys()),
            format_func=lambda mid: "None" if mid is None else member_by_id.get(mid, "Unknown"),
        )
        project_id = st.selectbox(
            "CSR project (optional)",
            options=[None] + list(project_by_id.keys()),
            format_func=lambda pid: "None" if pid is None else project_by_id.get(pid, "Unknown"),
        )
        submitted = st.form_submit_button("Add expense")

        if submitted:
            errors = ledger.validate_expense(description, amount, expense_date)
            if errors:
                for e in errors:
                    st.error(e)
            else:
                ok, msg = db.add_expense(description, amount, expense_date, member_id, project_id)
                if ok:
                    st.success(msg)
                    st.rerun()
                else:
                    st.error(msg)

# ----------------------------------------
# Filters
# ----------------------------------------
_ss_get("ef_page", 1)

# Filters apply on submit; Clear resets them right away
with st.form("expense_filters"):
    f1, f2, f3 = st.columns(3)
    with f1:
        status = st.selectbox("Status", ["all"] + db.EXPENSE_STATUSES, key="ef_status", format_func=str.title)
    with f2:
        start = st.date_input("From", value=None, key="ef_start")
    with f3:
        end = st.date_input("To", value=None, key="ef_end")
    st.form_submit_button("Apply filters")
st.button("Clear filters", on_click=_clear_filters)

if start and end and start > end:
    st.error("Start date must be on or before the end date.")
    st.stop()

page_size = st.selectbox(
    "Rows per page", PAGE_SIZES, index=PAGE_SIZES.index(db.EXPENSES_PAGE_SIZE), key="ef_page_size"
)

# Filters or page size changed -> back to page 1
filter_sig = (status, start, end, page_size)
if st.session_state.get("ef_sig") != filter_sig:
    st.session_state["ef_sig"] = filter_sig
    st.session_state["ef_page"] = 1

try:
    rows, total = db.fetch_expenses(
        status=status,
        start=start,
        end=end,
        page=st.session_state["ef_page"],
        limit=page_size,
    )
except db.BackendError as e:
    st.error(str(e))
    if st.button("Retry", key="expense_retry"):
        st.rerun()
    st.stop()

# ----------------------------------------
# List
# ----------------------------------------
if not rows:
    st.info("No expenses found.")
else:
    df = exports.expenses_frame(rows)
    df["Status"] = df["Status"].map(lambda s: STATUS_BADGE.get(s, s))
    st.dataframe(df, use_container_width=True, hide_index=True)

    page_total = sum(r["amount"] for r in rows)
    st.caption(f"{len(rows)} of {total} expense(s) · {ledger.format_money(page_total)} on this page")

pages_count = max(1, math.ceil(total / page_size))
p1, p2, p3 = st.columns([1, 2, 1])
with p1:
    if st.button("Previous", disabled=st.session_state["ef_page"] <= 1):
        st.session_state["ef_page"] -= 1
        st.rerun()
with p2:
    st.caption(f"Page {st.session_state['ef_page']} of {pages_count}")
with p3:
    if st.button("Next", disabled=st.session_state["ef_page"] >= pages_count):
        st.session_state["ef_page"] += 1
        st.rerun()

# ----------------------------------------
# Approve / reject (admin)
# ----------------------------------------
if is_admin and rows:
    st.subheader("Review")
    pending = [r for r in rows if r["status"] != "Approved"]
    reviewable = pending or rows
    label_by_id = {
        r["id"]: f'{r["date"]} · {r["description"]} · {ledger.format_money(r["amount"])} ({r["status"]})'
        for r in reviewable
    }
    with st.form("expense_review_form"):
        expense_id = st.selectbox("Expense", list(label_by_id.keys()), format_func=lambda i: label_by_id[i])
        a1, a2, a3 = st.columns(3)
        with a1:
            approve = st.form_submit_button("Approve")
        with a2:
            reject = st.form_submit_button("Reject")
        with a3:
            reset = st.form_submit_button("Back to pending")

        if approve or reject or reset:
            new_status = "Approved" if approve else ("Rejected" if reject else "Pending")
            ok, msg = db.update_expense_status(expense_id, new_status, approver=auth.display_name(user) or "Admin")
            if ok:
                st.success(msg)
                st.rerun()
            else:
                st.error(msg)

# ----------------------------------------
# Export (every row matching the filters)
# ----------------------------------------
if total:
    try:
        export_rows, _ = db.fetch_expenses(status=status, start=start, end=end, limit=None)
    except db.BackendError as e:
        export_rows = []
        st.caption(str(e))

    e1, e2 = st.columns([1, 1], gap="small")
    with e1:
        st.download_button(
            "Export CSV",
            data=exports.expenses_csv(export_rows),
            file_name=exports.export_filename("expenses", "csv"),
            mime="text/csv",
        )
    with e2:
        st.download_button(
            "Export PDF",
            data=exports.expenses_pdf(export_rows),
            file_name=exports.export_filename("expenses", "pdf"),
            mime="application/pdf",
        )
