# pages/2_Contributions.py

# ----------------------------------------
# Imports
# ----------------------------------------
from datetime import date

import streamlit as st

import admin
import auth
import board
import changes
import db
import exports
import ledger

WATCHED = ["contributions", "members", "csr_projects"]

user = auth.session_user()
st.title("Contributions")


# ----------------------------------------
# Session state helpers
# ----------------------------------------
def _map_rows():
    return [ledger.map_contribution(r) for r in db.fetch_contributions()]


def _get_board() -> board.ContributionBoard:
    # One board per browser session
    if "contribution_board" not in st.session_state:
        st.session_state["contribution_board"] = board.ContributionBoard(
            load=_map_rows,
            upsert=db.upsert_contributions,
            load_members=db.list_members,
            create_member=db.add_member,
        )
    return st.session_state["contribution_board"]


def _clear_filters():
    st.session_state["cf_search"] = ""
    st.session_state["cf_status"] = "all"
    st.session_state["cf_month"] = "all"
    st.session_state["cf_year"] = "all"


cb = _get_board()

# ----------------------------------------
# Refresh when never loaded or when a watched table changed
# ----------------------------------------
feed = changes.shared_feed()
versions = feed.versions(WATCHED)
# A staged save keeps its placeholders until commit
if not cb.has_pending and (not cb.loaded or st.session_state.get("contrib_versions") != versions):
    cb.refresh()
    st.session_state["contrib_versions"] = versions

changes.watch_tables(WATCHED, key="contributions")

flash = st.session_state.pop("contrib_flash", None)
if flash:
    st.success(flash)

if cb.error:
    c1, c2 = st.columns([5, 1])
    with c1:
        st.error(cb.error)
    with c2:
        if st.button("Retry", key="contrib_retry"):
            cb.refresh()
            st.rerun()

# ----------------------------------------
# Admin actions
# ----------------------------------------
is_admin = admin.render_gate(user.id if user else None, key="contrib_admin")

if is_admin:
    today = date.today()
    year_options = list(range(today.year - 3, today.year + 2))
    month_options = list(range(1, 13))

    if not cb.form_open:
        if st.button("Add contribution", type="primary"):
            cb.form_open = True
            st.rerun()
    else:
        try:
            projects = db.list_project_titles()
        except db.BackendError as e:
            projects = []
            st.caption(str(e))
        project_by_id = {p["id"]: p["title"] for p in projects}
        member_by_id = {m["id"]: m.get("name") or "Unknown" for m in cb.members}

        with st.form("add_contribution_form", clear_on_submit=False):
            member_id = st.selectbox(
                "Member",
                options=list(member_by_id.keys()),
                format_func=lambda mid: member_by_id.get(mid, "Unknown"),
                index=None,
                placeholder="Select a member",
            )
            ctype = st.selectbox("Type", db.CONTRIBUTION_TYPES, index=0)
            project_id = st.selectbox(
                "CSR project (optional)",
                options=[None] + list(project_by_id.keys()),
                format_func=lambda pid: "None" if pid is None else project_by_id.get(pid, "Unknown"),
            )

            f1, f2, t1, t2 = st.columns(4)
            with f1:
                from_month = st.selectbox(
                    "From month", month_options, index=today.month - 1, format_func=lambda m: ledger.MONTH_NAMES[m - 1]
                )
            with f2:
                from_year = st.selectbox("From year", year_options, index=year_options.index(today.year))
            with t1:
                to_month = st.selectbox(
                    "To month", month_options, index=today.month - 1, format_func=lambda m: ledger.MONTH_NAMES[m - 1]
                )
            with t2:
                to_year = st.selectbox("To year", year_options, index=year_options.index(today.year))

            amount = st.number_input(
                f"Amount per month ({db.CURRENCY})",
                min_value=0.0,
                value=float(db.DEFAULT_CONTRIBUTION_AMOUNT),
                step=100.0,
            )

            s1, s2 = st.columns([1, 1])
            with s1:
                save_clicked = st.form_submit_button("Save", disabled=cb.busy)
            with s2:
                cancel_clicked = st.form_submit_button("Cancel")

        if cancel_clicked:
            cb.form_open = False
            st.rerun()

        if save_clicked:
            ok, msg = cb.stage_range(
                member_id,
                amount,
                ctype,
                (from_year, from_month),
                (to_year, to_month),
                project_id=project_id,
            )
            if ok:
                st.rerun()
            st.error(msg)

    left, right = st.columns([1, 1], gap="large")

    with left:
        with st.expander("Add member", expanded=False):
            with st.form("add_member_form", clear_on_submit=True):
                name = st.text_input("Name")
                phone = st.text_input("Phone")
                email = st.text_input("Email (optional)")
                submitted = st.form_submit_button("Add")
                if submitted:
                    ok, msg = cb.add_member(name, phone, email)
                    if ok:
                        st.success(msg)
                        st.rerun()
                    else:
                        st.error(msg)

    with right:
        with st.expander("Bulk upload (CSV)", expanded=False):
            st.caption("Columns: member_name, month, year, amount, type, project_id")
            upload = st.file_uploader("CSV file", type=["csv"], key="bulk_csv")
            if upload is not None and st.button("Upload contributions"):
                text = upload.getvalue().decode("utf-8-sig")
                with st.spinner("Uploading..."):
                    ok, msg = db.bulk_upload_contributions(text, cb.members)
                if ok:
                    cb.refresh()
                    st.success(msg)
                else:
                    st.error(msg)

# ----------------------------------------
# Filters
# ----------------------------------------
st.subheader("Records")

all_years = ledger.contribution_years(cb.rows)
fc1, fc2, fc3, fc4, fc5 = st.columns([3, 2, 2, 2, 1])
with fc1:
    search = st.text_input("Search member", key="cf_search")
with fc2:
    status = st.selectbox("Status", ["all", "paid", "unpaid"], key="cf_status", format_func=str.title)
with fc3:
    month = st.selectbox(
        "Month",
        ["all"] + list(range(1, 13)),
        key="cf_month",
        format_func=lambda m: "All" if m == "all" else ledger.MONTH_NAMES[m - 1],
    )
with fc4:
    year = st.selectbox("Year", ["all"] + all_years, key="cf_year", format_func=lambda y: "All" if y == "all" else str(y))
with fc5:
    st.caption("")
    st.button("Clear", on_click=_clear_filters)

filtered = ledger.filter_contributions(cb.rows, search=search, status=status, month=month, year=year)
matrix = ledger.contribution_matrix(filtered, cb.members, search=search)

if matrix.empty:
    st.info("No contributions match the current filters.")
else:
    st.dataframe(matrix, use_container_width=True, hide_index=True)

    with st.expander("Details by member", expanded=False):
        by_member = {}
        for r in filtered:
            by_member.setdefault(r["member_name"], []).append(r)
        for name in sorted(by_member):
            rows = by_member[name]
            paid_total = sum(r["amount"] for r in rows if r["paid"])
            st.markdown(f"**{name}** · {ledger.format_money(paid_total)} paid")
            st.dataframe(exports.contributions_frame(rows), use_container_width=True, hide_index=True)

# ----------------------------------------
# Export
# ----------------------------------------
e1, e2 = st.columns([1, 1], gap="small")
with e1:
    st.download_button(
        "Export CSV",
        data=exports.contributions_csv(filtered),
        file_name=exports.export_filename("contributions", "csv"),
        mime="text/csv",
        disabled=not filtered,
    )
with e2:
    st.download_button(
        "Export PDF",
        data=exports.contributions_pdf(matrix),
        file_name=exports.export_filename("contributions", "pdf"),
        mime="application/pdf",
        disabled=matrix.empty,
    )

# ----------------------------------------
# Write a staged save once the placeholders are drawn
# ----------------------------------------
if cb.has_pending:
    with st.spinner("Saving..."):
        ok, msg = cb.commit()
    # Failures land in cb.error, shown above the form
    if ok:
        st.session_state["contrib_versions"] = feed.versions(WATCHED)
        st.session_state["contrib_flash"] = msg
    st.rerun()
