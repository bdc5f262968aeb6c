# pages/4_CSR.py
from datetime import date

import pandas as pd
import streamlit as st

import admin
import auth
import changes
import db
import ledger

user = auth.session_user()
st.title("CSR projects")
st.caption("Community projects the group supports, and what members have put into them.")

# ----------------------------------------
# Data
# ----------------------------------------
try:
    projects = db.fetch_projects()
    members = db.list_members()
except db.BackendError as e:
    st.error(str(e))
    if st.button("Retry"):
        st.rerun()
    st.stop()

changes.watch_tables(["csr_projects", "csr_contributions", "members"], key="csr")

is_admin = admin.render_gate(user.id if user else None, key="csr_admin")

# ----------------------------------------
# Admin forms
# ----------------------------------------
if is_admin:
    left, right = st.columns([1, 1], gap="large")

    with left:
        with st.expander("Add project", expanded=False):
            with st.form("add_project_form", clear_on_submit=True):
                title = st.text_input("Title")
                description = st.text_area("Description")
                impact = st.text_area("Impact (optional)")
                budget = st.number_input(f"Budget ({db.CURRENCY})", min_value=0.0, step=1000.0)
                d1, d2 = st.columns(2)
                with d1:
                    start_date = st.date_input("Start date", value=date.today())
                with d2:
                    end_date = st.date_input("End date (optional)", value=None)
                submitted = st.form_submit_button("Add project")

                if submitted:
                    errors = ledger.validate_project(title, description, budget, start_date, end_date)
                    if errors:
                        for e in errors:
                            st.error(e)
                    else:
                        ok, msg = db.add_project(title, description, impact, budget, start_date, end_date)
                        if ok:
                            st.success(msg)
                            st.rerun()
                        else:
                            st.error(msg)

    with right:
        with st.expander("Record contribution", expanded=False):
            if not projects:
                st.info("Add a project first.")
            else:
                project_by_id = {p["id"]: p["title"] for p in projects}
                member_by_id = {m["id"]: m.get("name") or "Unknown" for m in members}
                with st.form("add_csr_contribution_form", clear_on_submit=True):
                    project_id = st.selectbox(
                        "Project", list(project_by_id.keys()), format_func=lambda pid: project_by_id[pid]
                    )
                    member_id = st.selectbox(
                        "Member",
                        list(member_by_id.keys()),
                        format_func=lambda mid: member_by_id.get(mid, "Unknown"),
                        index=None,
                        placeholder="Select a member",
                    )
                    amount = st.number_input(f"Amount ({db.CURRENCY})", min_value=0.0, step=100.0)
                    contributed_on = st.date_input("Date", value=date.today(), max_value=date.today())
                    submitted = st.form_submit_button("Record")

                    if submitted:
                        errors = ledger.validate_project_contribution(project_id, member_id, amount, contributed_on)
                        if errors:
                            for e in errors:
                                st.error(e)
                        else:
                            ok, msg = db.add_project_contribution(project_id, member_id, amount, contributed_on)
                            if ok:
                                st.success(msg)
                                st.rerun()
                            else:
                                st.error(msg)

# ----------------------------------------
# Project cards
# ----------------------------------------
if not projects:
    st.info("No CSR projects yet.")
    st.stop()

grand_total = sum(p["total_contributions"] for p in projects)
st.metric("Total raised across projects", ledger.format_money(grand_total))

for p in projects:
    badge = "✅ Completed" if p["status"] == "completed" else "🟢 Ongoing"
    with st.container(border=True):
        st.subheader(p["title"])
        st.caption(
            f'{badge} · {p["start_date"] or "no start date"}'
            + (f' → {p["end_date"]}' if p["end_date"] else "")
        )
        st.write(p["description"])
        if p["impact"]:
            st.markdown(f"**Impact:** {p['impact']}")

        m1, m2 = st.columns(2)
        m1.metric("Raised", ledger.format_money(p["total_contributions"]))
        if p["budget"]:
            m2.metric("Budget", ledger.format_money(p["budget"]))
            st.progress(min(1.0, p["total_contributions"] / p["budget"]))

        if p["contributions"]:
            df = pd.DataFrame(
                [
                    {
                        "Member": ledger.member_name(members, c.get("member_id")),
                        "Amount": ledger.format_money(c.get("amount")),
                        "Date": c.get("contributed_on") or "",
                    }
                    for c in p["contributions"]
                ]
            )
            st.dataframe(df, use_container_width=True, hide_index=True)
        else:
            st.caption("No contributions yet.")

        if is_admin:
            new_status = "ongoing" if p["status"] == "completed" else "completed"
            if st.button(f"Mark {new_status}", key=f"csr_status_{p['id']}"):
                ok, msg = db.update_project_status(p["id"], new_status)
                if ok:
                    st.success(msg)
                    st.rerun()
                else:
                    st.error(msg)
