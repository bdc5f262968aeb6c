# pages/1_Dashboard.py

# ----------------------------------------
# Imports
# ----------------------------------------
from datetime import date

import pandas as pd
import streamlit as st

import auth
import changes
import db
import ledger

user = auth.session_user()
st.title("Dashboard")
st.caption(f"Welcome back, {auth.display_name(user)}")

# ----------------------------------------
# Data (full fetch; realtime changes rerun this page)
# ----------------------------------------
try:
    members = db.list_members()
    contributions = [ledger.map_contribution(r) for r in db.fetch_contributions()]
    expenses = db.fetch_all_expenses()
except db.BackendError as e:
    st.error(str(e))
    if st.button("Retry"):
        st.rerun()
    st.stop()

changes.watch_tables(["members", "contributions", "expenses"], key="dashboard")

# ----------------------------------------
# Headline numbers
# ----------------------------------------
totals = ledger.dashboard_totals(contributions, expenses, members)

c1, c2, c3, c4 = st.columns(4)
c1.metric("Total contributions", ledger.format_money(totals["total_contributions"]))
c2.metric("Total expenses", ledger.format_money(totals["total_expenses"]))
c3.metric("Net balance", ledger.format_money(totals["net"]))
c4.metric("Active members", totals["active_members"])

# ----------------------------------------
# Monthly overview
# ----------------------------------------
st.subheader("Monthly overview")

today = date.today()
years = ledger.year_options(contributions, today)
year = st.selectbox("Year", years, index=0, format_func=ledger.year_label)

summary = pd.DataFrame(ledger.monthly_summary(contributions, expenses, year))
# Numbered labels keep the chart's x axis in calendar order
chart = summary.assign(month=[f"{i:02d} {m}" for i, m in enumerate(summary["month"], start=1)])
st.bar_chart(chart.set_index("month")[["collected", "expenses"]], stack=False)
st.dataframe(
    summary.rename(columns={"month": "Month", "collected": "Collected", "expenses": "Expenses", "net": "Net"}),
    use_container_width=True,
    hide_index=True,
)

# ----------------------------------------
# This month's status per member
# ----------------------------------------
st.subheader(f"{ledger.month_label(today.year, today.month)} status")

status_rows = ledger.member_month_status(members, contributions, today.year, today.month)
if not status_rows:
    st.info("No members yet.")
else:
    paid_count = sum(1 for r in status_rows if r["Status"] == "Paid")
    st.caption(f"{paid_count} of {len(status_rows)} members paid")
    st.dataframe(pd.DataFrame(status_rows), use_container_width=True, hide_index=True)
