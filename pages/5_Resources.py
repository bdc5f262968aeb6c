# pages/5_Resources.py
import streamlit as st

st.title("Resources")
st.caption("Access guides, documents, and learning resources.")

tab_guide, tab_rules, tab_csv = st.tabs(["Getting started", "Group rules", "Bulk upload format"])

with tab_guide:
    st.markdown(
        """
### What this app does
- Track monthly member contributions (regular and food)
- Log group expenses and approve or reject them
- Follow CSR projects and what members have given to them
- Export contributions and expenses as CSV or PDF

### How to use
1. Sign up with your name, phone and email, then log in
2. Check the Dashboard for this month's status and the yearly overview
3. Treasurers unlock admin mode to record contributions and review expenses

### Notes
- You are logged out after 10 minutes without activity (with a warning a minute before).
- Pages refresh automatically when someone else records a change.
"""
    )

with tab_rules:
    st.markdown(
        """
### Contributions
- The default monthly contribution is KSh 2,000.
- A month can hold one contribution per member; saving it again replaces the amount.
- Paying ahead: pick a From and To month and the amount is recorded for each month.

### Expenses
- Every expense starts as **Pending**.
- Only an admin can mark an expense **Approved** or **Rejected**.
"""
    )

with tab_csv:
    st.markdown(
        """
### Bulk upload columns
| column | required | example |
|---|---|---|
| member_name | yes | Mary Njeri |
| month | yes | 3 or Mar |
| year | yes | 2025 |
| amount | yes | 2000 |
| type | no | contribution / food |
| project_id | no | (CSR project id) |

Rows missing a required value are skipped. Unknown member names are added as
new members with a placeholder phone number; update it from their profile.
"""
    )

if st.button("Back to Dashboard"):
    st.switch_page("pages/1_Dashboard.py")
