# pages/6_Profile.py

# ----------------------------------------
# Imports
# ----------------------------------------
import pandas as pd
import streamlit as st

import admin
import auth
import db

user = auth.session_user()
st.title("Profile")

user_id = getattr(user, "id", None)
user_email = getattr(user, "email", "") or ""

# ----------------------------------------
# Own member row
# ----------------------------------------
try:
    rows = db.get_member_rows(user_id)
except db.BackendError as e:
    st.error(str(e))
    if st.button("Retry"):
        st.rerun()
    st.stop()

if not rows:
    st.warning("No profile found for your account.")
    st.caption("Profiles are normally created when you sign up. You can create yours now.")
    if st.button("Create profile", type="primary"):
        meta = getattr(user, "user_metadata", None) or {}
        with st.spinner("Creating profile..."):
            ok, msg = db.create_member_for_user(user_id, meta.get("full_name") or "", user_email)
        if ok:
            st.success(msg)
            st.rerun()
        else:
            st.error(msg)
    profile = None
else:
    profile = rows[0]
    if len(rows) > 1:
        st.warning(f"Found {len(rows)} profile rows for your account. Showing the first one.")

# ----------------------------------------
# View / edit
# ----------------------------------------
if profile is not None:
    c1, c2, c3 = st.columns(3)
    c1.metric("Name", profile.get("name") or "-")
    c2.metric("Phone", profile.get("phone") or "-")
    c3.metric("Joined", str(profile.get("joined_at") or "-")[:10])
    st.caption(profile.get("email") or user_email)

    with st.expander("Edit profile", expanded=False):
        with st.form("edit_profile_form"):
            name = st.text_input("Name", value=profile.get("name") or "")
            phone = st.text_input("Phone", value=profile.get("phone") or "")
            email = st.text_input("Email", value=profile.get("email") or user_email)
            new_password = st.text_input("New password (optional)", type="password")
            submitted = st.form_submit_button("Save")

            if submitted:
                errors = auth.validate_profile(name, phone, email)
                if errors:
                    for e in errors:
                        st.error(e)
                else:
                    ok, msg = db.update_member(profile["id"], name, phone, email)
                    if ok and new_password:
                        ok, msg = auth.update_password(new_password)
                    if ok:
                        st.success("Profile updated")
                        st.rerun()
                    else:
                        st.error(msg)

# ----------------------------------------
# Admin tools
# ----------------------------------------
st.divider()
is_admin = admin.render_gate(user_id, key="profile_admin")

if is_admin:
    try:
        members = db.list_members()
    except db.BackendError as e:
        members = []
        st.error(str(e))

    st.subheader("Members")
    if members:
        st.dataframe(
            pd.DataFrame(
                [
                    {
                        "Name": m.get("name"),
                        "Phone": m.get("phone"),
                        "Email": m.get("email"),
                        "Joined": str(m.get("joined_at") or "")[:10],
                    }
                    for m in members
                ]
            ),
            use_container_width=True,
            hide_index=True,
        )

    left, right = st.columns([1, 1], gap="large")

    with left:
        with st.form("profile_add_member_form", clear_on_submit=True):
            st.markdown("**Add member**")
            name = st.text_input("Name", key="pm_name")
            email = st.text_input("Email", key="pm_email")
            phone = st.text_input("Phone (optional)", key="pm_phone")
            submitted = st.form_submit_button("Add")
            if submitted:
                if not name.strip() or not email.strip():
                    st.error("Name and email are required")
                else:
                    errors = auth.validate_profile(name, phone, email)
                    if errors:
                        st.error(errors[0])
                    else:
                        ok, msg, _ = db.add_member(name, phone, email)
                        if ok:
                            st.success(msg)
                            st.rerun()
                        else:
                            st.error(msg)

    with right:
        st.markdown("**Demo data**")
        st.caption(f"Adds {len(db.DEMO_MEMBER_NAMES)} sample members (existing names are skipped).")
        if st.button("Seed members"):
            ok, msg = db.seed_members()
            if ok:
                st.success(msg)
                st.rerun()
            else:
                st.error(msg)

    try:
        groups = db.find_duplicate_members()
    except db.BackendError as e:
        groups = []
        st.caption(str(e))
    if groups:
        st.subheader("Possible duplicates")
        for i, group in enumerate(groups):
            label_by_id = {
                m["id"]: f'{m.get("name")} · {m.get("phone") or "-"} · joined {str(m.get("joined_at") or "")[:10]}'
                for m in group
            }
            with st.form(f"dup_form_{i}"):
                keep_id = st.radio(
                    f"Keep which row for {group[0].get('name')}?",
                    list(label_by_id.keys()),
                    format_func=lambda mid: label_by_id[mid],
                )
                consolidate = st.form_submit_button("Keep selected, remove the rest")
                if consolidate:
                    drop = [mid for mid in label_by_id if mid != keep_id]
                    ok, msg = db.consolidate_duplicates(keep_id, drop)
                    if ok:
                        st.success(msg)
                        st.rerun()
                    else:
                        st.error(msg)

# ----------------------------------------
# Log out
# ----------------------------------------
st.divider()
if st.button("Log out"):
    auth.log_out()
    st.rerun()
