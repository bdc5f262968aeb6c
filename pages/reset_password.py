# pages/reset_password.py
import streamlit as st

import auth

st.title("Reset password")

# ----------------------------------------
# Coming back from the reset email (?token_hash=...&type=recovery)
# ----------------------------------------
token_hash = st.query_params.get("token_hash", None)
if token_hash and auth.session_user() is None:
    ok, msg = auth.complete_password_reset(token_hash, st.query_params.get("type", "recovery"))
    for param in ("token_hash", "type"):
        if param in st.query_params:
            del st.query_params[param]
    if ok:
        st.rerun()
    st.error(msg)

user = auth.session_user()

# ----------------------------------------
# Signed in (normally via the reset link): choose a new password
# ----------------------------------------
if user is not None:
    with st.form("new_password_form", clear_on_submit=True):
        password = st.text_input("New password", type="password")
        confirm = st.text_input("Confirm new password", type="password")
        submitted = st.form_submit_button("Update password")

        if submitted:
            ok, msg = auth.update_password(password, confirm)
            if ok:
                st.success(msg)
            else:
                st.error(msg)

    if st.button("Go to Dashboard"):
        st.switch_page("pages/1_Dashboard.py")
    st.stop()

# ----------------------------------------
# Not signed in: request a reset link
# ----------------------------------------
with st.form("reset_request_form"):
    email = st.text_input("Email")
    submitted = st.form_submit_button("Send reset link")

    if submitted:
        redirect = auth.site_url()
        ok, msg = auth.send_password_reset(email, f"{redirect.rstrip('/')}/reset-password" if redirect else None)
        if ok:
            st.success(msg)
        else:
            st.error(msg)

if st.button("Back to log in"):
    st.switch_page("pages/login.py")
