# main.py
import logging

import streamlit as st

import auth
import db
import idle


def _log_level() -> str:
    try:
        return str(st.secrets["app"]["log_level"]).upper()
    except Exception:
        return "INFO"


logging.basicConfig(
    level=_log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# --------------------------------------------------
# App configuration and DB check (once per browser session)
# --------------------------------------------------
st.set_page_config(page_title="Kikao Group", layout="wide")

if not st.session_state.get("_db_checked"):
    db.init_db()
    st.session_state["_db_checked"] = True

# --------------------------------------------------
# Session + inactivity
# - A user-initiated run counts as activity
# - Runs we trigger ourselves (idle poll, realtime refresh) do not
# --------------------------------------------------
session, notice = auth.check_session()
user = auth.current_user(session)
system_rerun = idle.consume_system_rerun()

if user is not None:
    guard = idle.session_guard()
    if guard.tick() is idle.IdleState.LOGGED_OUT:
        logger.info("Signing out %s after inactivity", getattr(user, "email", ""))
        auth.log_out()
        user = None
        notice = "You were logged out due to inactivity."
    elif not system_rerun:
        guard.record_activity()

st.session_state[auth.USER_KEY] = user
if notice:
    st.session_state[auth.NOTICE_KEY] = notice

# --------------------------------------------------
# Routes
# --------------------------------------------------
login_page = st.Page("pages/login.py", title="Log in", url_path="login", default=(user is None))
signup_page = st.Page("pages/signup.py", title="Sign up", url_path="signup")
reset_page = st.Page("pages/reset_password.py", title="Reset password", url_path="reset-password")

dashboard_page = st.Page("pages/1_Dashboard.py", title="Dashboard", url_path="dashboard", default=True)

if user is None:
    pg = st.navigation([login_page, signup_page, reset_page], position="hidden")
else:
    pg = st.navigation(
        {
            "Kikao Group": [
                dashboard_page,
                st.Page("pages/4_CSR.py", title="CSR", url_path="csr"),
                st.Page("pages/2_Contributions.py", title="Contributions", url_path="contributions"),
                st.Page("pages/3_Expenses.py", title="Expenses", url_path="expenses"),
                st.Page("pages/5_Resources.py", title="Resources", url_path="resources"),
                st.Page("pages/6_Profile.py", title="Profile", url_path="profile"),
            ],
            "Account": [reset_page],
        }
    )

    with st.sidebar:
        st.caption(f"Signed in as {auth.display_name(user)}")
        if st.button("Log out", key="sidebar_logout"):
            auth.log_out()
            st.rerun()

    idle.watch()

# --------------------------------------------------
# Signing in or out moves to that state's landing page
# (the reset page handles its own flow)
# --------------------------------------------------
signed_in = user is not None
was_signed_in = st.session_state.get("_signed_in")
st.session_state["_signed_in"] = signed_in
if was_signed_in is not None and was_signed_in != signed_in and pg.url_path != reset_page.url_path:
    st.switch_page(dashboard_page if signed_in else login_page)

pg.run()
