# pages/login.py
import streamlit as st

import auth

st.title("Kikao Group")
st.subheader("Log in")

notice = auth.pop_notice()
if notice:
    st.warning(notice)

with st.form("login_form"):
    email = st.text_input("Email")
    password = st.text_input("Password", type="password")
    submitted = st.form_submit_button("Log in")

    if submitted:
        with st.spinner("Signing in..."):
            ok, msg = auth.sign_in(email, password)
        if ok:
            st.rerun()
        else:
            st.error(msg)

c1, c2 = st.columns([1, 1])
with c1:
    if st.button("Create an account"):
        st.switch_page("pages/signup.py")
with c2:
    if st.button("Forgot password?"):
        st.switch_page("pages/reset_password.py")
