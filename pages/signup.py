# pages/signup.py
import streamlit as st

import auth

st.title("Kikao Group")
st.subheader("Create an account")

with st.form("signup_form"):
    full_name = st.text_input("Full name")
    phone = st.text_input("Phone", placeholder="0712345678 or +254712345678")
    email = st.text_input("Email")
    password = st.text_input("Password", type="password")
    submitted = st.form_submit_button("Sign up")

    if submitted:
        errors = auth.validate_signup(full_name, phone, email, password)
        if errors:
            for e in errors:
                st.error(e)
        else:
            with st.spinner("Creating your account..."):
                ok, msg = auth.sign_up(email, password, full_name, phone)
            if ok:
                st.success(msg)
                if msg == auth.PROFILE_TIMEOUT:
                    st.info("Log in and open Profile to finish setting up.")
            else:
                st.error(msg)

if st.button("Back to log in"):
    st.switch_page("pages/login.py")
