# admin.py
#
# Admin gate for the current browser session.
#
# The flag only unlocks admin controls in the UI. Row level security on the
# Supabase tables is what actually protects the data.
#
# Optional Streamlit secrets (PBKDF2-SHA256, 200k iterations):
#   [admin]
#   passphrase_salt = "<hex salt>"
#   passphrase_hash = "<hex digest>"
# Generate a record with: python -c "import admin; print(admin.make_passphrase_record('...'))"

import hashlib
import hmac
import logging
import secrets

from typing import MutableMapping, Optional, Tuple

import streamlit as st

import db

logger = logging.getLogger(__name__)

ADMIN_FLAG = "admin_validated"
ADMIN_ROLE = "admin"


# ------------------------
# Passphrase helpers
# ------------------------
def _hash_passphrase(passphrase: str, salt_hex: str) -> str:
    dk = hashlib.pbkdf2_hmac(
        "sha256",
        passphrase.encode("utf-8"),
        bytes.fromhex(salt_hex),
        200_000,
    )
    return dk.hex()


def make_passphrase_record(passphrase: str) -> Tuple[str, str]:
    # Returns salt_hex and passphrase hash for the [admin] secrets section
    salt_hex = secrets.token_hex(16)
    return salt_hex, _hash_passphrase(passphrase, salt_hex)


def _configured_record() -> Optional[Tuple[str, str]]:
    try:
        section = st.secrets["admin"]
        salt, digest = section["passphrase_salt"], section["passphrase_hash"]
    except Exception:
        return None
    if not salt or not digest:
        return None
    return str(salt), str(digest)


def verify_passphrase(passphrase: str, record: Optional[Tuple[str, str]]) -> bool:
    passphrase = (passphrase or "").strip()
    if not passphrase or record is None:
        return False
    salt_hex, expected = record
    try:
        actual = _hash_passphrase(passphrase, salt_hex)
    except ValueError:
        logger.error("Admin passphrase salt is not valid hex")
        return False
    return hmac.compare_digest(actual, expected)


# ------------------------
# Session flag
# ------------------------
def is_unlocked(state: MutableMapping) -> bool:
    return bool(state.get(ADMIN_FLAG, False))


def lock(state: MutableMapping) -> None:
    state[ADMIN_FLAG] = False


def unlock(
    passphrase: str,
    user_id,
    state: MutableMapping,
    record: Optional[Tuple[str, str]] = None,
) -> Tuple[bool, str]:
    """
    Set the admin flag when the member has the admin role or the passphrase matches.

    ``record`` defaults to the [admin] secrets section.
    """
    if user_id and db.get_member_role(user_id) == ADMIN_ROLE:
        state[ADMIN_FLAG] = True
        return True, "Admin access granted"

    record = record if record is not None else _configured_record()
    if record is None:
        return False, "Admin access requires the admin role on your member profile"

    if verify_passphrase(passphrase, record):
        state[ADMIN_FLAG] = True
        logger.info("Admin gate unlocked by passphrase")
        return True, "Admin access granted"

    logger.warning("Admin gate: wrong passphrase")
    return False, "Incorrect admin passphrase"


def render_gate(user_id, key: str = "admin_gate") -> bool:
    # Small unlock / lock form; returns whether admin controls should show
    state = st.session_state
    if is_unlocked(state):
        c1, c2 = st.columns([4, 1])
        with c1:
            st.caption("Admin mode is on for this session.")
        with c2:
            if st.button("Lock", key=f"{key}_lock"):
                lock(state)
                st.rerun()
        return True

    with st.expander("Admin access", expanded=False):
        with st.form(f"{key}_form", clear_on_submit=True):
            passphrase = st.text_input("Admin passphrase", type="password")
            submitted = st.form_submit_button("Unlock")
            if submitted:
                ok, msg = unlock(passphrase, user_id, state)
                if ok:
                    st.success(msg)
                    st.rerun()
                else:
                    st.error(msg)
    return False
