# auth.py
#
# Thin wrapper over supabase auth: validation, friendly messages, profile
# polling after sign-up and session checks. Writes return (ok, message).

import logging
import random
import re
import time

from typing import Any, Callable, List, Optional, Tuple

import httpx
import streamlit as st

import admin
import db
import idle

logger = logging.getLogger(__name__)

KENYA_PHONE_RE = re.compile(r"^(\+254|0)[17]\d{8}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PROFILE_PHONE_RE = re.compile(r"^\+?[\d\s-]{7,15}$")
EXPIRED_TOKEN_RE = re.compile(r"invalid refresh token|refresh token not found|jwt expired", re.IGNORECASE)

MIN_PASSWORD_LENGTH = 6
PROFILE_POLL_ATTEMPTS = 10
PROFILE_POLL_BASE_DELAY = 0.5

USER_KEY = "auth_user"
NOTICE_KEY = "auth_notice"

_SESSION_DATA_KEYS = ("contribution_board", "contrib_versions")

SESSION_EXPIRED = "Your session expired. Please log in again."
PROFILE_TIMEOUT = "Profile creation timeout. You can create a profile manually after signing in."

_KNOWN_AUTH_ERRORS = [
    ("user already registered", "An account with this email already exists. Try logging in instead."),
    ("invalid email", "Please enter a valid email address."),
    ("password should be at least", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."),
    ("invalid login credentials", "Invalid email or password."),
    ("email not confirmed", "Please confirm your email address before logging in."),
]


# ------------------------
# Validation
# ------------------------
def normalize_phone(phone: str) -> str:
    return re.sub(r"\s+", "", phone or "")


def validate_signup(full_name: str, phone: str, email: str, password: str) -> List[str]:
    errors = []
    if len((full_name or "").strip()) < 2:
        errors.append("Full name must be at least 2 characters")
    if not KENYA_PHONE_RE.match(normalize_phone(phone)):
        errors.append("Enter a valid Kenyan phone number (e.g. 0712345678 or +254712345678)")
    email = (email or "").strip()
    if "@" not in email or "." not in email:
        errors.append("Enter a valid email address")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return errors


def validate_profile(name: str, phone: str, email: str) -> List[str]:
    errors = []
    if not (name or "").strip():
        errors.append("Name is required")
    email = (email or "").strip()
    if email and not EMAIL_RE.match(email):
        errors.append("Please enter a valid email address")
    phone = (phone or "").strip()
    if phone and not PROFILE_PHONE_RE.match(phone):
        errors.append("Please enter a valid phone number")
    return errors


def friendly_auth_error(message: str) -> str:
    low = (message or "").lower()
    for needle, text in _KNOWN_AUTH_ERRORS:
        if needle in low:
            return text
    return message or "Authentication failed"


def _auth_error_text(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc)


# ------------------------
# Profile polling
# ------------------------
def wait_for_profile(
    user_id,
    exists: Callable[[Any], bool] = None,
    attempts: int = PROFILE_POLL_ATTEMPTS,
    base_delay: float = PROFILE_POLL_BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Poll until the profile row created by the sign-up trigger is visible.

    Waits base_delay * 2^(n-1) plus up to 0.2s jitter between attempts, or a
    flat second after an unexpected error. Returns False when every attempt
    missed; it never raises.
    """
    exists = exists or db.profile_exists
    for attempt in range(1, attempts + 1):
        try:
            if exists(user_id):
                logger.info("Profile visible after %d attempt(s)", attempt)
                return True
            delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0.0, 0.2)
        except (RuntimeError, httpx.HTTPError) as e:
            logger.warning("Profile check failed (attempt %d/%d): %s", attempt, attempts, e)
            delay = 1.0
        if attempt < attempts:
            sleep(delay)
    logger.warning("Profile for %s not visible after %d attempts", user_id, attempts)
    return False


# ------------------------
# Auth operations
# ------------------------
def sign_up(
    email: str,
    password: str,
    full_name: str,
    phone: str,
    wait: Callable[[Any], bool] = None,
) -> Tuple[bool, str]:
    errors = validate_signup(full_name, phone, email, password)
    if errors:
        return False, errors[0]

    try:
        resp = db.auth_client().sign_up(
            {
                "email": email.strip(),
                "password": password,
                "options": {"data": {"full_name": full_name.strip(), "phone": normalize_phone(phone)}},
            }
        )
    except Exception as e:
        logger.warning("Sign-up failed: %s", _auth_error_text(e))
        return False, friendly_auth_error(_auth_error_text(e))

    user = getattr(resp, "user", None)
    if user is None:
        return False, "Sign-up did not return a user. Please try again."

    wait = wait or wait_for_profile
    if not wait(user.id):
        return True, PROFILE_TIMEOUT
    if getattr(resp, "session", None) is None:
        return True, "Account created. Check your email to confirm it, then log in."
    return True, "Account created. Welcome!"


def sign_in(email: str, password: str) -> Tuple[bool, str]:
    email = (email or "").strip()
    if not email or not password:
        return False, "Email and password are required"
    try:
        db.auth_client().sign_in_with_password({"email": email, "password": password})
    except Exception as e:
        logger.info("Sign-in failed for %s: %s", email, _auth_error_text(e))
        return False, friendly_auth_error(_auth_error_text(e))
    return True, "Signed in"


def sign_out() -> None:
    # Local state is cleared even when the server call fails
    try:
        db.auth_client().sign_out()
    except Exception as e:
        logger.warning("Sign-out request failed: %s", _auth_error_text(e))
    db.reset_client()


def log_out() -> None:
    # Sign out and drop everything this browser session cached for the user
    sign_out()
    idle.clear_guard()
    admin.lock(st.session_state)
    for key in _SESSION_DATA_KEYS:
        if key in st.session_state:
            del st.session_state[key]
    st.session_state[USER_KEY] = None


def send_password_reset(email: str, redirect_to: Optional[str] = None) -> Tuple[bool, str]:
    email = (email or "").strip()
    if not EMAIL_RE.match(email):
        return False, "Please enter a valid email address"
    options = {"redirect_to": redirect_to} if redirect_to else {}
    try:
        db.auth_client().reset_password_for_email(email, options)
    except Exception as e:
        logger.warning("Password reset email failed: %s", _auth_error_text(e))
        return False, friendly_auth_error(_auth_error_text(e))
    return True, "If that email is registered, a reset link is on its way."


def complete_password_reset(token_hash: str, otp_type: str = "recovery") -> Tuple[bool, str]:
    """
    Sign in from a reset email link (?token_hash=...&type=recovery).

    Needs no PKCE verifier, so the link may be opened in any browser tab.
    The Supabase "Reset password" email template must link to
    {{ .SiteURL }}/reset-password?token_hash={{ .TokenHash }}&type=recovery
    """
    token_hash = (token_hash or "").strip()
    if not token_hash:
        return False, "Reset link is missing its token"
    if otp_type != "recovery":
        return False, "This is not a password reset link"
    try:
        db.auth_client().verify_otp({"type": "recovery", "token_hash": token_hash})
    except Exception as e:
        logger.warning("Reset token verification failed: %s", _auth_error_text(e))
        return False, "This reset link is invalid or has expired. Request a new one."
    return True, "Reset link accepted. Choose a new password."


def update_password(password: str, confirm: Optional[str] = None) -> Tuple[bool, str]:
    if confirm is not None and password != confirm:
        return False, "Passwords do not match"
    if len(password or "") < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    try:
        db.auth_client().update_user({"password": password})
    except Exception as e:
        logger.warning("Password update failed: %s", _auth_error_text(e))
        return False, friendly_auth_error(_auth_error_text(e))
    return True, "Password updated"


# ------------------------
# Session
# ------------------------
def check_session() -> Tuple[Optional[Any], Optional[str]]:
    """
    Current auth session, or (None, notice) when the stored tokens are no
    longer usable. An expired refresh token signs the session out locally.
    """
    try:
        session = db.auth_client().get_session()
    except Exception as e:
        text = _auth_error_text(e)
        if EXPIRED_TOKEN_RE.search(text):
            logger.info("Session expired: %s", text)
            sign_out()
            return None, SESSION_EXPIRED
        logger.error("Session check failed: %s", text)
        return None, f"Could not verify your session: {text}"
    return session, None


def current_user(session) -> Optional[Any]:
    return getattr(session, "user", None) if session else None


def session_user() -> Optional[Any]:
    # Set by main.py on every run
    return st.session_state.get(USER_KEY)


def pop_notice() -> Optional[str]:
    return st.session_state.pop(NOTICE_KEY, None)


def display_name(user) -> str:
    if user is None:
        return ""
    meta = getattr(user, "user_metadata", None) or {}
    if meta.get("full_name"):
        return str(meta["full_name"])
    email = getattr(user, "email", None) or ""
    return email.split("@")[0]


def site_url() -> Optional[str]:
    try:
        return st.secrets["app"]["site_url"]
    except Exception:
        return None
