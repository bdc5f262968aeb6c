# idle.py
#
# Inactivity sign-out. IdleGuard is a plain state machine driven by an
# injectable clock; watch() is the Streamlit side that polls it.

import logging
import time

from enum import Enum
from typing import Callable, Optional

import streamlit as st

logger = logging.getLogger(__name__)

DEFAULT_IDLE_LIMIT = 600.0
DEFAULT_WARNING_WINDOW = 60.0

GUARD_KEY = "_idle_guard"
SYSTEM_RERUN_KEY = "_system_rerun"


class IdleState(str, Enum):
    ACTIVE = "active"
    WARNING = "warning"
    LOGGED_OUT = "logged_out"


class IdleGuard:
    """
    Active -> Warning after (limit - warning) seconds idle, Warning -> LoggedOut at limit.

    Activity while Active restarts the countdown, activity while Warning
    returns to Active. Each callback fires once per transition. Once logged
    out, activity is ignored until reset().
    """

    def __init__(
        self,
        idle_limit: float = DEFAULT_IDLE_LIMIT,
        warning_window: float = DEFAULT_WARNING_WINDOW,
        on_warning: Optional[Callable[[], None]] = None,
        on_resume: Optional[Callable[[], None]] = None,
        on_logout: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if idle_limit <= 0 or warning_window <= 0 or warning_window >= idle_limit:
            raise ValueError("warning_window must be positive and shorter than idle_limit")
        self.idle_limit = float(idle_limit)
        self.warning_window = float(warning_window)
        self.on_warning = on_warning
        self.on_resume = on_resume
        self.on_logout = on_logout
        self._clock = clock
        self.state = IdleState.ACTIVE
        self.last_activity = clock()

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    @property
    def warning_at(self) -> float:
        return self.last_activity + self.idle_limit - self.warning_window

    @property
    def logout_at(self) -> float:
        return self.last_activity + self.idle_limit

    def seconds_left(self, now: Optional[float] = None) -> float:
        return max(0.0, self.logout_at - self._now(now))

    def record_activity(self, now: Optional[float] = None) -> IdleState:
        if self.state is IdleState.LOGGED_OUT:
            return self.state
        self.last_activity = self._now(now)
        if self.state is IdleState.WARNING:
            self.state = IdleState.ACTIVE
            if self.on_resume:
                self.on_resume()
        return self.state

    def tick(self, now: Optional[float] = None) -> IdleState:
        now = self._now(now)
        if self.state is IdleState.ACTIVE and now >= self.warning_at:
            self.state = IdleState.WARNING
            logger.info("Idle warning shown")
            if self.on_warning:
                self.on_warning()
        if self.state is IdleState.WARNING and now >= self.logout_at:
            self.state = IdleState.LOGGED_OUT
            logger.info("Idle limit reached, signing out")
            if self.on_logout:
                self.on_logout()
        return self.state

    def reset(self, now: Optional[float] = None) -> None:
        self.state = IdleState.ACTIVE
        self.last_activity = self._now(now)


# ------------------------
# Streamlit glue
# ------------------------
def _settings():
    try:
        app = st.secrets.get("app", {})
    except Exception:
        # No secrets file at all: use the defaults
        app = {}
    limit = float(app.get("idle_limit_seconds", DEFAULT_IDLE_LIMIT))
    warning = float(app.get("idle_warning_seconds", DEFAULT_WARNING_WINDOW))
    return limit, warning


def session_guard() -> IdleGuard:
    guard = st.session_state.get(GUARD_KEY)
    if guard is None:
        limit, warning = _settings()
        guard = IdleGuard(idle_limit=limit, warning_window=warning)
        st.session_state[GUARD_KEY] = guard
    return guard


def clear_guard() -> None:
    if GUARD_KEY in st.session_state:
        del st.session_state[GUARD_KEY]


def request_system_rerun() -> None:
    # Reruns we trigger ourselves must not count as user activity
    st.session_state[SYSTEM_RERUN_KEY] = True
    st.rerun(scope="app")


def consume_system_rerun() -> bool:
    return bool(st.session_state.pop(SYSTEM_RERUN_KEY, False))


def watch(poll_seconds: float = 5.0) -> None:
    guard = session_guard()

    @st.fragment(run_every=poll_seconds)
    def _idle_banner():
        state = guard.tick()
        if state is IdleState.WARNING:
            left = int(round(guard.seconds_left()))
            st.warning(f"You will be logged out in {left} seconds due to inactivity.")
            st.button("Stay logged in", key="idle_stay", on_click=guard.record_activity)
        elif state is IdleState.LOGGED_OUT:
            request_system_rerun()

    _idle_banner()
