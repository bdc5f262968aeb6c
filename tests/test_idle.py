import pytest

from idle import IdleGuard, IdleState


class Clock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t


@pytest.fixture
def events():
    return []


@pytest.fixture
def guard(events):
    return IdleGuard(
        idle_limit=600,
        warning_window=60,
        on_warning=lambda: events.append("warning"),
        on_resume=lambda: events.append("resume"),
        on_logout=lambda: events.append("logout"),
        clock=Clock(0.0),
    )


def test_stays_active_before_warning_point(guard, events):
    assert guard.tick(539.9) is IdleState.ACTIVE
    assert events == []


def test_warning_fires_once(guard, events):
    assert guard.tick(540) is IdleState.WARNING
    assert guard.tick(560) is IdleState.WARNING
    assert guard.tick(599) is IdleState.WARNING
    assert events == ["warning"]
    assert guard.seconds_left(570) == 30


def test_logout_after_warning_window(guard, events):
    guard.tick(540)
    assert guard.tick(600) is IdleState.LOGGED_OUT
    assert guard.tick(700) is IdleState.LOGGED_OUT
    assert events == ["warning", "logout"]


def test_activity_during_warning_cancels_logout(guard, events):
    guard.tick(540)
    assert guard.record_activity(550) is IdleState.ACTIVE
    assert guard.tick(600) is IdleState.ACTIVE
    assert guard.tick(1089) is IdleState.ACTIVE
    assert guard.tick(1090) is IdleState.WARNING
    assert events == ["warning", "resume", "warning"]


def test_activity_while_active_restarts_countdown(guard, events):
    guard.record_activity(500)
    assert guard.tick(1000) is IdleState.ACTIVE
    assert guard.tick(1040) is IdleState.WARNING
    assert events == ["warning"]


def test_late_tick_fires_warning_then_logout(guard, events):
    assert guard.tick(5000) is IdleState.LOGGED_OUT
    assert events == ["warning", "logout"]


def test_activity_after_logout_is_ignored_until_reset(guard, events):
    guard.tick(700)
    assert guard.record_activity(710) is IdleState.LOGGED_OUT
    guard.reset(720)
    assert guard.state is IdleState.ACTIVE
    assert guard.tick(1259) is IdleState.ACTIVE


def test_uses_injected_clock(events):
    clock = Clock(100.0)
    g = IdleGuard(idle_limit=10, warning_window=2, on_warning=lambda: events.append("w"), clock=clock)
    clock.t = 108.0
    assert g.tick() is IdleState.WARNING
    clock.t = 110.0
    assert g.tick() is IdleState.LOGGED_OUT
    assert events == ["w"]


@pytest.mark.parametrize("limit, warning", [(60, 60), (60, 0), (0, 10), (60, 90)])
def test_rejects_bad_windows(limit, warning):
    with pytest.raises(ValueError):
        IdleGuard(idle_limit=limit, warning_window=warning)
