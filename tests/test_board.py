from datetime import datetime, timezone

import pytest

import board


class Backend:
    def __init__(self, rows=None, ok=True, msg="Saved"):
        self.rows = list(rows or [])
        self.ok = ok
        self.msg = msg
        self.upserts = []
        self.loads = 0
        self.fail_load = False

    def load(self):
        self.loads += 1
        if self.fail_load:
            raise RuntimeError("Failed to load contributions: offline")
        return [dict(r) for r in self.rows]

    def upsert(self, payloads):
        self.upserts.append(payloads)
        if self.ok:
            for p in payloads:
                year, month = int(p["contribution_month"][:4]), int(p["contribution_month"][5:7])
                self.rows.insert(
                    0,
                    {
                        "id": f"db-{len(self.rows)}",
                        "member_id": p["member_id"],
                        "member_name": "Mary",
                        "year": year,
                        "month": month,
                        "amount": p["amount"],
                        "paid": True,
                    },
                )
        return self.ok, self.msg


EXISTING = {"id": "db-old", "member_id": "m2", "member_name": "John", "year": 2024, "month": 1, "amount": 2000.0, "paid": True}
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _board(backend):
    b = board.ContributionBoard(load=backend.load, upsert=backend.upsert, load_members=lambda: [{"id": "m1", "name": "Mary"}])
    b.refresh()
    return b


def _save(b, *args, **kwargs):
    ok, msg = b.stage_range(*args, **kwargs)
    if not ok:
        return ok, msg
    return b.commit()


def test_successful_range_is_replaced_by_refetch():
    backend = Backend(rows=[EXISTING])
    b = _board(backend)
    b.form_open = True

    ok, msg = _save(b, "m1", 2000, "contribution", (2024, 11), (2025, 2), now=NOW)

    assert ok, msg
    assert len(backend.upserts) == 1
    payloads = backend.upserts[0]
    assert [p["contribution_month"] for p in payloads] == ["2024-11-01", "2024-12-01", "2025-01-01", "2025-02-01"]
    assert all(p["paid_on"] == NOW.isoformat() for p in payloads)
    assert not any(board.is_temp_id(r["id"]) for r in b.rows)
    assert b.rows == backend.rows
    assert b.form_open is False
    assert b.busy is False


def test_failed_save_removes_exactly_the_placeholders():
    backend = Backend(rows=[EXISTING], ok=False, msg="Failed to save contributions: permission denied.")
    b = _board(backend)
    before = [dict(r) for r in b.rows]

    ok, msg = _save(b, "m1", 2000, "contribution", (2025, 1), (2025, 3), now=NOW)

    assert not ok
    assert msg == backend.msg
    assert b.error == backend.msg
    assert b.rows == before
    assert backend.loads == 1


def test_staged_range_is_visible_before_anything_is_written():
    backend = Backend(rows=[EXISTING])
    b = _board(backend)
    b.form_open = True

    ok, msg = b.stage_range("m1", 1500, "food", (2025, 1), (2025, 2), now=NOW)

    assert ok, msg
    assert backend.upserts == []
    assert b.has_pending
    assert b.form_open is False
    assert b.busy is True
    temps = [r for r in b.rows if board.is_temp_id(r["id"])]
    assert len(temps) == 2
    assert all(r["paid"] is True and r["amount"] == 1500.0 and r["type"] == "food" for r in temps)
    assert b.rows[-1] == EXISTING

    assert b.stage_range("m1", 1500, "food", (2025, 3), (2025, 3), now=NOW) == (
        False,
        "A save is already in progress",
    )

    ok, msg = b.commit()
    assert (ok, msg) == (True, "Recorded 2 month(s) for Mary")
    assert len(backend.upserts) == 1
    assert not b.has_pending
    assert b.busy is False
    assert not any(board.is_temp_id(r["id"]) for r in b.rows)


def test_commit_without_staged_save():
    backend = Backend(rows=[EXISTING])
    b = _board(backend)
    assert b.commit() == (False, "Nothing to save")
    assert backend.upserts == []


def test_placeholders_are_visible_during_the_write():
    backend = Backend(rows=[EXISTING])
    seen = {}

    def upsert(payloads):
        seen["rows"] = [dict(r) for r in b.rows]
        seen["busy"] = b.busy
        return backend.upsert(payloads)

    b = board.ContributionBoard(load=backend.load, upsert=upsert)
    b.refresh()
    _save(b, "m1", 1500, "food", (2025, 1), (2025, 2), now=NOW)

    temps = [r for r in seen["rows"] if board.is_temp_id(r["id"])]
    assert len(temps) == 2
    assert all(r["paid"] is True and r["amount"] == 1500.0 and r["type"] == "food" for r in temps)
    assert seen["busy"] is True
    assert seen["rows"][-1] == EXISTING


@pytest.mark.parametrize(
    "member_id, amount, start, end, message",
    [
        (None, 2000, (2025, 1), (2025, 1), "Please select a member"),
        ("m1", 0, (2025, 1), (2025, 1), "greater than 0"),
        ("m1", "abc", (2025, 1), (2025, 1), "valid amount"),
        ("m1", 2000, (2025, 5), (2025, 4), "From must be before or equal to To"),
    ],
)
def test_invalid_input_never_writes(member_id, amount, start, end, message):
    backend = Backend(rows=[EXISTING])
    b = _board(backend)
    before = list(b.rows)

    ok, msg = _save(b, member_id, amount, "contribution", start, end, now=NOW)

    assert not ok
    assert message in msg
    assert backend.upserts == []
    assert b.rows == before


def test_exception_during_save_rolls_back_and_propagates():
    backend = Backend(rows=[EXISTING])

    def upsert(payloads):
        raise ConnectionError("socket closed")

    b = board.ContributionBoard(load=backend.load, upsert=upsert)
    b.refresh()
    with pytest.raises(ConnectionError):
        _save(b, "m1", 2000, "contribution", (2025, 1), (2025, 1), now=NOW)
    assert b.rows == [EXISTING]
    assert b.busy is False


def test_reload_failure_after_save_drops_placeholders():
    backend = Backend(rows=[EXISTING])
    b = _board(backend)
    backend.fail_load = True

    ok, msg = _save(b, "m1", 2000, "contribution", (2025, 1), (2025, 1), now=NOW)

    assert not ok
    assert "reloading failed" in msg
    assert not any(board.is_temp_id(r["id"]) for r in b.rows)


def test_busy_board_refuses_second_submission():
    backend = Backend()
    b = _board(backend)
    b.busy = True
    ok, msg = _save(b, "m1", 2000, "contribution", (2025, 1), (2025, 1), now=NOW)
    assert not ok
    assert backend.upserts == []


def test_refresh_failure_keeps_rows_and_sets_error():
    backend = Backend(rows=[EXISTING])
    b = _board(backend)
    backend.fail_load = True
    assert b.refresh() is False
    assert b.rows == [EXISTING]
    assert "offline" in b.error


def test_add_member_replaces_placeholder_with_saved_row():
    saved = {"id": "m9", "name": "Ashley", "phone": "0712345678"}
    b = board.ContributionBoard(
        load=lambda: [],
        upsert=lambda p: (True, ""),
        create_member=lambda name, phone, email: (True, "Added Ashley", saved),
    )
    ok, _ = b.add_member("Ashley", "0712345678")
    assert ok
    assert b.members == [saved]


def test_add_member_failure_rolls_back():
    b = board.ContributionBoard(
        load=lambda: [],
        upsert=lambda p: (True, ""),
        create_member=lambda name, phone, email: (False, "Failed to add member: duplicate", None),
    )
    b.members = [{"id": "m1", "name": "Mary"}]
    ok, msg = b.add_member("Ashley", "0712345678")
    assert not ok
    assert b.members == [{"id": "m1", "name": "Mary"}]
    assert b.error == msg


def test_add_member_requires_name_and_phone():
    b = board.ContributionBoard(load=lambda: [], upsert=lambda p: (True, ""), create_member=lambda *a: (True, "", None))
    assert b.add_member("Ashley", "")[0] is False
