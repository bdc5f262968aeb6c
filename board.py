# board.py
#
# Local contribution list for one browser session, with optimistic writes:
# placeholder rows are drawn before the save runs and are rolled back if it
# fails.

import logging
import uuid

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import ledger

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"


def is_temp_id(row_id) -> bool:
    return isinstance(row_id, str) and row_id.startswith(TEMP_PREFIX)


def _temp_id(kind: str = "") -> str:
    return f"{TEMP_PREFIX}{kind}{uuid.uuid4().hex[:12]}"


class ContributionBoard:
    """
    Contribution rows plus member list as seen by one session.

    load() returns contribution view rows (see ledger.map_contribution),
    upsert(payloads) returns (ok, message). The optional member callables
    mirror db.list_members / db.add_member.
    """

    def __init__(
        self,
        load: Callable[[], List[Dict]],
        upsert: Callable[[List[Dict]], Tuple[bool, str]],
        load_members: Optional[Callable[[], List[Dict]]] = None,
        create_member: Optional[Callable[..., Tuple[bool, str, Optional[Dict]]]] = None,
    ):
        self._load = load
        self._upsert = upsert
        self._load_members = load_members
        self._create_member = create_member

        self.rows: List[Dict] = []
        self.members: List[Dict] = []
        self.error: Optional[str] = None
        self.form_open = False
        self.busy = False
        self.loaded = False
        self._pending: Optional[Dict] = None

    # ------------------------
    # Fetch
    # ------------------------
    def refresh(self) -> bool:
        try:
            rows = self._load()
            members = self._load_members() if self._load_members else self.members
        except RuntimeError as e:
            self.error = str(e)
            logger.error("Contribution reload failed: %s", e)
            return False
        self.rows = list(rows)
        self.members = list(members)
        self.error = None
        self.loaded = True
        return True

    def _drop(self, ids) -> None:
        self.rows = [r for r in self.rows if r.get("id") not in ids]

    # ------------------------
    # Writes
    # ------------------------
    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def stage_range(
        self,
        member_id,
        amount,
        ctype: str,
        start: Tuple[int, int],
        end: Tuple[int, int],
        project_id=None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str]:
        """
        Validate a month range and show it as placeholder rows.

        Nothing is written yet: the page reruns to draw the placeholders and
        the closed form, then calls commit() once the list is on screen.
        """
        if self.busy:
            return False, "A save is already in progress"
        if not member_id:
            return False, "Please select a member"
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            return False, "Please enter a valid amount"
        if amount <= 0:
            return False, "Please enter a valid amount greater than 0"
        try:
            months = ledger.month_range(start[0], start[1], end[0], end[1])
        except ValueError as e:
            return False, str(e)

        paid_on = (now or datetime.now(timezone.utc)).isoformat()
        name = ledger.member_name(self.members, member_id, default="Unknown")
        placeholders = [
            {
                "id": _temp_id(),
                "member_id": member_id,
                "member_name": name,
                "year": y,
                "month": m,
                "amount": amount,
                "paid": True,
                "paid_on": paid_on,
                "type": ctype or "contribution",
                "project_id": project_id or None,
            }
            for y, m in months
        ]
        self.rows = placeholders[::-1] + self.rows
        self.form_open = False
        self.busy = True
        self._pending = {
            "temp_ids": {p["id"] for p in placeholders},
            "payloads": ledger.build_contribution_payloads(member_id, amount, months, ctype, project_id, paid_on),
            "name": name,
        }
        return True, f"Saving {len(months)} month(s) for {name}..."

    def commit(self) -> Tuple[bool, str]:
        if self._pending is None:
            return False, "Nothing to save"
        pending, self._pending = self._pending, None
        temp_ids = pending["temp_ids"]
        count = len(pending["payloads"])

        try:
            ok, msg = self._upsert(pending["payloads"])
        except Exception:
            self._drop(temp_ids)
            raise
        finally:
            self.busy = False

        if not ok:
            self._drop(temp_ids)
            self.error = msg
            logger.warning("Contribution save rolled back (%d month(s)): %s", count, msg)
            return False, msg

        if not self.refresh():
            self._drop(temp_ids)
            return False, f"Saved, but reloading failed: {self.error}"
        return True, f"Recorded {count} month(s) for {pending['name']}"

    def add_member(self, name: str, phone: str, email: str = "") -> Tuple[bool, str]:
        if self._create_member is None:
            return False, "Adding members is not available here"
        name = (name or "").strip()
        phone = (phone or "").strip()
        if not name or not phone:
            return False, "Name and phone are required"

        temp_id = _temp_id("m-")
        self.members = [{"id": temp_id, "name": name, "phone": phone, "email": email or None}] + self.members
        try:
            ok, msg, row = self._create_member(name, phone, email)
        except Exception:
            self.members = [m for m in self.members if m.get("id") != temp_id]
            raise

        if not ok:
            self.members = [m for m in self.members if m.get("id") != temp_id]
            self.error = msg
            return False, msg

        if row:
            self.members = [row if m.get("id") == temp_id else m for m in self.members]
        else:
            self.members = [m for m in self.members if m.get("id") != temp_id]
            self.refresh()
        return True, msg
