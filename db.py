# db.py (Supabase API version using supabase-py)
#
# Notes:
# - Uses Supabase REST API (PostgREST) via supabase-py
# - Uses the anon key; each browser session signs in on its own client, so
#   row level security decides what a member may read and write
# - Requires Streamlit secrets:
#   [supabase]
#   url = "https://<PROJECT_REF>.supabase.co"
#   anon_key = "<ANON_KEY>"

import logging
import random
import time

from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
import streamlit as st
from postgrest.exceptions import APIError
from supabase import create_client, Client, ClientOptions

import ledger

logger = logging.getLogger(__name__)

# Domain constants (single source of truth for pages)
CURRENCY = ledger.CURRENCY
CONTRIBUTION_TYPES = ["contribution", "food"]
EXPENSE_STATUSES = ["Pending", "Approved", "Rejected"]
PROJECT_STATUSES = ["ongoing", "completed"]
DEFAULT_CONTRIBUTION_AMOUNT = 2000.0
PLACEHOLDER_PHONE = "0000000000"
EXPENSES_PAGE_SIZE = 20

CONTRIBUTION_CONFLICT_KEY = "member_id,contribution_month"

# Tables besides contributions whose rows point at members.id
MEMBER_REF_TABLES = ("expenses", "csr_contributions")

DEMO_MEMBER_NAMES = [
    "Geoffrey Mwangi",
    "Eric Waithira",
    "Stephen Njoroge",
    "Boniface Wambua",
    "Chris G",
    "Ashley Mungai",
    "Kelly Njuguna",
    "Samuel Muturi",
    "John Njeri",
    "David Koigi",
    "Mary Njeri",
    "Antony Kibunyi",
    "Catherine Chege",
    "Stephen Macharia",
    "Peter Muigai",
    "Asaf Njuguna",
    "Kenneth Kamau",
]

_CLIENT_KEY = "_supabase_client"

_TRANSIENT_ERRORS = (
    httpx.RemoteProtocolError,
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.ConnectError,
)


class BackendError(RuntimeError):
    """A read against Supabase failed; ``str(err)`` is safe to show to users."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


# ------------------------
# Supabase client
# ------------------------
def _supabase_url() -> str:
    try:
        return st.secrets["supabase"]["url"]
    except Exception:
        raise RuntimeError("Missing secrets: set [supabase].url in .streamlit/secrets.toml or Streamlit Cloud Secrets")


def _supabase_anon_key() -> str:
    try:
        return st.secrets["supabase"]["anon_key"]
    except Exception:
        raise RuntimeError(
            "Missing secrets: set [supabase].anon_key in .streamlit/secrets.toml or Streamlit Cloud Secrets"
        )


def supabase_credentials() -> Tuple[str, str]:
    return _supabase_url(), _supabase_anon_key()


def _sb() -> Client:
    # One client per browser session: the signed-in user's tokens live on it
    client = st.session_state.get(_CLIENT_KEY)
    if client is None:
        client = create_client(
            _supabase_url(),
            _supabase_anon_key(),
            options=ClientOptions(flow_type="pkce"),
        )
        st.session_state[_CLIENT_KEY] = client
    return client


def auth_client():
    return _sb().auth


def reset_client() -> None:
    if _CLIENT_KEY in st.session_state:
        del st.session_state[_CLIENT_KEY]


def _ok(resp) -> Tuple[bool, Optional[str]]:
    err = getattr(resp, "error", None)
    if err:
        return False, str(err)
    return True, None


def _execute_with_retry(q, tries: int = 4, base_sleep: float = 0.35):
    last_exc = None
    for i in range(tries):
        try:
            return q.execute()
        except _TRANSIENT_ERRORS as e:
            last_exc = e
            logger.warning("Transient Supabase error (attempt %d/%d): %s", i + 1, tries, e)
            time.sleep(base_sleep * (2**i) + random.uniform(0.0, 0.2))
    raise last_exc


def _execute_once(q):
    # Inserts, updates and deletes: a timed-out request may already be committed
    return q.execute()


# ------------------------
# Error helpers
# ------------------------
def _error_code(exc: Exception) -> Optional[str]:
    code = getattr(exc, "code", None)
    return str(code) if code else None


def _error_text(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc)


def is_missing_table(exc: Exception) -> bool:
    if _error_code(exc) in ("42P01", "PGRST205"):
        return True
    text = _error_text(exc).lower()
    return "relation" in text and "does not exist" in text


def is_missing_column(exc: Exception) -> bool:
    if _error_code(exc) in ("42703", "PGRST204"):
        return True
    text = _error_text(exc).lower()
    return "column" in text and "does not exist" in text


def describe_error(exc: Exception, context: str) -> str:
    # Map PostgREST / transport failures to a message the UI can show as-is
    code = _error_code(exc)
    if is_missing_table(exc):
        return f"Failed to {context}: a required table was not found. Run the database setup script in Supabase."
    if is_missing_column(exc):
        return f"Failed to {context}: the database schema is out of date ({_error_text(exc)})."
    if code == "42501":
        return f"Failed to {context}: permission denied. Check the row level security policies."
    if code == "PGRST301":
        return "Your session expired. Please log in again."
    if isinstance(exc, httpx.HTTPError):
        return f"Failed to {context}: {exc}. Please check your connection."
    return f"Failed to {context}: {_error_text(exc)}. Please check your connection, schema, or RLS policies."


def _read(q, context: str):
    try:
        resp = _execute_with_retry(q)
    except (APIError, httpx.HTTPError) as e:
        logger.error("Supabase read failed (%s): %s", context, _error_text(e))
        raise BackendError(describe_error(e, context), _error_code(e)) from e
    ok, msg = _ok(resp)
    if not ok:
        raise BackendError(f"DB error: {msg}")
    return resp


def _fetch(q, context: str) -> List[Dict]:
    return list(_read(q, context).data or [])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ------------------------
# Init
# ------------------------
def init_db() -> None:
    sb = _sb()
    try:
        resp = _execute_with_retry(sb.table("members").select("id").limit(1))
    except (APIError, httpx.HTTPError) as e:
        raise RuntimeError(f"Supabase connectivity check failed: {_error_text(e)}") from e
    ok, msg = _ok(resp)
    if not ok:
        raise RuntimeError(f"Supabase connectivity check failed: {msg}")


# ------------------------
# Member ops
# ------------------------
def list_members() -> List[Dict]:
    rows = _fetch(_sb().table("members").select("*").order("name", desc=False), "load members")
    return ledger.unique_by_id(rows)


def get_member_rows(member_id) -> List[Dict]:
    # More than one row means the table lost its primary key; Profile warns about it
    member_id = str(member_id or "").strip()
    if not member_id:
        return []
    return _fetch(_sb().table("members").select("*").eq("id", member_id), "load profile")


def get_member_role(member_id) -> Optional[str]:
    member_id = str(member_id or "").strip()
    if not member_id:
        return None
    try:
        resp = _execute_with_retry(_sb().table("members").select("role").eq("id", member_id).limit(1))
    except APIError as e:
        # Older schemas have no role column; treat as "no role"
        logger.info("Could not read member role: %s", _error_text(e))
        return None
    rows = resp.data or []
    if not rows:
        return None
    return (rows[0].get("role") or "").strip().lower() or None


def profile_exists(user_id) -> bool:
    resp = _read(
        _sb().table("profiles").select("id,updated_at").eq("id", str(user_id)).limit(1),
        "check profile",
    )
    return bool(resp.data)


def add_member(name: str, phone: str = "", email: Optional[str] = None) -> Tuple[bool, str, Optional[Dict]]:
    name = (name or "").strip()
    phone = (phone or "").strip()
    email = (email or "").strip() or None
    if not name:
        return False, "Name is empty", None

    payload = {"name": name, "phone": phone, "email": email, "joined_at": _now_iso()}
    try:
        resp = _execute_once(_sb().table("members").insert(payload))
    except (APIError, httpx.HTTPError) as e:
        logger.error("Add member failed: %s", _error_text(e))
        return False, describe_error(e, "add member"), None

    rows = resp.data or []
    return True, f"Added {name}", (rows[0] if rows else None)


def update_member(member_id, name: str, phone: str, email: str) -> Tuple[bool, str]:
    member_id = str(member_id or "").strip()
    name = (name or "").strip()
    if not name:
        return False, "Name is empty"

    try:
        resp = _execute_once(
            _sb()
            .table("members")
            .update({"name": name, "phone": (phone or "").strip(), "email": (email or "").strip() or None})
            .eq("id", member_id)
        )
    except (APIError, httpx.HTTPError) as e:
        logger.error("Update member failed: %s", _error_text(e))
        return False, describe_error(e, "update profile")
    if not resp.data:
        return False, "Member not found"
    return True, "Profile updated"


def create_member_for_user(
    user_id,
    name: str,
    email: str,
    tries: int = 6,
    base_sleep: float = 0.3,
    sleep=time.sleep,
) -> Tuple[bool, str]:
    """
    Create the members row for a signed-in user.

    The row references auth.users, which may not be visible yet right after
    sign-up, so foreign key violations are retried with backoff.
    """
    payload = {
        "id": str(user_id),
        "name": (name or "").strip() or (email or "").strip() or "Unnamed",
        "email": (email or "").strip() or None,
        "phone": "",
        "joined_at": _now_iso(),
    }
    delay = base_sleep
    for attempt in range(1, tries + 1):
        try:
            _execute_once(_sb().table("members").insert(payload))
            return True, "Profile created"
        except APIError as e:
            code = _error_code(e)
            if code == "23505":
                return True, "Profile already exists"
            if code != "23503":
                logger.error("Create profile failed: %s", _error_text(e))
                return False, describe_error(e, "create profile")
            logger.info("Member row not insertable yet (attempt %d/%d)", attempt, tries)
            if attempt < tries:
                sleep(delay + random.uniform(0.0, 0.2))
                delay *= 2
        except httpx.HTTPError as e:
            return False, describe_error(e, "create profile")
    return False, "Failed to create profile: your account is not ready yet. Try again in a moment."


def seed_members(names: Iterable[str] = DEMO_MEMBER_NAMES) -> Tuple[bool, str]:
    existing = {(m.get("name") or "").strip().lower() for m in list_members()}
    payload = []
    for name in names:
        name = (name or "").strip()
        if not name or name.lower() in existing:
            continue
        existing.add(name.lower())
        payload.append({"name": name, "phone": PLACEHOLDER_PHONE, "email": None, "joined_at": _now_iso()})

    if not payload:
        return True, "All demo members already exist"
    try:
        _execute_once(_sb().table("members").insert(payload))
    except (APIError, httpx.HTTPError) as e:
        logger.error("Seed members failed: %s", _error_text(e))
        return False, describe_error(e, "seed members")
    return True, f"Added {len(payload)} member(s)"


def find_duplicate_members() -> List[List[Dict]]:
    # list_members() already collapses rows sharing an id; this groups by name
    return ledger.duplicate_groups(list_members())


def consolidate_duplicates(keep_id, drop_ids: List) -> Tuple[bool, str]:
    keep_id = str(keep_id or "").strip()
    drop = [str(x) for x in (drop_ids or []) if str(x) and str(x) != keep_id]
    if not keep_id:
        return False, "Select the row to keep"
    if not drop:
        return False, "Nothing to remove"

    # Money records move to the kept member first; a month both rows paid is left to the admin
    sb = _sb()
    try:
        kept = _fetch(
            sb.table("contributions").select("contribution_month").eq("member_id", keep_id),
            "load contributions",
        )
        moving = _fetch(
            sb.table("contributions").select("id,member_id,contribution_month").in_("member_id", drop),
            "load contributions",
        )
    except BackendError as e:
        return False, str(e)

    taken = {str(r.get("contribution_month") or "")[:10] for r in kept}
    clashes = set()
    for r in moving:
        month = str(r.get("contribution_month") or "")[:10]
        if month in taken:
            clashes.add(month)
        taken.add(month)
    if clashes:
        months = []
        for m in sorted(clashes):
            ym = ledger.parse_year_month(m)
            months.append(ledger.month_label(*ym) if ym else m)
        return False, f"Both rows have contributions for {', '.join(months)}. Remove the extra contribution before merging."

    try:
        if moving:
            _execute_once(
                sb.table("contributions").update({"member_id": keep_id}).in_("id", [r["id"] for r in moving])
            )
        for table in MEMBER_REF_TABLES:
            _execute_once(sb.table(table).update({"member_id": keep_id}).in_("member_id", drop))
        resp = _execute_once(sb.table("members").delete().in_("id", drop))
    except (APIError, httpx.HTTPError) as e:
        logger.error("Consolidate duplicates failed: %s", _error_text(e))
        return False, describe_error(e, "merge duplicate members")
    removed = len(resp.data or [])
    logger.info("Merged %d member row(s) into %s, moved %d contribution(s)", removed, keep_id, len(moving))
    return True, f"Removed {removed} duplicate row(s), moved {len(moving)} contribution(s)"


# ------------------------
# Contribution ops
# ------------------------
def fetch_contributions() -> List[Dict]:
    q = (
        _sb()
        .table("contributions")
        .select("*, members(name,email,phone,joined_at)")
        .order("contribution_month", desc=True)
    )
    return _fetch(q, "load contributions")


def upsert_contributions(payloads: List[Dict]) -> Tuple[bool, str]:
    payloads = ledger.dedupe_payloads(payloads or [])
    if not payloads:
        return False, "Nothing to save"
    try:
        _execute_with_retry(
            _sb().table("contributions").upsert(payloads, on_conflict=CONTRIBUTION_CONFLICT_KEY)
        )
    except (APIError, httpx.HTTPError) as e:
        logger.error("Contribution upsert failed: %s", _error_text(e))
        return False, describe_error(e, "save contributions")
    return True, f"Saved {len(payloads)} contribution(s)"


def bulk_upload_contributions(csv_text: str, members: List[Dict], paid_on: Optional[str] = None) -> Tuple[bool, str]:
    """
    Upsert contributions from CSV text (member_name, month, year, amount, type, project_id).

    Members are matched by case-insensitive name; unknown names are created
    with a placeholder phone number.
    """
    try:
        rows, skipped = ledger.parse_bulk_csv(csv_text)
    except ValueError as e:
        return False, str(e)
    if not rows:
        return False, "No valid rows found in the CSV"

    paid_on = paid_on or _now_iso()
    by_name: Dict[str, Any] = {}
    for m in members or []:
        key = (m.get("name") or "").strip().lower()
        if key and key not in by_name:
            by_name[key] = m["id"]

    payloads = []
    for r in rows:
        key = r["member_name"].lower()
        member_id = by_name.get(key)
        if member_id is None:
            ok, msg, created = add_member(r["member_name"], PLACEHOLDER_PHONE)
            if not ok or not created:
                return False, f"Could not create member {r['member_name']}: {msg}"
            member_id = created["id"]
            by_name[key] = member_id
        payloads.append(
            ledger.contribution_payload(
                member_id, r["amount"], r["year"], r["month"], r["type"], r["project_id"], paid_on
            )
        )

    ok, msg = upsert_contributions(payloads)
    if ok and skipped:
        msg = f"{msg} ({skipped} row(s) skipped)"
    return ok, msg


# ------------------------
# Expense ops
# ------------------------
_EXPENSE_SELECT = "*, members(name), csr_projects(title)"


def expenses_table_ready() -> Tuple[bool, str]:
    try:
        _execute_with_retry(
            _sb()
            .table("expenses")
            .select("id,description,amount,date,status,approved_by,member_id,project_id")
            .limit(1)
        )
    except (APIError, httpx.HTTPError) as e:
        logger.error("Expenses schema check failed: %s", _error_text(e))
        return False, describe_error(e, "load expenses")
    return True, "OK"


def fetch_expenses(
    status: str = "all",
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = 1,
    limit: Optional[int] = EXPENSES_PAGE_SIZE,
) -> Tuple[List[Dict], int]:
    # Returns (rows on this page, total rows matching the filters); limit=None returns every match
    q = _sb().table("expenses").select(_EXPENSE_SELECT, count="exact")
    if status and status != "all":
        q = q.eq("status", status)
    if start:
        q = q.gte("date", start.isoformat())
    if end:
        q = q.lte("date", end.isoformat())
    q = q.order("date", desc=True)
    if limit:
        page = max(1, int(page or 1))
        offset = (page - 1) * int(limit)
        q = q.range(offset, offset + int(limit) - 1)

    resp = _read(q, "load expenses")
    rows = [ledger.map_expense(r) for r in (resp.data or [])]
    total = getattr(resp, "count", None)
    return rows, int(total if total is not None else len(rows))


def fetch_all_expenses() -> List[Dict]:
    rows, _ = fetch_expenses(limit=None)
    return rows


def add_expense(
    description: str,
    amount,
    expense_date: date,
    member_id=None,
    project_id=None,
) -> Tuple[bool, str]:
    errors = ledger.validate_expense(description, amount, expense_date)
    if errors:
        return False, errors[0]

    payload = {
        "description": description.strip(),
        "amount": float(amount),
        "date": expense_date.isoformat(),
        "member_id": member_id or None,
        "project_id": project_id or None,
        "status": "Pending",
        "approved_by": None,
    }
    try:
        _execute_once(_sb().table("expenses").insert(payload))
    except (APIError, httpx.HTTPError) as e:
        logger.error("Add expense failed: %s", _error_text(e))
        return False, describe_error(e, "add expense")
    return True, "Expense logged"


def update_expense_status(expense_id, status: str, approver: str = "Admin") -> Tuple[bool, str]:
    if status not in EXPENSE_STATUSES:
        return False, f"Invalid status: {status}"

    sb = _sb()
    try:
        chk = _execute_with_retry(sb.table("expenses").select("id").eq("id", expense_id).limit(1))
        if not chk.data:
            return False, "Expense not found"
        resp = _execute_once(
            sb.table("expenses")
            .update({"status": status, "approved_by": approver if status == "Approved" else None})
            .eq("id", expense_id)
        )
    except (APIError, httpx.HTTPError) as e:
        logger.error("Expense status update failed: %s", _error_text(e))
        return False, describe_error(e, "update expense status")
    if not resp.data:
        return False, "Expense not found"
    return True, f"Expense marked {status}"


# ------------------------
# CSR ops
# ------------------------
def list_project_titles() -> List[Dict]:
    return _fetch(_sb().table("csr_projects").select("id,title").order("title", desc=False), "load projects")


def fetch_projects() -> List[Dict]:
    projects = _fetch(
        _sb().table("csr_projects").select("*").order("created_at", desc=True),
        "load CSR projects",
    )
    if not projects:
        return []

    ids = [p["id"] for p in projects]
    contribs = _fetch(
        _sb().table("csr_contributions").select("*").in_("project_id", ids).order("contributed_on", desc=True),
        "load CSR contributions",
    )
    by_project: Dict[Any, List[Dict]] = {}
    for c in contribs:
        by_project.setdefault(c.get("project_id"), []).append(c)

    return [ledger.map_project(p, by_project.get(p["id"], [])) for p in projects]


def add_project(
    title: str,
    description: str,
    impact: str = "",
    budget=0,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Tuple[bool, str]:
    errors = ledger.validate_project(title, description, budget, start_date, end_date)
    if errors:
        return False, errors[0]

    title = title.strip()
    description = description.strip()
    impact = (impact or "").strip()
    payload = {
        "title": title,
        "description": description,
        "impact": impact or None,
        "amount": float(budget or 0),
        "start_date": start_date.isoformat() if start_date else None,
        "end_date": end_date.isoformat() if end_date else None,
        "status": "ongoing",
    }
    sb = _sb()
    try:
        _execute_once(sb.table("csr_projects").insert(payload))
        return True, "Project added"
    except APIError as e:
        if not is_missing_column(e):
            logger.error("Add project failed: %s", _error_text(e))
            return False, describe_error(e, "add project")
        first_error = e

    # Older schema without impact/amount/status: keep the impact text in the description
    logger.warning("csr_projects is missing columns, retrying with the basic payload: %s", _error_text(first_error))
    basic = {
        "title": title,
        "description": f"{description}\n\nImpact: {impact}" if impact else description,
        "start_date": payload["start_date"],
        "end_date": payload["end_date"],
    }
    try:
        _execute_once(sb.table("csr_projects").insert(basic))
    except (APIError, httpx.HTTPError) as e:
        logger.error("Add project (basic) failed: %s", _error_text(e))
        return False, describe_error(e, "add project")
    return True, "Project added (impact saved in the description)"


def add_project_contribution(project_id, member_id, amount, contributed_on: date) -> Tuple[bool, str]:
    errors = ledger.validate_project_contribution(project_id, member_id, amount, contributed_on)
    if errors:
        return False, errors[0]

    payload = {
        "project_id": project_id,
        "member_id": member_id,
        "amount": float(amount),
        "contributed_on": contributed_on.isoformat(),
    }
    try:
        _execute_once(_sb().table("csr_contributions").insert(payload))
    except (APIError, httpx.HTTPError) as e:
        logger.error("Add CSR contribution failed: %s", _error_text(e))
        return False, describe_error(e, "add contribution")
    return True, "Contribution recorded"


def update_project_status(project_id, status: str) -> Tuple[bool, str]:
    if status not in PROJECT_STATUSES:
        return False, f"Invalid status: {status}"
    try:
        resp = _execute_once(_sb().table("csr_projects").update({"status": status}).eq("id", project_id))
    except (APIError, httpx.HTTPError) as e:
        logger.error("Project status update failed: %s", _error_text(e))
        return False, describe_error(e, "update project")
    if not resp.data:
        return False, "Project not found"
    return True, f"Project marked {status}"
