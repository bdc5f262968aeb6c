# ledger.py
#
# Pure helpers: raw Supabase rows -> view rows, filters, pivots and the
# monthly roll-up used by the dashboard. Nothing here talks to the network.

import io
import re

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

CURRENCY = "KSh"
MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

_YEAR_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})")


# ------------------------
# Small converters
# ------------------------
def _dec(x) -> Decimal:
    try:
        return Decimal(str(x if x is not None else 0))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _amount(x) -> float:
    try:
        return float(x or 0)
    except (TypeError, ValueError):
        return 0.0


def parse_date(raw) -> Optional[date]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    s = str(raw).strip()
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def parse_year_month(raw) -> Optional[Tuple[int, int]]:
    if raw is None:
        return None
    m = _YEAR_MONTH_RE.match(str(raw).strip())
    if m:
        year, month = int(m.group(1)), int(m.group(2))
        if 1 <= month <= 12:
            return year, month
    d = parse_date(raw)
    return (d.year, d.month) if d else None


def month_start(year: int, month: int) -> str:
    return f"{int(year):04d}-{int(month):02d}-01"


def month_label(year: int, month: int) -> str:
    return f"{MONTH_NAMES[int(month) - 1]} {int(year)}"


def format_money(x) -> str:
    v = _amount(x)
    if v == int(v):
        return f"{CURRENCY} {int(v):,}"
    return f"{CURRENCY} {v:,.2f}"


def unique_by_id(rows: Iterable[Dict]) -> List[Dict]:
    seen = set()
    out = []
    for r in rows or []:
        rid = r.get("id")
        if rid in seen:
            continue
        seen.add(rid)
        out.append(r)
    return out


# ------------------------
# Month range
# ------------------------
def month_range(from_year: int, from_month: int, to_year: int, to_month: int) -> List[Tuple[int, int]]:
    """
    Every (year, month) from the start month to the end month, inclusive.

    Raises ValueError when a month is outside 1..12 or the start is after the end.
    """
    from_year, from_month, to_year, to_month = int(from_year), int(from_month), int(to_year), int(to_month)
    if not (1 <= from_month <= 12 and 1 <= to_month <= 12):
        raise ValueError("Month must be between 1 and 12")
    if (from_year, from_month) > (to_year, to_month):
        raise ValueError("Invalid date range: From must be before or equal to To")

    out = []
    year, month = from_year, from_month
    while (year, month) <= (to_year, to_month):
        out.append((year, month))
        month += 1
        if month > 12:
            month = 1
            year += 1
    return out


# ------------------------
# Contribution rows
# ------------------------
def map_contribution(row: Dict, today: Optional[date] = None) -> Dict:
    today = today or date.today()
    ym = parse_year_month(row.get("contribution_month")) or parse_year_month(row.get("paid_on"))
    year, month = ym if ym else (today.year, today.month)

    member = row.get("members") or {}
    return {
        "id": row.get("id"),
        "member_id": row.get("member_id"),
        "member_name": member.get("name") or "Unknown",
        "email": member.get("email"),
        "phone": member.get("phone"),
        "year": year,
        "month": month,
        "amount": _amount(row.get("amount")),
        "paid": bool(row.get("paid_on")),
        "paid_on": row.get("paid_on"),
        "type": row.get("type") or "contribution",
        "project_id": row.get("project_id"),
    }


def contribution_payload(member_id, amount, year: int, month: int, ctype: str, project_id, paid_on: str) -> Dict:
    return {
        "member_id": member_id,
        "amount": float(amount),
        "contribution_month": month_start(year, month),
        "paid_on": paid_on,
        "type": ctype or "contribution",
        "project_id": project_id or None,
    }


def build_contribution_payloads(
    member_id, amount, months: List[Tuple[int, int]], ctype: str, project_id, paid_on: str
) -> List[Dict]:
    return [contribution_payload(member_id, amount, y, m, ctype, project_id, paid_on) for y, m in months]


def dedupe_payloads(payloads: List[Dict]) -> List[Dict]:
    # Postgres rejects an upsert batch that hits the same conflict key twice; the last row wins
    by_key: Dict[Tuple[Any, Any], Dict] = {}
    for p in payloads:
        by_key[(p.get("member_id"), p.get("contribution_month"))] = p
    return list(by_key.values())


def _match_period(value, wanted) -> bool:
    if wanted in (None, "", "all"):
        return True
    return int(value) == int(wanted)


def filter_contributions(
    rows: List[Dict],
    search: str = "",
    status: str = "all",
    month="all",
    year="all",
) -> List[Dict]:
    needle = (search or "").strip().lower()
    out = []
    for r in rows:
        if needle and needle not in (r.get("member_name") or "").lower():
            continue
        if status == "paid" and not r.get("paid"):
            continue
        if status == "unpaid" and r.get("paid"):
            continue
        if not _match_period(r.get("month"), month) or not _match_period(r.get("year"), year):
            continue
        out.append(r)
    return out


def contribution_years(rows: List[Dict], today: Optional[date] = None) -> List[int]:
    today = today or date.today()
    years = {int(r["year"]) for r in rows if r.get("year")}
    years.add(today.year)
    return sorted(years, reverse=True)


def year_options(rows: List[Dict], today: Optional[date] = None) -> List:
    # "all" first so the overview opens on every year
    return ["all"] + contribution_years(rows, today)


def year_label(value) -> str:
    return "All years" if value == "all" else str(value)


def contribution_matrix(rows: List[Dict], members: Optional[List[Dict]] = None, search: str = "") -> pd.DataFrame:
    """
    Member x month pivot of contribution view rows.

    Cells read "KSh <amount>" when paid, "Unpaid" when recorded but unpaid and
    "-" when nothing is recorded. Total sums paid amounts only.
    """
    periods = sorted({(int(r["year"]), int(r["month"])) for r in rows})
    labels = [month_label(y, m) for y, m in periods]

    if members is None:
        members = unique_by_id({"id": r["member_id"], "name": r["member_name"]} for r in rows)

    needle = (search or "").strip().lower()
    by_member: Dict[Any, Dict[Tuple[int, int], Dict]] = {}
    for r in rows:
        by_member.setdefault(r["member_id"], {})[(int(r["year"]), int(r["month"]))] = r

    records = []
    for m in members:
        name = m.get("name") or "Unknown"
        own = by_member.get(m.get("id"), {})
        if not own and not (needle and needle in name.lower()):
            continue
        rec: Dict[str, Any] = {"Member": name}
        total = Decimal("0")
        for (y, mo), label in zip(periods, labels):
            c = own.get((y, mo))
            if c is None:
                rec[label] = "-"
            elif c.get("paid"):
                rec[label] = format_money(c.get("amount"))
                total += _dec(c.get("amount"))
            else:
                rec[label] = "Unpaid"
        rec["Total"] = float(total)
        records.append(rec)

    return pd.DataFrame(records, columns=["Member"] + labels + ["Total"])


def member_month_status(members: List[Dict], contributions: List[Dict], year: int, month: int) -> List[Dict]:
    paid: Dict[Any, Decimal] = {}
    for c in contributions:
        if c.get("paid") and int(c["year"]) == int(year) and int(c["month"]) == int(month):
            paid[c["member_id"]] = paid.get(c["member_id"], Decimal("0")) + _dec(c.get("amount"))

    out = []
    for m in members:
        if m.get("is_active") is False:
            continue
        amt = paid.get(m.get("id"))
        out.append(
            {
                "Member": m.get("name") or "Unknown",
                "Status": "Paid" if amt is not None else "Pending",
                "Amount": float(amt) if amt is not None else 0.0,
            }
        )
    return out


# ------------------------
# Dashboard aggregation
# ------------------------
def monthly_summary(contributions: List[Dict], expenses: List[Dict], year="all") -> List[Dict]:
    """
    Twelve buckets (Jan..Dec) of collected and spent amounts for one year.

    Contributions are view rows (year/month already resolved); expenses are
    bucketed by their date and skipped when it cannot be parsed. net is
    clamped at zero per month.
    """
    collected = [Decimal("0")] * 12
    spent = [Decimal("0")] * 12

    for c in contributions:
        if not _match_period(c.get("year"), year):
            continue
        idx = int(c["month"]) - 1
        collected[idx] += _dec(c.get("amount"))

    for e in expenses:
        d = parse_date(e.get("date"))
        if d is None or not _match_period(d.year, year):
            continue
        spent[d.month - 1] += _dec(e.get("amount"))

    out = []
    for i, name in enumerate(MONTH_NAMES):
        net = collected[i] - spent[i]
        out.append(
            {
                "month": name,
                "collected": float(collected[i]),
                "expenses": float(spent[i]),
                "net": float(net if net > 0 else Decimal("0")),
            }
        )
    return out


def dashboard_totals(contributions: List[Dict], expenses: List[Dict], members: List[Dict]) -> Dict[str, Any]:
    total_c = sum((_dec(c.get("amount")) for c in contributions), Decimal("0"))
    total_e = sum((_dec(e.get("amount")) for e in expenses), Decimal("0"))
    return {
        "total_contributions": float(total_c),
        "total_expenses": float(total_e),
        # Unclamped: the overall balance may go negative
        "net": float(total_c - total_e),
        "active_members": sum(1 for m in members if m.get("is_active") is not False),
    }


# ------------------------
# Expense / project rows
# ------------------------
def map_expense(row: Dict) -> Dict:
    member = row.get("members") or {}
    project = row.get("csr_projects") or {}
    d = parse_date(row.get("date"))
    return {
        "id": row.get("id"),
        "description": row.get("description") or "",
        "amount": _amount(row.get("amount")),
        "date": d.isoformat() if d else (row.get("date") or ""),
        "member_id": row.get("member_id"),
        "member_name": member.get("name") or "",
        "project_id": row.get("project_id"),
        "project_title": project.get("title") or "",
        "status": row.get("status") or "Pending",
        "approved_by": row.get("approved_by") or "",
    }


def map_project(row: Dict, contributions: List[Dict]) -> Dict:
    total = sum((_dec(c.get("amount")) for c in contributions), Decimal("0"))
    return {
        "id": row.get("id"),
        "title": row.get("title") or "",
        "description": row.get("description") or "",
        "impact": row.get("impact") or "",
        "budget": _amount(row.get("amount")),
        "start_date": row.get("start_date"),
        "end_date": row.get("end_date"),
        "status": row.get("status") or "ongoing",
        "created_at": row.get("created_at"),
        "contributions": list(contributions),
        "total_contributions": float(total),
    }


def member_name(members: List[Dict], member_id, default: str = "Unknown Member") -> str:
    if member_id is None:
        return "Anonymous"
    for m in members:
        if m.get("id") == member_id:
            return m.get("name") or default
    return default


def duplicate_groups(members: List[Dict]) -> List[List[Dict]]:
    # Members whose names differ only by case or surrounding spaces; oldest row first
    groups: Dict[str, List[Dict]] = {}
    for m in members:
        key = (m.get("name") or "").strip().lower()
        if key:
            groups.setdefault(key, []).append(m)
    out = []
    for rows in groups.values():
        if len(rows) > 1:
            out.append(sorted(rows, key=lambda r: str(r.get("joined_at") or "")))
    return out


# ------------------------
# Validation
# ------------------------
def _positive(amount) -> bool:
    try:
        return float(amount) > 0
    except (TypeError, ValueError):
        return False


def validate_expense(description: str, amount, expense_date) -> List[str]:
    errors = []
    if not (description or "").strip():
        errors.append("Description is required")
    if not _positive(amount):
        errors.append("Amount must be greater than 0")
    if parse_date(expense_date) is None:
        errors.append("A valid date is required")
    return errors


def validate_project(title: str, description: str, budget, start_date, end_date) -> List[str]:
    errors = []
    if not (title or "").strip():
        errors.append("Title is required")
    if not (description or "").strip():
        errors.append("Description is required")
    try:
        if float(budget or 0) < 0:
            errors.append("Budget cannot be negative")
    except (TypeError, ValueError):
        errors.append("Budget must be a number")
    if start_date is not None and parse_date(start_date) is None:
        errors.append("Start date is not a valid date")
    s, e = parse_date(start_date), parse_date(end_date)
    if s and e and e < s:
        errors.append("End date cannot be before the start date")
    return errors


def validate_project_contribution(project_id, member_id, amount, contributed_on, today: Optional[date] = None) -> List[str]:
    today = today or date.today()
    errors = []
    if not project_id:
        errors.append("Select a project")
    if not member_id:
        errors.append("Select a member")
    if not _positive(amount):
        errors.append("Amount must be greater than 0")
    d = parse_date(contributed_on)
    if d is None:
        errors.append("A valid date is required")
    elif d > today:
        errors.append("Contribution date cannot be in the future")
    return errors


# ------------------------
# Bulk upload
# ------------------------
_REQUIRED_BULK_COLUMNS = {"member_name", "month", "year", "amount"}


def _parse_month(token: str) -> int:
    token = (token or "").strip()
    if token[:3].title() in MONTH_NAMES:
        return MONTH_NAMES.index(token[:3].title()) + 1
    return int(float(token))


def parse_bulk_csv(text: str) -> Tuple[List[Dict], int]:
    """
    Parse bulk contribution CSV text.

    Returns (rows, skipped). Rows missing a member name, a valid month/year or
    a positive amount are skipped. Raises ValueError when the text is empty or
    a required column is missing.
    """
    if not (text or "").strip():
        raise ValueError("CSV is empty")
    df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, skipinitialspace=True)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = _REQUIRED_BULK_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"CSV is missing column(s): {', '.join(sorted(missing))}")

    rows = []
    skipped = 0
    for rec in df.to_dict("records"):
        name = (rec.get("member_name") or "").strip()
        try:
            month = _parse_month(rec.get("month"))
            year = int(float((rec.get("year") or "").strip()))
            amount = float((rec.get("amount") or "").strip())
        except (TypeError, ValueError):
            skipped += 1
            continue
        if not name or not 1 <= month <= 12 or amount <= 0:
            skipped += 1
            continue
        rows.append(
            {
                "member_name": name,
                "month": month,
                "year": year,
                "amount": amount,
                "type": (rec.get("type") or "").strip().lower() or "contribution",
                "project_id": (rec.get("project_id") or "").strip() or None,
            }
        )
    return rows, skipped
