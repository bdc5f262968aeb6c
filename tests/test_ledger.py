from datetime import date

import pytest

import ledger


def _c(member_id, name, year, month, amount, paid=True):
    return {
        "id": f"{member_id}-{year}-{month}",
        "member_id": member_id,
        "member_name": name,
        "year": year,
        "month": month,
        "amount": amount,
        "paid": paid,
        "type": "contribution",
    }


# ------------------------
# month_range
# ------------------------
def test_month_range_single_month():
    assert ledger.month_range(2025, 3, 2025, 3) == [(2025, 3)]


def test_month_range_wraps_year():
    assert ledger.month_range(2024, 11, 2025, 2) == [(2024, 11), (2024, 12), (2025, 1), (2025, 2)]


def test_month_range_length_and_order():
    for fy, fm, ty, tm in [(2023, 1, 2023, 12), (2023, 6, 2025, 5), (2020, 12, 2021, 1)]:
        months = ledger.month_range(fy, fm, ty, tm)
        assert len(months) == (ty - fy) * 12 + (tm - fm) + 1
        assert months[0] == (fy, fm)
        assert months[-1] == (ty, tm)
        assert months == sorted(set(months))


def test_month_range_rejects_reversed_range():
    with pytest.raises(ValueError, match="From must be before or equal to To"):
        ledger.month_range(2025, 5, 2025, 4)


def test_month_range_rejects_bad_month():
    with pytest.raises(ValueError):
        ledger.month_range(2025, 0, 2025, 4)


# ------------------------
# map_contribution
# ------------------------
def test_map_contribution_reads_month_and_member():
    row = {
        "id": 7,
        "member_id": "m1",
        "amount": "2000",
        "contribution_month": "2025-03-01",
        "paid_on": "2025-03-05T10:00:00+00:00",
        "type": "food",
        "members": {"name": "Mary Njeri", "email": "m@x.co", "phone": "0712"},
    }
    out = ledger.map_contribution(row)
    assert (out["year"], out["month"]) == (2025, 3)
    assert out["member_name"] == "Mary Njeri"
    assert out["amount"] == 2000.0
    assert out["paid"] is True
    assert out["type"] == "food"


def test_map_contribution_falls_back_to_paid_on_then_today():
    out = ledger.map_contribution({"id": 1, "paid_on": "2024-11-20T08:00:00Z", "amount": 10})
    assert (out["year"], out["month"]) == (2024, 11)
    assert out["member_name"] == "Unknown"

    out = ledger.map_contribution({"id": 2, "amount": 10}, today=date(2026, 2, 14))
    assert (out["year"], out["month"]) == (2026, 2)
    assert out["paid"] is False


# ------------------------
# Aggregation
# ------------------------
def test_monthly_summary_has_twelve_named_buckets():
    out = ledger.monthly_summary([], [], 2025)
    assert [b["month"] for b in out] == ledger.MONTH_NAMES
    assert all(b["collected"] == 0 and b["expenses"] == 0 and b["net"] == 0 for b in out)


def test_monthly_summary_clamps_net_and_matches_sums():
    contributions = [
        _c("a", "A", 2025, 1, 2000),
        _c("b", "B", 2025, 1, 1500.5),
        _c("a", "A", 2025, 2, 2000),
        _c("a", "A", 2024, 12, 999),
    ]
    expenses = [
        {"date": "2025-01-10", "amount": 500},
        {"date": "2025-02-03", "amount": 5000},
        {"date": "not a date", "amount": 100000},
        {"date": "2024-12-01", "amount": 1},
    ]
    out = ledger.monthly_summary(contributions, expenses, 2025)

    assert out[0] == {"month": "Jan", "collected": 3500.5, "expenses": 500.0, "net": 3000.5}
    assert out[1]["net"] == 0.0
    assert all(b["net"] >= 0 for b in out)
    assert sum(b["collected"] for b in out) == pytest.approx(5500.5)
    assert sum(b["expenses"] for b in out) == pytest.approx(5500)


def test_monthly_summary_all_years():
    contributions = [_c("a", "A", 2024, 3, 100), _c("a", "A", 2025, 3, 200)]
    out = ledger.monthly_summary(contributions, [], "all")
    assert out[2]["collected"] == 300.0


def test_year_options_default_to_all_years():
    rows = [_c("a", "A", 2023, 5, 100), _c("a", "A", 2025, 1, 100)]
    options = ledger.year_options(rows, date(2024, 6, 1))
    assert options == ["all", 2025, 2024, 2023]
    assert ledger.year_label(options[0]) == "All years"
    assert ledger.year_label(2024) == "2024"


def test_dashboard_totals_net_is_not_clamped():
    totals = ledger.dashboard_totals(
        [_c("a", "A", 2025, 1, 100)],
        [{"date": "2025-01-01", "amount": 250}],
        [{"id": "a", "is_active": True}, {"id": "b"}, {"id": "c", "is_active": False}],
    )
    assert totals["net"] == -150.0
    assert totals["active_members"] == 2


def test_member_month_status():
    members = [{"id": "a", "name": "A"}, {"id": "b", "name": "B"}, {"id": "c", "name": "C", "is_active": False}]
    contributions = [_c("a", "A", 2025, 6, 2000), _c("b", "B", 2025, 6, 2000, paid=False)]
    out = ledger.member_month_status(members, contributions, 2025, 6)
    assert out == [
        {"Member": "A", "Status": "Paid", "Amount": 2000.0},
        {"Member": "B", "Status": "Pending", "Amount": 0.0},
    ]


# ------------------------
# Filters and matrix
# ------------------------
def test_filter_contributions():
    rows = [
        _c("a", "Mary Njeri", 2025, 1, 2000),
        _c("b", "John Njeri", 2025, 2, 2000, paid=False),
        _c("c", "Kelly", 2024, 1, 2000),
    ]
    assert [r["member_id"] for r in ledger.filter_contributions(rows, search="njeri")] == ["a", "b"]
    assert [r["member_id"] for r in ledger.filter_contributions(rows, status="unpaid")] == ["b"]
    assert [r["member_id"] for r in ledger.filter_contributions(rows, month=1)] == ["a", "c"]
    assert [r["member_id"] for r in ledger.filter_contributions(rows, month="1", year="2024")] == ["c"]


def test_contribution_matrix_cells_and_totals():
    members = [{"id": "a", "name": "Mary"}, {"id": "b", "name": "John"}, {"id": "c", "name": "Idle"}]
    rows = [
        _c("a", "Mary", 2025, 1, 2000),
        _c("a", "Mary", 2025, 2, 1500, paid=False),
        _c("b", "John", 2025, 2, 3000),
    ]
    df = ledger.contribution_matrix(rows, members)

    assert list(df.columns) == ["Member", "Jan 2025", "Feb 2025", "Total"]
    assert list(df["Member"]) == ["Mary", "John"]
    mary = df[df["Member"] == "Mary"].iloc[0]
    assert mary["Jan 2025"] == "KSh 2,000"
    assert mary["Feb 2025"] == "Unpaid"
    assert mary["Total"] == 2000.0
    john = df[df["Member"] == "John"].iloc[0]
    assert john["Jan 2025"] == "-"


def test_contribution_matrix_keeps_searched_member_without_rows():
    members = [{"id": "c", "name": "Idle Member"}]
    df = ledger.contribution_matrix([], members, search="idle")
    assert list(df["Member"]) == ["Idle Member"]
    assert df.iloc[0]["Total"] == 0.0


# ------------------------
# Payloads and bulk CSV
# ------------------------
def test_build_contribution_payloads_uses_first_of_month():
    out = ledger.build_contribution_payloads("m1", 2000, [(2024, 12), (2025, 1)], "food", None, "2025-01-02T00:00:00")
    assert [p["contribution_month"] for p in out] == ["2024-12-01", "2025-01-01"]
    assert all(p["member_id"] == "m1" and p["type"] == "food" and p["project_id"] is None for p in out)


def test_dedupe_payloads_keeps_last():
    a = {"member_id": 1, "contribution_month": "2025-01-01", "amount": 1}
    b = {"member_id": 1, "contribution_month": "2025-01-01", "amount": 2}
    c = {"member_id": 2, "contribution_month": "2025-01-01", "amount": 3}
    assert ledger.dedupe_payloads([a, b, c]) == [b, c]


def test_parse_bulk_csv_skips_incomplete_rows():
    text = (
        "member_name,month,year,amount,type,project_id\n"
        "Mary Njeri,3,2025,2000,,\n"
        "John,Apr,2025,1500,food,\n"
        ",5,2025,2000,,\n"
        "Kelly,13,2025,2000,,\n"
        "Ashley,6,2025,,,\n"
    )
    rows, skipped = ledger.parse_bulk_csv(text)
    assert skipped == 3
    assert rows[0] == {
        "member_name": "Mary Njeri",
        "month": 3,
        "year": 2025,
        "amount": 2000.0,
        "type": "contribution",
        "project_id": None,
    }
    assert rows[1]["month"] == 4
    assert rows[1]["type"] == "food"


def test_parse_bulk_csv_requires_columns():
    with pytest.raises(ValueError, match="amount"):
        ledger.parse_bulk_csv("member_name,month,year\nMary,1,2025\n")
    with pytest.raises(ValueError):
        ledger.parse_bulk_csv("   ")


# ------------------------
# Misc
# ------------------------
def test_duplicate_groups_oldest_first():
    members = [
        {"id": 2, "name": "mary njeri ", "joined_at": "2025-02-01"},
        {"id": 1, "name": "Mary Njeri", "joined_at": "2024-01-01"},
        {"id": 3, "name": "John", "joined_at": "2024-01-01"},
    ]
    groups = ledger.duplicate_groups(members)
    assert len(groups) == 1
    assert [m["id"] for m in groups[0]] == [1, 2]


def test_member_name_fallbacks():
    members = [{"id": 1, "name": "Mary"}]
    assert ledger.member_name(members, 1) == "Mary"
    assert ledger.member_name(members, 9) == "Unknown Member"
    assert ledger.member_name(members, None) == "Anonymous"


def test_format_money():
    assert ledger.format_money(2000) == "KSh 2,000"
    assert ledger.format_money(1234.5) == "KSh 1,234.50"


def test_validators():
    assert ledger.validate_expense("", 0, None) == [
        "Description is required",
        "Amount must be greater than 0",
        "A valid date is required",
    ]
    assert ledger.validate_expense("Tent hire", 1500, date(2025, 1, 1)) == []

    assert ledger.validate_project("T", "D", -1, date(2025, 1, 1), None) == ["Budget cannot be negative"]
    assert "End date cannot be before the start date" in ledger.validate_project(
        "T", "D", 0, date(2025, 2, 1), date(2025, 1, 1)
    )

    errors = ledger.validate_project_contribution(1, 2, 100, date(2025, 1, 2), today=date(2025, 1, 1))
    assert errors == ["Contribution date cannot be in the future"]
    assert ledger.validate_project_contribution(None, None, 0, None) == [
        "Select a project",
        "Select a member",
        "Amount must be greater than 0",
        "A valid date is required",
    ]
