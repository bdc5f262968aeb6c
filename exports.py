# exports.py
#
# CSV (pandas) and PDF (reportlab) downloads for the contribution and
# expense views. Every function returns bytes for st.download_button.

import csv
import io

from datetime import date, datetime
from typing import Dict, List, Optional
from xml.sax.saxutils import escape

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

import ledger

CONTRIBUTION_COLUMNS = ["Member", "Month", "Year", "Type", "Amount", "Status"]
EXPENSE_COLUMNS = ["Date", "Description", "Member", "Project", "Approved By", "Status", "Amount"]

_HEADER_BLUE = colors.Color(66 / 255, 139 / 255, 202 / 255)


def export_filename(prefix: str, ext: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{prefix}-{today.isoformat()}.{ext}"


# ------------------------
# Frames
# ------------------------
def contributions_frame(rows: List[Dict]) -> pd.DataFrame:
    records = [
        {
            "Member": r.get("member_name") or "Unknown",
            "Month": ledger.MONTH_NAMES[int(r["month"]) - 1],
            "Year": int(r["year"]),
            "Type": r.get("type") or "contribution",
            "Amount": float(r.get("amount") or 0),
            "Status": "Paid" if r.get("paid") else "Unpaid",
        }
        for r in rows
    ]
    return pd.DataFrame(records, columns=CONTRIBUTION_COLUMNS)


def expenses_frame(rows: List[Dict]) -> pd.DataFrame:
    records = [
        {
            "Date": r.get("date") or "",
            "Description": r.get("description") or "",
            "Member": r.get("member_name") or "",
            "Project": r.get("project_title") or "",
            "Approved By": r.get("approved_by") or "",
            "Status": r.get("status") or "Pending",
            "Amount": float(r.get("amount") or 0),
        }
        for r in rows
    ]
    return pd.DataFrame(records, columns=EXPENSE_COLUMNS)


# ------------------------
# CSV
# ------------------------
def _csv_bytes(df: pd.DataFrame) -> bytes:
    # Every field quoted, embedded quotes doubled (RFC 4180)
    return df.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\r\n").encode("utf-8")


def contributions_csv(rows: List[Dict]) -> bytes:
    return _csv_bytes(contributions_frame(rows))


def expenses_csv(rows: List[Dict]) -> bytes:
    return _csv_bytes(expenses_frame(rows))


# ------------------------
# PDF
# ------------------------
def table_pdf(title: str, df: pd.DataFrame, generated_on: Optional[datetime] = None) -> bytes:
    generated_on = generated_on or datetime.now()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        rightMargin=28,
        leftMargin=28,
        topMargin=36,
        bottomMargin=28,
        title=title,
    )
    styles = getSampleStyleSheet()
    elements = [
        Paragraph(escape(title), styles["Title"]),
        Paragraph(f"Generated on: {generated_on.strftime('%Y-%m-%d %H:%M')}", styles["Normal"]),
        Spacer(1, 12),
    ]

    if df.empty:
        elements.append(Paragraph("No records", styles["Normal"]))
    else:
        cell = styles["BodyText"]
        cell.fontSize = 8
        cell.leading = 10
        data = [[str(c) for c in df.columns]]
        for rec in df.itertuples(index=False):
            data.append([Paragraph(escape(str(v)), cell) for v in rec])
        t = Table(data, repeatRows=1)
        t.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), _HEADER_BLUE),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("FONTSIZE", (0, 0), (-1, 0), 8),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.whitesmoke]),
                ]
            )
        )
        elements.append(t)

    doc.build(elements)
    return buffer.getvalue()


def contributions_pdf(matrix: pd.DataFrame, generated_on: Optional[datetime] = None) -> bytes:
    df = matrix.copy()
    if "Total" in df.columns:
        df["Total"] = df["Total"].map(ledger.format_money)
    return table_pdf("Member Contributions Report", df, generated_on)


def expenses_pdf(rows: List[Dict], generated_on: Optional[datetime] = None) -> bytes:
    df = expenses_frame(rows)
    df["Amount"] = df["Amount"].map(ledger.format_money)
    return table_pdf("Expenses Report", df, generated_on)
