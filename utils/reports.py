"""Read-side aggregation of loan records for reports, dashboards and exports."""
import calendar
import csv
import io
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from openpyxl import Workbook

from utils import loan_status

EXPORT_COLUMNS = [
    ("No", 5),
    ("Member ID", 12),
    ("Member Name", 20),
    ("Member Email", 25),
    ("Book Title", 30),
    ("Book Author", 20),
    ("Book Publisher", 20),
    ("ISBN", 15),
    ("Borrow Date", 12),
    ("Due Date", 12),
    ("Return Date", 12),
    ("Status", 18),
    ("Late Days", 10),
    ("Fine", 15),
    ("Notes", 20),
]


def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _in_month(value, year: int, month: int) -> bool:
    return value is not None and value.year == year and value.month == month


def _as_date(value):
    return value.date() if isinstance(value, datetime) else value


def filter_loans(
    loans: Iterable[dict],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = None,
    member_id: Optional[int] = None,
    today: Optional[date] = None,
) -> List[dict]:
    result = []
    for loan in loans:
        borrowed = _as_date(loan["borrow_date"])
        if start_date and borrowed < start_date:
            continue
        if end_date and borrowed > end_date:
            continue
        if status and status != "all" and loan_status.effective_status(loan, today) != status:
            continue
        if member_id is not None and loan["user_id"] != member_id:
            continue
        result.append(loan)
    return result


def build_rows(loans: Iterable[dict], users: Dict[int, dict], books: Dict[int, dict],
               today: Optional[date] = None) -> List[dict]:
    rows = []
    for loan in loans:
        user = users.get(loan["user_id"], {})
        book = books.get(loan["book_id"], {})
        rows.append({
            "id": loan["id"],
            "member_id": loan["user_id"],
            "member_code": user.get("member_id"),
            "member_name": user.get("name", "Unknown"),
            "member_email": user.get("email"),
            "book_id": loan["book_id"],
            "book_title": book.get("title", "Unknown"),
            "book_author": book.get("author"),
            "book_publisher": book.get("publisher"),
            "isbn": book.get("isbn"),
            "borrow_date": loan["borrow_date"],
            "return_date": loan["return_date"],
            "actual_return_date": loan.get("actual_return_date"),
            "status": loan_status.effective_status(loan, today),
            "late_days": loan_status.late_days(loan, today),
            "fine": loan_status.compute_fine(loan, today),
            "notes": loan.get("notes") or "",
        })
    return rows


def month_bucket(loans: List[dict], year: int, month: int) -> dict:
    return {
        "borrowings": sum(1 for loan in loans if _in_month(loan.get("borrow_date"), year, month)),
        "returns": sum(1 for loan in loans if _in_month(loan.get("actual_return_date"), year, month)),
        "late": sum(
            1 for loan in loans
            if _in_month(loan.get("actual_return_date"), year, month) and loan_status.returned_late(loan)
        ),
    }


def monthly_statistics(loans: Iterable[dict], year: int) -> List[dict]:
    loans = list(loans)
    return [
        {"name": calendar.month_abbr[month], "month": f"{year}-{month:02d}", **month_bucket(loans, year, month)}
        for month in range(1, 13)
    ]


def monthly_trends(loans: Iterable[dict], today: date, months: int = 6) -> List[dict]:
    """Borrow/return/late counts for the last ``months`` months, oldest first."""
    loans = list(loans)
    trends = []
    for offset in range(months - 1, -1, -1):
        year, month = shift_month(today.year, today.month, -offset)
        trends.append({
            "name": calendar.month_abbr[month],
            "month": f"{year}-{month:02d}",
            **month_bucket(loans, year, month),
        })
    return trends


def member_trends(users: Iterable[dict], today: date, months: int = 6) -> List[dict]:
    members = [u for u in users if u.get("role") == "user"]
    trends = []
    for offset in range(months - 1, -1, -1):
        year, month = shift_month(today.year, today.month, -offset)
        trends.append({
            "name": calendar.month_abbr[month],
            "month": f"{year}-{month:02d}",
            "newMembers": sum(1 for u in members if _in_month(u.get("created_at"), year, month)),
        })
    return trends


def summarize(rows: List[dict]) -> dict:
    return {
        "total_loans": len(rows),
        "active_loans": sum(1 for r in rows if r["status"] == loan_status.APPROVED),
        "overdue_loans": sum(1 for r in rows if r["status"] == loan_status.LATE),
        "returned_loans": sum(
            1 for r in rows if r["status"] in (loan_status.RETURNED, loan_status.VERIFIED_RETURNED)
        ),
        "total_fines": sum(r["fine"] for r in rows),
        "unique_members": len({r["member_id"] for r in rows}),
        "unique_books": len({r["book_id"] for r in rows}),
    }


def _fmt(value) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def export_rows(rows: List[dict]) -> List[list]:
    out = []
    for index, r in enumerate(rows, start=1):
        out.append([
            index,
            r["member_code"] or f"USER-{r['member_id']}",
            r["member_name"],
            r["member_email"] or "",
            r["book_title"],
            r["book_author"] or "",
            r["book_publisher"] or "",
            r["isbn"] or "",
            _fmt(r["borrow_date"]),
            _fmt(r["return_date"]),
            _fmt(r["actual_return_date"]),
            r["status"],
            r["late_days"],
            r["fine"],
            r["notes"],
        ])
    return out


def to_xlsx(rows: List[dict]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Library Reports"
    ws.append([name for name, _ in EXPORT_COLUMNS])
    for line in export_rows(rows):
        ws.append(line)
    for idx, (_, width) in enumerate(EXPORT_COLUMNS, start=1):
        ws.column_dimensions[ws.cell(row=1, column=idx).column_letter].width = width
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def to_csv(rows: List[dict]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([name for name, _ in EXPORT_COLUMNS])
    writer.writerows(export_rows(rows))
    return output.getvalue()
