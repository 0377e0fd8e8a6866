import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

import config
import models
from database import get_db
from utils import catalog, loan_status, reports
from utils.dependencies import admin_required
from utils.lookups import book_view, index_by_id, loan_views

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Reports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DASHBOARD_LIMIT = 5


async def build_report(db, filters: models.ReportFilters, today: Optional[date] = None):
    today = today or date.today()
    loans = [loan async for loan in db.bookloans.find().sort("borrow_date", -1)]
    loans = reports.filter_loans(
        loans,
        start_date=filters.start_date,
        end_date=filters.end_date,
        status=filters.status,
        member_id=filters.member_id,
        today=today,
    )
    users = await index_by_id(db.users, [loan["user_id"] for loan in loans])
    books = await index_by_id(db.books, [loan["book_id"] for loan in loans])
    return loans, reports.build_rows(loans, users, books, today)


@router.get("/reports", response_model=models.ReportResponse)
async def get_report(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    status: Optional[str] = None,
    member_id: Optional[int] = Query(None, alias="memberId"),
    year: Optional[int] = None,
    admin=Depends(admin_required),
    db=Depends(get_db),
):
    """Loan report with fines and monthly statistics (Admin only)"""
    if status and status != "all" and status not in loan_status.ALL_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status. Must be one of: {list(loan_status.ALL_STATUSES)}")

    filters = models.ReportFilters(
        start_date=start_date, end_date=end_date, status=status, member_id=member_id, year=year
    )
    today = date.today()
    loans, rows = await build_report(db, filters, today)
    return {
        "loans": rows,
        "statistics": {
            "monthly": reports.monthly_statistics(loans, year or today.year),
            "summary": reports.summarize(rows),
        },
    }


@router.post("/reports/export")
async def export_report(request: models.ReportExportRequest, admin=Depends(admin_required), db=Depends(get_db)):
    """Download the filtered loan report as an Excel or CSV file (Admin only)"""
    fmt = request.format.lower()
    if fmt not in ("excel", "xlsx", "csv"):
        raise HTTPException(status_code=400, detail="Invalid format. Use 'excel' or 'csv'.")

    _, rows = await build_report(db, request.filters)
    stamp = date.today().isoformat()
    logger.info("Admin %s exported %d report rows as %s", admin["id"], len(rows), fmt)

    if fmt == "csv":
        return Response(
            content=reports.to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="library_report_{stamp}.csv"'},
        )
    return Response(
        content=reports.to_xlsx(rows),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="library_report_{stamp}.xlsx"'},
    )


@router.get("/stats")
async def get_dashboard_stats(admin=Depends(admin_required), db=Depends(get_db)):
    """Dashboard summary, trends, recent activity, popular and low stock books (Admin only)"""
    today = date.today()
    loans = [loan async for loan in db.bookloans.find()]
    users = [u async for u in db.users.find({}, {"role": 1, "created_at": 1})]

    recent = sorted(loans, key=lambda loan: (loan["updated_at"], loan["id"]), reverse=True)[:DASHBOARD_LIMIT]

    counts = await catalog.loan_counts(db)
    books = [b async for b in db.books.find()]
    popular = [b for b in catalog.sort_books(books, sort="popular", counts=counts) if counts.get(b["id"])]
    low_stock = sorted(
        (b for b in books if b.get("stock", 0) < config.LOW_STOCK_THRESHOLD),
        key=lambda b: (b.get("stock", 0), b["id"]),
    )

    return {
        "summary": {
            "totalBooks": len(books),
            "activeBorrowedBooks": sum(
                1 for loan in loans
                if loan["status"] in (loan_status.APPROVED, loan_status.LATE) and not loan.get("actual_return_date")
            ),
            "totalMembers": sum(1 for u in users if u.get("role") == "user"),
            "overdueBooks": sum(1 for loan in loans if loan_status.is_overdue(loan, today)),
            "pendingRequests": sum(1 for loan in loans if loan["status"] == loan_status.PENDING),
        },
        "monthlyTrends": reports.monthly_trends(loans, today),
        "memberTrends": reports.member_trends(users, today),
        "recentActivities": await loan_views(db, recent, today),
        "popularBooks": [
            models.BookResponse(**book_view(b), loan_count=counts[b["id"]]) for b in popular[:DASHBOARD_LIMIT]
        ],
        "lowStockBooks": [models.BookResponse(**book_view(b)) for b in low_stock[:DASHBOARD_LIMIT]],
    }
