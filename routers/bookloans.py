import logging
from datetime import timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

import models
from database import get_db, get_next_sequence, transaction, utcnow
from utils import loan_status
from utils.dependencies import admin_required, get_current_user
from utils.loan_status import APPROVED, CANCELLED, PENDING, RETURNED, InvalidTransition
from utils.lookups import get_or_404, loan_view, loan_views

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookloans", tags=["Book Loans"])


def check_transition(loan: dict, target: str):
    try:
        loan_status.ensure_transition(loan_status.effective_status(loan), target)
    except InvalidTransition as e:
        logger.warning("Rejected transition for loan %s: %s", loan["id"], e)
        raise HTTPException(status_code=400, detail=str(e))


async def set_status(db, loan: dict, target: str, extra: Optional[dict] = None, session=None):
    """Move ``loan`` to ``target`` only if nobody changed it in the meantime."""
    result = await db.bookloans.update_one(
        {"id": loan["id"], "status": loan["status"]},
        {"$set": {"status": target, "updated_at": utcnow(), **(extra or {})}},
        session=session,
    )
    if result.modified_count == 0:
        raise HTTPException(status_code=409, detail="Loan was modified by another request, please try again")


@router.get("", response_model=list[models.LoanResponse])
async def list_loans(
    user_id: Optional[int] = Query(None, alias="userId"),
    current_user=Depends(get_current_user),
    db=Depends(get_db),
):
    """Loans of one member (own loans by default); admins may list everyone's"""
    is_admin = current_user.get("role") == "admin"
    if user_id is not None and user_id != current_user["id"] and not is_admin:
        raise HTTPException(status_code=403, detail="Unauthorized to access these loans")
    if user_id is None and not is_admin:
        user_id = current_user["id"]

    query = {"user_id": user_id} if user_id is not None else {}
    loans = [loan async for loan in db.bookloans.find(query).sort([("created_at", -1), ("id", -1)])]
    return await loan_views(db, loans)


@router.post("", response_model=models.LoanResponse, status_code=status.HTTP_201_CREATED)
async def request_loan(request: models.LoanCreate, current_user=Depends(get_current_user), db=Depends(get_db)):
    book = await get_or_404(db.books, request.book_id, "Book")

    existing = await db.bookloans.find_one({
        "user_id": current_user["id"],
        "book_id": book["id"],
        "status": {"$in": list(loan_status.ACTIVE_STATUSES)},
    })
    if existing:
        raise HTTPException(status_code=400, detail="You already have an active loan for this book")

    if book.get("stock", 0) <= 0:
        raise HTTPException(status_code=400, detail="Book is out of stock")

    now = utcnow()
    borrow_date = request.borrow_date or now
    if borrow_date.tzinfo is not None:
        borrow_date = borrow_date.astimezone(timezone.utc).replace(tzinfo=None)
    loan = {
        "id": await get_next_sequence(db, "loanid"),
        "user_id": current_user["id"],
        "book_id": book["id"],
        "borrow_date": borrow_date,
        "return_date": loan_status.due_date_for(borrow_date),
        "actual_return_date": None,
        "status": PENDING,
        "notes": request.notes,
        "created_at": now,
        "updated_at": now,
    }
    await db.bookloans.insert_one(loan)
    logger.info("Loan %s requested by user %s for book %s", loan["id"], current_user["id"], book["id"])
    return loan_view(loan, book, current_user)


@router.patch("", response_model=models.LoanResponse)
async def update_loan_status(update: models.LoanStatusUpdate, admin=Depends(admin_required), db=Depends(get_db)):
    """Approve or reject a pending request (Admin only)"""
    loan = await get_or_404(db.bookloans, update.id, "Loan")
    check_transition(loan, update.status)

    async with transaction(db) as session:
        await set_status(db, loan, update.status, session=session)
        if update.status == APPROVED:
            # Approval takes a copy off the shelf
            taken = await db.books.update_one(
                {"id": loan["book_id"], "stock": {"$gt": 0}},
                {"$inc": {"stock": -1}, "$set": {"updated_at": utcnow()}},
                session=session,
            )
            if taken.modified_count == 0:
                await db.bookloans.update_one(
                    {"id": loan["id"]},
                    {"$set": {"status": PENDING, "updated_at": loan.get("updated_at")}},
                    session=session,
                )
                raise HTTPException(status_code=400, detail="Book is out of stock")

    logger.info("Loan %s %s by admin %s", loan["id"], update.status.lower(), admin["id"])
    updated = await db.bookloans.find_one({"id": loan["id"]})
    return (await loan_views(db, [updated]))[0]


@router.post("/return", response_model=models.LoanResponse)
async def return_loan(action: models.LoanAction, current_user=Depends(get_current_user), db=Depends(get_db)):
    """Member reports a borrowed book as handed back"""
    loan = await get_or_404(db.bookloans, action.id, "Loan")
    if loan["user_id"] != current_user["id"]:
        raise HTTPException(status_code=403, detail="You are not authorized to return this book")
    check_transition(loan, RETURNED)

    async with transaction(db) as session:
        await set_status(db, loan, RETURNED, {"actual_return_date": utcnow()}, session=session)
        await db.books.update_one(
            {"id": loan["book_id"]},
            {"$inc": {"stock": 1}, "$set": {"updated_at": utcnow()}},
            session=session,
        )

    logger.info("Loan %s returned by user %s", loan["id"], current_user["id"])
    updated = await db.bookloans.find_one({"id": loan["id"]})
    return (await loan_views(db, [updated]))[0]


@router.patch("/cancel")
async def cancel_loan(action: models.LoanAction, current_user=Depends(get_current_user), db=Depends(get_db)):
    loan = await get_or_404(db.bookloans, action.id, "Loan")
    if loan["user_id"] != current_user["id"]:
        raise HTTPException(status_code=403, detail="Not allowed to cancel this loan")
    if loan["status"] != PENDING:
        raise HTTPException(status_code=400, detail="Only pending loan requests can be cancelled")

    await set_status(db, loan, CANCELLED)
    logger.info("Loan %s cancelled by user %s", loan["id"], current_user["id"])
    return {"message": "Loan request cancelled", "id": loan["id"], "status": CANCELLED}
