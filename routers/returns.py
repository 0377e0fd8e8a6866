import logging

from fastapi import APIRouter, Depends

import models
from database import get_db
from routers.bookloans import check_transition, set_status
from utils.dependencies import admin_required
from utils.loan_status import RETURNED, VERIFIED_RETURNED
from utils.lookups import get_or_404, loan_views

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/returns", tags=["Returns"])


@router.get("", response_model=list[models.LoanResponse])
async def list_returned_loans(admin=Depends(admin_required), db=Depends(get_db)):
    """Returns reported by members that still need to be checked (Admin only)"""
    cursor = db.bookloans.find({"status": RETURNED}).sort("actual_return_date", -1)
    loans = [loan async for loan in cursor]
    return await loan_views(db, loans)


@router.patch("", response_model=models.LoanResponse)
async def verify_return(action: models.LoanAction, admin=Depends(admin_required), db=Depends(get_db)):
    """Confirm the physical return of a book (Admin only)"""
    loan = await get_or_404(db.bookloans, action.id, "Loan")
    check_transition(loan, VERIFIED_RETURNED)

    await set_status(db, loan, VERIFIED_RETURNED)
    logger.info("Return of loan %s verified by admin %s", loan["id"], admin["id"])
    updated = await db.bookloans.find_one({"id": loan["id"]})
    return (await loan_views(db, [updated]))[0]
