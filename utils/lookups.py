from datetime import date
from typing import Dict, Iterable, Optional

from fastapi import HTTPException

import models
from utils import loan_status


async def get_or_404(collection, doc_id: int, label: str, session=None) -> dict:
    doc = await collection.find_one({"id": doc_id}, session=session)
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


async def index_by_id(collection, ids: Optional[Iterable[int]] = None) -> Dict[int, dict]:
    query = {"id": {"$in": list(set(ids))}} if ids is not None else {}
    return {doc["id"]: doc async for doc in collection.find(query)}


def book_view(book: dict) -> dict:
    return {**book, "available": book.get("stock", 0) > 0}


def loan_view(loan: dict, book: Optional[dict] = None, user: Optional[dict] = None,
              today: Optional[date] = None) -> models.LoanResponse:
    data = {k: v for k, v in loan.items() if k != "_id"}
    data["status"] = loan_status.effective_status(loan, today)
    data["late_days"] = loan_status.late_days(loan, today)
    data["fine"] = loan_status.compute_fine(loan, today)
    if book:
        data["book"] = models.BookSummary(**{k: v for k, v in book.items() if k != "_id"})
    if user:
        data["user"] = models.UserSummary(**{k: v for k, v in user.items() if k not in ("_id", "password")})
    return models.LoanResponse(**data)


async def loan_views(db, loans: list, today: Optional[date] = None) -> list:
    books = await index_by_id(db.books, [loan["book_id"] for loan in loans])
    users = await index_by_id(db.users, [loan["user_id"] for loan in loans])
    return [loan_view(loan, books.get(loan["book_id"]), users.get(loan["user_id"]), today) for loan in loans]
