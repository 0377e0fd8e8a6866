import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

import config
import models
from database import get_db, get_next_sequence, transaction, utcnow
from utils import catalog, uploads
from utils.dependencies import admin_required
from utils.loan_status import ACTIVE_STATUSES
from utils.lookups import book_view, get_or_404

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/books", tags=["Books"])

POPULAR_LIMIT = 5


def _parse_int(value: Optional[str], error: str) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=error)


def _parse_stock(value: Optional[str], minimum: int) -> Optional[int]:
    stock = _parse_int(value, f"Stock must be a whole number of at least {minimum}")
    if stock is not None and stock < minimum:
        raise HTTPException(status_code=400, detail=f"Stock must be a whole number of at least {minimum}")
    return stock


def _require(value: Optional[str], label: str) -> str:
    if not value or not value.strip():
        raise HTTPException(status_code=400, detail=f"{label} is required")
    return value.strip()


async def _store_cover(cover_image: Optional[UploadFile]) -> Optional[str]:
    if cover_image is None or not cover_image.filename:
        return None
    data = await cover_image.read()
    problem = uploads.check_image(cover_image.content_type, data, config.MAX_COVER_IMAGE_SIZE)
    if problem:
        raise HTTPException(status_code=400, detail=problem)
    try:
        return uploads.save_bytes(data, cover_image.content_type)
    except OSError:
        logger.exception("Failed to store cover image")
        raise HTTPException(status_code=500, detail="Failed to upload the book cover image")


@router.get("", response_model=list[models.BookResponse])
async def list_books(
    search: Optional[str] = None,
    category: Optional[str] = None,
    year: Optional[int] = None,
    availability: Optional[str] = Query(None, alias="status"),
    sort: str = "newest",
    db=Depends(get_db),
):
    if sort not in catalog.SORT_OPTIONS:
        raise HTTPException(status_code=400, detail=f"Invalid sort. Must be one of: {list(catalog.SORT_OPTIONS)}")
    if availability is not None and availability not in catalog.AVAILABILITY_OPTIONS:
        raise HTTPException(
            status_code=400, detail=f"Invalid status. Must be one of: {list(catalog.AVAILABILITY_OPTIONS)}"
        )

    books = [b async for b in db.books.find()]
    counts = await catalog.loan_counts(db)
    books = catalog.filter_books(books, search=search, category=category, year=year, status=availability)
    books = catalog.sort_books(books, sort=sort, counts=counts)
    return [models.BookResponse(**book_view(b), loan_count=counts.get(b["id"], 0)) for b in books]


@router.get("/popular", response_model=list[models.BookResponse])
async def popular_books(db=Depends(get_db)):
    """Most borrowed titles"""
    counts = await catalog.loan_counts(db)
    books = [b async for b in db.books.find({"id": {"$in": list(counts)}})]
    books = catalog.sort_books(books, sort="popular", counts=counts)[:POPULAR_LIMIT]
    return [models.BookResponse(**book_view(b), loan_count=counts[b["id"]]) for b in books]


@router.get("/{book_id}", response_model=models.BookResponse)
async def get_book(book_id: int, db=Depends(get_db)):
    book = await get_or_404(db.books, book_id, "Book")
    return models.BookResponse(**book_view(book))


@router.post("", response_model=models.BookResponse, status_code=status.HTTP_201_CREATED)
async def add_book(
    title: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    publisher: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    isbn: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    admin=Depends(admin_required),
    db=Depends(get_db),
):
    now = utcnow()
    new_book = {
        "title": _require(title, "Title"),
        "author": _require(author, "Author"),
        "publisher": publisher or None,
        "year": _parse_int(year, "Invalid publication year"),
        "isbn": isbn or None,
        "category": category or None,
        "description": description or None,
        "stock": _parse_stock(stock, minimum=1) or 1,
    }
    new_book["cover_image"] = await _store_cover(cover_image)
    new_book.update({
        "id": await get_next_sequence(db, "bookid"),
        "created_at": now,
        "updated_at": now,
    })

    await db.books.insert_one(new_book)
    logger.info("Book %s '%s' added by admin %s", new_book["id"], new_book["title"], admin["id"])
    return models.BookResponse(**book_view(new_book))


@router.put("", response_model=models.BookResponse)
async def update_book(
    id: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    publisher: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    isbn: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    admin=Depends(admin_required),
    db=Depends(get_db),
):
    book_id = _parse_int(id, "Invalid book ID")
    if book_id is None:
        raise HTTPException(status_code=400, detail="Book ID is required")
    book = await get_or_404(db.books, book_id, "Book")

    changes = {
        "title": _require(title, "Title"),
        "author": _require(author, "Author"),
        "publisher": publisher or None,
        "year": _parse_int(year, "Invalid publication year"),
        "isbn": isbn or None,
        "category": category or book.get("category"),
        "description": description or book.get("description"),
        "updated_at": utcnow(),
    }
    new_stock = _parse_stock(stock, minimum=1)
    if new_stock is not None:
        changes["stock"] = new_stock
    cover = await _store_cover(cover_image)
    if cover:
        changes["cover_image"] = cover

    await db.books.update_one({"id": book_id}, {"$set": changes})
    logger.info("Book %s updated by admin %s", book_id, admin["id"])
    return models.BookResponse(**book_view({**book, **changes}))


@router.delete("")
async def delete_book(id: int, admin=Depends(admin_required), db=Depends(get_db)):
    """Delete a book unless a loan on it is still pending or out"""
    book = await get_or_404(db.books, id, "Book")

    active_loans = await db.bookloans.count_documents({"book_id": id, "status": {"$in": list(ACTIVE_STATUSES)}})
    if active_loans:
        raise HTTPException(status_code=400, detail="Book cannot be deleted while it has pending or active loans")

    async with transaction(db) as session:
        await db.books.delete_one({"id": id}, session=session)
        await db.wishlist.delete_many({"book_id": id}, session=session)
    logger.info("Book %s '%s' deleted by admin %s", id, book["title"], admin["id"])
    return {"success": True, "message": "Book deleted successfully"}
