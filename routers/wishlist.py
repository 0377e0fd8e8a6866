import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pymongo.errors import DuplicateKeyError

import models
from database import get_db, get_next_sequence, utcnow
from utils.dependencies import get_current_user
from utils.lookups import get_or_404, index_by_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wishlist", tags=["Wishlist"])

PLACEHOLDER_COVER = "/placeholder-book.jpg"


def wishlist_item(entry: dict, book: dict) -> models.WishlistItem:
    return models.WishlistItem(
        id=entry["id"],
        book_id=entry["book_id"],
        title=book.get("title", "N/A"),
        author=book.get("author", "N/A"),
        cover_url=book.get("cover_image") or PLACEHOLDER_COVER,
    )


@router.get("", response_model=list[models.WishlistItem])
async def get_wishlist(current_user=Depends(get_current_user), db=Depends(get_db)):
    entries = [e async for e in db.wishlist.find({"user_id": current_user["id"]}).sort("created_at", -1)]
    books = await index_by_id(db.books, [e["book_id"] for e in entries])
    return [wishlist_item(e, books.get(e["book_id"], {})) for e in entries]


@router.post("", response_model=models.WishlistItem, status_code=status.HTTP_201_CREATED)
async def add_to_wishlist(item: models.WishlistCreate, current_user=Depends(get_current_user), db=Depends(get_db)):
    book = await get_or_404(db.books, item.book_id, "Book")

    if await db.wishlist.find_one({"user_id": current_user["id"], "book_id": book["id"]}):
        raise HTTPException(status_code=400, detail="Book is already in your wishlist")

    entry = {
        "id": await get_next_sequence(db, "wishlistid"),
        "user_id": current_user["id"],
        "book_id": book["id"],
        "created_at": utcnow(),
    }
    try:
        await db.wishlist.insert_one(entry)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Book is already in your wishlist")
    logger.info("User %s added book %s to wishlist", current_user["id"], book["id"])
    return wishlist_item(entry, book)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_from_wishlist(item_id: int, current_user=Depends(get_current_user), db=Depends(get_db)):
    result = await db.wishlist.delete_one({"id": item_id, "user_id": current_user["id"]})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Wishlist item not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
