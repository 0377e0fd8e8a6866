from datetime import datetime
from typing import Dict, Iterable, List, Optional

SORT_OPTIONS = ("newest", "oldest", "alphabetical", "popular")
AVAILABILITY_OPTIONS = ("all", "available", "unavailable")


async def loan_counts(database) -> Dict[int, int]:
    """Number of loans ever requested per book id."""
    counts: Dict[int, int] = {}
    async for loan in database.bookloans.find({}, {"book_id": 1}):
        counts[loan["book_id"]] = counts.get(loan["book_id"], 0) + 1
    return counts


def filter_books(
    books: Iterable[dict],
    search: Optional[str] = None,
    category: Optional[str] = None,
    year: Optional[int] = None,
    status: Optional[str] = None,
) -> List[dict]:
    result = list(books)
    if search:
        needle = search.strip().lower()
        result = [
            b for b in result
            if needle in (b.get("title") or "").lower() or needle in (b.get("author") or "").lower()
        ]
    if category and category != "all":
        wanted = category.lower()
        result = [b for b in result if (b.get("category") or "").lower() == wanted]
    if year is not None:
        result = [b for b in result if b.get("year") == year]
    if status == "available":
        result = [b for b in result if b.get("stock", 0) > 0]
    elif status == "unavailable":
        result = [b for b in result if b.get("stock", 0) <= 0]
    return result


def sort_books(books: List[dict], sort: str = "newest", counts: Optional[Dict[int, int]] = None) -> List[dict]:
    def oldest_first(b):
        return b.get("created_at") or datetime.min, b["id"]

    if sort == "oldest":
        return sorted(books, key=oldest_first)
    if sort == "alphabetical":
        return sorted(books, key=lambda b: (b.get("title") or "").lower())
    if sort == "popular":
        counts = counts or {}
        return sorted(books, key=lambda b: (-counts.get(b["id"], 0), (b.get("title") or "").lower()))
    return sorted(books, key=oldest_first, reverse=True)
