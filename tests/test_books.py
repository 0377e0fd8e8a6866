import os
from contextlib import asynccontextmanager
from datetime import datetime

import config
from routers import books as books_router
from utils import catalog
from utils.loan_status import APPROVED, PENDING, RETURNED

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def titles(response):
    return [b["title"] for b in response.json()]


def test_list_books_includes_availability(client, make_book):
    make_book(title="Dune", stock=2)
    make_book(title="Emma", author="Jane Austen", stock=0)

    response = client.get("/api/books")
    assert response.status_code == 200
    books = {b["title"]: b for b in response.json()}
    assert books["Dune"]["available"] is True
    assert books["Emma"]["available"] is False
    assert books["Emma"]["loanCount"] == 0


def test_status_available_only_returns_books_in_stock(client, make_book):
    make_book(title="Dune", stock=2)
    make_book(title="Emma", stock=0)
    make_book(title="Ulysses", stock=1)

    available = client.get("/api/books", params={"status": "available"})
    unavailable = client.get("/api/books", params={"status": "unavailable"})

    assert sorted(titles(available)) == ["Dune", "Ulysses"]
    assert all(b["stock"] > 0 for b in available.json())
    assert titles(unavailable) == ["Emma"]


def test_search_matches_title_or_author(client, make_book):
    make_book(title="Persuasion", author="Jane Austen")
    make_book(title="Dune", author="Frank Herbert")

    assert titles(client.get("/api/books", params={"search": "austen"})) == ["Persuasion"]
    assert titles(client.get("/api/books", params={"search": "DUN"})) == ["Dune"]


def test_filter_by_category_and_year(client, make_book):
    make_book(title="Dune", category="Science Fiction", year=1965)
    make_book(title="Emma", category="Classic", year=1815)

    assert titles(client.get("/api/books", params={"category": "classic"})) == ["Emma"]
    assert titles(client.get("/api/books", params={"year": 1965})) == ["Dune"]


def test_sort_alphabetical_and_popular(client, make_book, make_loan, member):
    dune = make_book(title="Dune")
    make_book(title="Antigone")
    emma = make_book(title="Emma")
    make_loan(member, emma)
    make_loan(member, emma, status=RETURNED)
    make_loan(member, dune)

    assert titles(client.get("/api/books", params={"sort": "alphabetical"})) == ["Antigone", "Dune", "Emma"]
    assert titles(client.get("/api/books", params={"sort": "popular"})) == ["Emma", "Dune", "Antigone"]

    popular = client.get("/api/books/popular").json()
    assert [(b["title"], b["loanCount"]) for b in popular] == [("Emma", 2), ("Dune", 1)]


def test_invalid_sort_or_status(client):
    assert client.get("/api/books", params={"sort": "random"}).status_code == 400
    response = client.get("/api/books", params={"status": "borrowed"})
    assert response.status_code == 400
    assert "Invalid status" in response.json()["error"]


def test_get_book(client, make_book):
    book = make_book(title="Dune")
    assert client.get(f"/api/books/{book['id']}").json()["title"] == "Dune"

    missing = client.get("/api/books/999")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Book not found"}


def test_admin_creates_book_with_cover(client, admin, auth_headers):
    response = client.post(
        "/api/books",
        data={"title": "Middlemarch", "author": "George Eliot", "year": "1871", "stock": "4"},
        files={"coverImage": ("cover.png", PNG_BYTES, "image/png")},
        headers=auth_headers(admin),
    )

    assert response.status_code == 201
    book = response.json()
    assert book["stock"] == 4
    assert book["year"] == 1871
    assert book["coverImage"].startswith("/uploads/")
    stored = os.path.join(config.UPLOAD_DIR, book["coverImage"][len("/uploads/"):])
    assert os.path.exists(stored)


def test_new_book_defaults_to_one_copy(client, admin, auth_headers):
    response = client.post("/api/books", data={"title": "Beloved", "author": "Toni Morrison"},
                           headers=auth_headers(admin))
    assert response.status_code == 201
    assert response.json()["stock"] == 1
    assert response.json()["coverImage"] is None


def test_create_book_validation(client, admin, auth_headers):
    missing_title = client.post("/api/books", data={"author": "Anon"}, headers=auth_headers(admin))
    zero_stock = client.post("/api/books", data={"title": "T", "author": "A", "stock": "0"},
                             headers=auth_headers(admin))

    assert missing_title.status_code == 400
    assert missing_title.json() == {"error": "Title is required"}
    assert zero_stock.status_code == 400


def test_members_cannot_manage_books(client, member, auth_headers):
    response = client.post("/api/books", data={"title": "T", "author": "A"}, headers=auth_headers(member))
    assert response.status_code == 403


def test_update_book(client, admin, auth_headers, make_book, find):
    book = make_book(title="Dune", stock=3, category="Science Fiction")
    response = client.put(
        "/api/books",
        data={"id": str(book["id"]), "title": "Dune Messiah", "author": "Frank Herbert", "stock": "5"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    assert response.json()["stock"] == 5
    stored = find("books", {"id": book["id"]})
    assert stored["title"] == "Dune Messiah"
    assert stored["stock"] == 5
    assert stored["category"] == "Science Fiction"

    emptied = client.put(
        "/api/books",
        data={"id": str(book["id"]), "title": "Dune Messiah", "author": "Frank Herbert", "stock": "0"},
        headers=auth_headers(admin),
    )
    assert emptied.status_code == 400


def test_update_missing_book(client, admin, auth_headers):
    response = client.put("/api/books", data={"id": "42", "title": "X", "author": "Y"}, headers=auth_headers(admin))
    assert response.status_code == 404


def test_delete_blocked_while_loan_is_active(client, admin, member, auth_headers, make_book, make_loan):
    book = make_book()
    make_loan(member, book, status=PENDING)

    response = client.delete("/api/books", params={"id": book["id"]}, headers=auth_headers(admin))
    assert response.status_code == 400

    other = make_book(title="Emma")
    make_loan(member, other, status=APPROVED)
    assert client.delete("/api/books", params={"id": other["id"]}, headers=auth_headers(admin)).status_code == 400


def test_delete_book_removes_wishlist_entries(client, admin, member, auth_headers, make_book, make_loan, find):
    book = make_book()
    make_loan(member, book, status=RETURNED)
    client.post("/api/wishlist", json={"bookId": book["id"]}, headers=auth_headers(member))

    response = client.delete("/api/books", params={"id": book["id"]}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert find("books", {"id": book["id"]}) is None
    assert find("wishlist", {"book_id": book["id"]}) is None


def test_sort_books_newest_first():
    books = [
        {"id": 1, "title": "B", "created_at": datetime(2024, 1, 1)},
        {"id": 2, "title": "A", "created_at": datetime(2024, 2, 1)},
        {"id": 3, "title": "C", "created_at": None},
    ]
    assert [b["id"] for b in catalog.sort_books(books)] == [2, 1, 3]
    assert [b["id"] for b in catalog.sort_books(books, sort="oldest")] == [3, 1, 2]


def test_cover_must_be_an_image(client, admin, auth_headers):
    response = client.post(
        "/api/books",
        data={"title": "Middlemarch", "author": "George Eliot"},
        files={"coverImage": ("cover.html", b"<script>alert(1)</script>", "text/html")},
        headers=auth_headers(admin),
    )

    assert response.status_code == 400
    assert "Unsupported file type" in response.json()["error"]
    assert not os.path.exists(config.UPLOAD_DIR) or os.listdir(config.UPLOAD_DIR) == []


def test_cover_extension_follows_content_type(client, admin, auth_headers):
    response = client.post(
        "/api/books",
        data={"title": "Middlemarch", "author": "George Eliot"},
        files={"coverImage": ("cover.html", PNG_BYTES, "image/png")},
        headers=auth_headers(admin),
    )

    assert response.status_code == 201
    assert response.json()["coverImage"].endswith(".png")


def test_cover_size_limit(client, admin, auth_headers, monkeypatch):
    monkeypatch.setattr(config, "MAX_COVER_IMAGE_SIZE", 10)
    response = client.post(
        "/api/books",
        data={"title": "Middlemarch", "author": "George Eliot"},
        files={"coverImage": ("cover.png", PNG_BYTES, "image/png")},
        headers=auth_headers(admin),
    )
    assert response.status_code == 400
    assert "too large" in response.json()["error"]


def test_book_delete_runs_in_one_transaction(client, admin, member, auth_headers, make_book, monkeypatch, find):
    book = make_book()
    client.post("/api/wishlist", json={"bookId": book["id"]}, headers=auth_headers(member))
    opened = []

    @asynccontextmanager
    async def recording_transaction(database):
        opened.append(database)
        yield None

    monkeypatch.setattr(books_router, "transaction", recording_transaction)
    response = client.delete("/api/books", params={"id": book["id"]}, headers=auth_headers(admin))

    assert response.status_code == 200
    assert len(opened) == 1
    assert find("wishlist", {"book_id": book["id"]}) is None
