import asyncio

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

import config
from auth import create_access_token, hash_password
from database import get_db, get_next_sequence, utcnow
from main import app
from utils import loan_status
from utils.member_ids import generate_member_id

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def db():
    # Fresh in-memory database for every test
    return AsyncMongoMockClient()["library_test"]


@pytest.fixture
def client(db, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))

    async def override_get_db():
        return db

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: lifespan (real MongoDB ping, indexes) is skipped
    test_client = TestClient(app)
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(role="user", status="active", name=None, email=None, **fields):
        async def insert():
            user_id = await get_next_sequence(db, "userid")
            now = utcnow()
            user = {
                "id": user_id,
                "member_id": await generate_member_id(db),
                "name": name or f"{role.title()} {user_id}",
                "email": email or f"{role}{user_id}@library.org",
                "password": PASSWORD_HASH,
                "role": role,
                "status": status,
                "address": None,
                "phone": None,
                "birth_date": None,
                "profile_image": None,
                "created_at": now,
                "updated_at": now,
                **fields,
            }
            await db.users.insert_one(user)
            return user

        return run(insert())

    return _make


@pytest.fixture
def make_book(db):
    def _make(title="Dune", author="Frank Herbert", stock=3, **fields):
        async def insert():
            now = utcnow()
            book = {
                "id": await get_next_sequence(db, "bookid"),
                "title": title,
                "author": author,
                "publisher": None,
                "year": None,
                "isbn": None,
                "category": None,
                "description": None,
                "cover_image": None,
                "stock": stock,
                "created_at": now,
                "updated_at": now,
                **fields,
            }
            await db.books.insert_one(book)
            return book

        return run(insert())

    return _make


@pytest.fixture
def make_loan(db):
    def _make(user, book, status=loan_status.PENDING, borrow_date=None, actual_return_date=None, **fields):
        async def insert():
            borrowed = borrow_date or utcnow()
            loan = {
                "id": await get_next_sequence(db, "loanid"),
                "user_id": user["id"],
                "book_id": book["id"],
                "borrow_date": borrowed,
                "return_date": loan_status.due_date_for(borrowed),
                "actual_return_date": actual_return_date,
                "status": status,
                "notes": None,
                "created_at": borrowed,
                "updated_at": actual_return_date or borrowed,
                **fields,
            }
            await db.bookloans.insert_one(loan)
            return loan

        return run(insert())

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": str(user["id"]), "role": user["role"]})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", name="Head Librarian")


@pytest.fixture
def member(make_user):
    return make_user(name="Ada Reader")


@pytest.fixture
def find(db):
    """Synchronous ``find_one`` for asserting on stored documents."""
    def _find(collection, query):
        return run(db[collection].find_one(query))

    return _find