import logging
from datetime import datetime, time, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from jose import jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

import config
import models
from database import clean, get_db, get_next_sequence, utcnow
from utils.dependencies import admin_required, get_current_user
from utils.member_ids import generate_member_id, migrate_member_ids

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
router = APIRouter(prefix="/api", tags=["Auth"])

SEED_PASSWORD = "password123"
SEED_BOOKS = [
    {"title": "To Kill a Mockingbird", "author": "Harper Lee", "publisher": "J. B. Lippincott & Co.",
     "year": 1960, "isbn": "9780446310789", "stock": 5},
    {"title": "1984", "author": "George Orwell", "publisher": "Secker & Warburg",
     "year": 1949, "isbn": "9780451524935", "stock": 3},
    {"title": "The Great Gatsby", "author": "F. Scott Fitzgerald", "publisher": "Charles Scribner's Sons",
     "year": 1925, "isbn": "9780743273565", "stock": 4},
    {"title": "Pride and Prejudice", "author": "Jane Austen", "publisher": "T. Egerton, Whitehall",
     "year": 1813, "isbn": "9780141439518", "stock": 2},
]


def hash_password(password: str):
    return pwd_context.hash(password)


def verify_password(plain, hashed):
    return pwd_context.verify(plain, hashed)


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def as_datetime(value):
    """Mongo can't store bare dates."""
    return datetime.combine(value, time.min) if value else None


def public_user(user: dict) -> models.UserResponse:
    user = dict(user)
    user.pop("password", None)
    return models.UserResponse(**clean(user))


async def create_user(db, data: models.UserCreate) -> dict:
    if await db.users.find_one({"email": data.email}):
        raise HTTPException(status_code=400, detail="User with this email already exists")

    now = utcnow()
    user = {
        **data.model_dump(exclude={"password", "birth_date"}),
        "id": await get_next_sequence(db, "userid"),
        "member_id": await generate_member_id(db),
        "password": hash_password(data.password),
        "birth_date": as_datetime(data.birth_date),
        "status": "active",
        "profile_image": None,
        "created_at": now,
        "updated_at": now,
    }
    try:
        await db.users.insert_one(user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="The email or member ID is already taken")
    logger.info("Created %s account %s (%s)", user["role"], user["id"], user["member_id"])
    return user


@router.post("/register", response_model=models.UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user: models.UserCreate, db=Depends(get_db)):
    created = await create_user(db, user)
    return public_user(created)


@router.post("/auth/login", response_model=models.Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    user = await db.users.find_one({
        "$or": [{"email": form_data.username}, {"member_id": form_data.username}]
    })

    if not user or not verify_password(form_data.password, user["password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.get("status", "active") != "active":
        raise HTTPException(status_code=403, detail="Account is inactive")

    token = create_access_token(
        {"sub": str(user["id"]), "role": user["role"]},
        timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    logger.info("User %s logged in", user["id"])
    return models.Token(access_token=token)


@router.get("/auth/me", response_model=models.UserResponse)
async def get_current_user_info(current_user: dict = Depends(get_current_user)):
    """Get current user information"""
    return public_user(current_user)


async def _upsert_seed_user(db, email: str, name: str, role: str) -> dict:
    existing = await db.users.find_one({"email": email})
    if existing:
        await db.users.update_one(
            {"id": existing["id"]},
            {"$set": {
                "name": name,
                "role": role,
                "password": hash_password(SEED_PASSWORD),
                "member_id": existing.get("member_id") or await generate_member_id(db),
                "updated_at": utcnow(),
            }},
        )
        logger.info("Updated seed %s account %s", role, email)
        return await db.users.find_one({"id": existing["id"]})
    return await create_user(db, models.UserCreate(name=name, email=email, password=SEED_PASSWORD, role=role))


@router.get("/seed")
async def seed(db=Depends(get_db)):
    """Create test accounts and sample books (development only)"""
    if config.is_production():
        raise HTTPException(status_code=403, detail="This endpoint is not available in production")

    admin = await _upsert_seed_user(db, "admin@test.com", "Admin Test", "admin")
    regular = await _upsert_seed_user(db, "user@test.com", "User Test", "user")

    created_books = 0
    if await db.books.count_documents({}) == 0:
        for book in SEED_BOOKS:
            now = utcnow()
            await db.books.insert_one({
                **book,
                "id": await get_next_sequence(db, "bookid"),
                "category": None,
                "description": None,
                "cover_image": None,
                "created_at": now,
                "updated_at": now,
            })
            created_books += 1
        logger.info("Seeded %d books", created_books)

    return {
        "message": "Seed completed successfully",
        "admin": {"id": admin["id"], "email": admin["email"], "memberId": admin["member_id"]},
        "user": {"id": regular["id"], "email": regular["email"], "memberId": regular["member_id"]},
        "books": created_books if created_books else "No new books created",
    }


@router.get("/migrate-member-ids")
async def migrate_legacy_member_ids(admin=Depends(admin_required), db=Depends(get_db)):
    """Rewrite legacy M#### member IDs to the A#### format (Admin only)"""
    count = await migrate_member_ids(db)
    logger.info("Admin %s migrated %d member IDs", admin["id"], count)
    return {
        "success": True,
        "message": f"Successfully migrated {count} member IDs to new format",
        "migratedCount": count,
    }
