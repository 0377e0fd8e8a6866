import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, ReturnDocument

import config

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(config.MONGO_URL)
db = client[config.MONGO_DB_NAME]


async def get_db():
    """Request-scoped handle on the library database."""
    return db


def utcnow() -> datetime:
    # Mongo hands back naive UTC datetimes, so everything stored is kept naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clean(doc):
    """Drop Mongo's internal ``_id`` so documents can go straight into a response."""
    if doc is None:
        return None
    doc.pop("_id", None)
    return doc


# --- Auto Increment Function ---
async def get_next_sequence(database, name: str, session=None) -> int:
    counter = await database.counters.find_one_and_update(
        {"_id": name},
        {"$inc": {"sequence_value": 1}},
        return_document=ReturnDocument.AFTER,
        upsert=True,
        session=session,
    )
    return counter["sequence_value"]


@asynccontextmanager
async def transaction(database):
    """Group several writes into one unit.

    Yields a client session bound to an open transaction when
    ``MONGO_TRANSACTIONS`` is enabled, otherwise ``None`` so callers can pass
    ``session=`` unconditionally.
    """
    if not config.MONGO_TRANSACTIONS:
        yield None
        return
    async with await database.client.start_session() as session:
        async with session.start_transaction():
            yield session


async def ensure_indexes(database):
    await database.users.create_index([("email", ASCENDING)], unique=True)
    await database.users.create_index([("member_id", ASCENDING)], unique=True, sparse=True)
    await database.users.create_index([("id", ASCENDING)], unique=True)
    await database.books.create_index([("id", ASCENDING)], unique=True)
    await database.bookloans.create_index([("id", ASCENDING)], unique=True)
    await database.bookloans.create_index([("user_id", ASCENDING), ("book_id", ASCENDING), ("status", ASCENDING)])
    await database.wishlist.create_index([("id", ASCENDING)], unique=True)
    await database.wishlist.create_index([("user_id", ASCENDING), ("book_id", ASCENDING)], unique=True)


async def test_connection():
    try:
        await client.admin.command('ping')
        logger.info("MongoDB connection successful")
    except Exception:
        logger.exception("MongoDB connection failed")
        raise
