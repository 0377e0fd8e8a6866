import logging
import re

from pymongo import ReturnDocument

logger = logging.getLogger(__name__)

MEMBER_ID_PREFIX = "A"
LEGACY_PREFIX = "M"
COUNTER_NAME = "memberid"


def format_member_id(number: int, prefix: str = MEMBER_ID_PREFIX) -> str:
    return f"{prefix}{number:04d}"


def parse_member_number(member_id, prefix: str = MEMBER_ID_PREFIX):
    """Numeric suffix of ``member_id`` or None if it isn't a ``<prefix>####`` id."""
    if not isinstance(member_id, str):
        return None
    match = re.fullmatch(re.escape(prefix) + r"(\d+)", member_id)
    return int(match.group(1)) if match else None


async def generate_member_id(database, session=None) -> str:
    # Atomic $inc on a counter document; two registrations can never read the same value
    counter = await database.counters.find_one_and_update(
        {"_id": COUNTER_NAME},
        {"$inc": {"sequence_value": 1}},
        return_document=ReturnDocument.AFTER,
        upsert=True,
        session=session,
    )
    return format_member_id(counter["sequence_value"])


async def sync_member_counter(database) -> int:
    """Raise the member counter to the highest ``A####`` already in use."""
    highest = 0
    async for user in database.users.find({"member_id": {"$regex": f"^{MEMBER_ID_PREFIX}"}}):
        number = parse_member_number(user.get("member_id"))
        if number is not None and number > highest:
            highest = number
    await database.counters.update_one(
        {"_id": COUNTER_NAME},
        {"$max": {"sequence_value": highest}},
        upsert=True,
    )
    return highest


async def migrate_member_ids(database) -> int:
    """Rewrite legacy ``M####`` member ids to ``A####`` keeping the number."""
    count = 0
    async for user in database.users.find({"member_id": {"$regex": f"^{LEGACY_PREFIX}"}}):
        number = parse_member_number(user.get("member_id"), LEGACY_PREFIX)
        if number is None:
            logger.warning("Skipping user %s with unexpected member id %r", user.get("id"), user.get("member_id"))
            continue
        new_id = format_member_id(number)
        await database.users.update_one({"_id": user["_id"]}, {"$set": {"member_id": new_id}})
        logger.info("Migrated member id %s -> %s", user["member_id"], new_id)
        count += 1
    if count:
        await sync_member_counter(database)
    return count
