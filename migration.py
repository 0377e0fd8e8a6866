"""
Migration script to move legacy member IDs (M0001) to the current format (A0001)
and line the member ID counter up with the data already in the database.
Run this script once after upgrading an existing deployment.

Usage:
    python migration.py
"""

import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorClient

import config
from utils.member_ids import migrate_member_ids, sync_member_counter

logger = logging.getLogger("migration")


async def migrate():
    client = AsyncIOMotorClient(config.MONGO_URL)
    db = client[config.MONGO_DB_NAME]

    logger.info("Starting migration of member IDs...")
    try:
        migrated = await migrate_member_ids(db)
        if not migrated:
            logger.info("No member IDs need migration.")
        else:
            logger.info("Migrated %d member IDs", migrated)

        last = await sync_member_counter(db)
        logger.info("Member ID counter now at %d", last)
    finally:
        client.close()

    logger.info("Migration completed successfully!")
    return migrated


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s: %(message)s")
    logger.info("Library Management System - Member ID Migration")
    asyncio.run(migrate())
