"""
FraudDesk — Seed Data Script
Inserts the default rules from frauddesk/rules/default_rules.py when the
rules table is empty, and the bootstrap admin account when no user exists.

Usage (run once after the database is reachable):
    python -m frauddesk.seed
"""

import asyncio
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from frauddesk.config import settings
from frauddesk.services.db import AsyncSessionLocal, init_db
from frauddesk.models.models import Rule, User, UserRole
from frauddesk.rules.default_rules import DEFAULT_RULES
from frauddesk.services.observability import setup_logging
from frauddesk.services.security import hash_password

logger = logging.getLogger("frauddesk.seed")


async def seed_rules(db: AsyncSession) -> int:
    """Insert DEFAULT_RULES into an empty rules table; returns rows inserted."""
    count_result = await db.execute(select(func.count()).select_from(Rule))
    existing: int = count_result.scalar() or 0

    if existing > 0:
        logger.info("rules already has %d rows, skipping rule seed.", existing)
        return 0

    logger.info("Inserting %d default rules …", len(DEFAULT_RULES))
    for rule_data in DEFAULT_RULES:
        db.add(Rule(**rule_data))
    await db.flush()
    return len(DEFAULT_RULES)


async def seed_admin(db: AsyncSession) -> bool:
    """Create the bootstrap admin if the users table is empty."""
    count_result = await db.execute(select(func.count()).select_from(User))
    if (count_result.scalar() or 0) > 0:
        return False

    db.add(User(
        username=settings.BOOTSTRAP_ADMIN_USERNAME,
        email=settings.BOOTSTRAP_ADMIN_EMAIL,
        full_name="FraudDesk Administrator",
        hashed_password=hash_password(settings.BOOTSTRAP_ADMIN_PASSWORD),
        role=UserRole.ADMIN.value,
    ))
    await db.flush()
    logger.info("Bootstrap admin '%s' created.", settings.BOOTSTRAP_ADMIN_USERNAME)
    return True


async def seed():
    await init_db()                                    # ensure tables exist

    async with AsyncSessionLocal() as db:
        inserted = await seed_rules(db)
        await seed_admin(db)
        await db.commit()
        logger.info("Seed complete, %d rules inserted.", inserted)


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
