import asyncio
import logging

from sqlalchemy import select

import app.models  # noqa: F401  registers every table on Base.metadata
from app.core.settings import settings
from app.db.base import Base
from app.db.session import AsyncSessionLocal, engine
from app.models.user import User

logger = logging.getLogger(__name__)


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_admin(email: str) -> None:
    """Ensure an ``admin_edit`` user exists for ``email``."""
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(User).where(User.email == email))
        if result.scalar_one_or_none() is not None:
            logger.info("Admin user %s already exists", email)
            return
        session.add(User(email=email, role="admin_edit", is_active=True))
        await session.commit()
        logger.info("Created admin user %s", email)


async def init_db() -> None:
    if settings.create_tables_on_startup:
        await create_tables()
    if settings.seed_admin_email:
        await seed_admin(settings.seed_admin_email)


if __name__ == "__main__":
    asyncio.run(init_db())
