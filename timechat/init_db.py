from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from .database import AsyncSessionLocal


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session; anything left uncommitted by a failed request is rolled back."""
    async with AsyncSessionLocal() as db:
        try:
            yield db
        except Exception:
            await db.rollback()
            raise
