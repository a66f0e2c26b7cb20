"""Database session dependency."""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from voxelhub.infra.db import base


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session per request; roll back anything left uncommitted."""
    async with base.AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
