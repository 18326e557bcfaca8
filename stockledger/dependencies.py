from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import Settings, get_settings
from stockledger.database import async_session
from stockledger.services.notification_service import OrderNotificationService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def get_notifier(settings: Settings = Depends(get_settings)) -> OrderNotificationService:
    return OrderNotificationService(settings)
