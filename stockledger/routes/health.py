from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import Settings, get_settings
from stockledger.dependencies import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)):
    return {"status": "healthy", "service": "stock-ledger", "environment": settings.ENVIRONMENT}


@router.get("/health/db")
async def database_health(db: AsyncSession = Depends(get_db)):
    """Round trip to the ledger database"""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        return {"status": "unhealthy", "database": "error", "error": str(e)}
    return {"status": "healthy", "database": "connected"}
