"""Health check endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cardio_sched import __version__
from cardio_sched.core.database import get_db

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {
        "status": "healthy",
        "service": "cardio-sched",
        "version": __version__,
    }


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)) -> dict:
    """Readiness check - verifies the schedule database answers."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        return {"status": "not_ready", "errors": [f"Database check failed: {e}"]}
    return {"status": "ready"}


@router.get("/health/live")
async def liveness_check() -> dict:
    """Liveness check - basic process health."""
    return {"status": "alive"}
