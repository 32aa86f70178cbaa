"""Health check endpoint."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from metricstore import __version__
from metricstore.dependencies import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)) -> dict:
    """Return API health status, version and database reachability."""
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as exc:
        logger.error("Health check could not reach the database: %s", exc)
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "service": "metricstore",
        "version": __version__,
        "database": database,
    }
