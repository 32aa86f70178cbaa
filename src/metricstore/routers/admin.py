"""Admin endpoints for snapshot retention."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from metricstore.dependencies import get_db
from metricstore.services.retention import purge_all

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class RetentionResponse(BaseModel):
    """Snapshots deleted by a retention run."""

    total_deleted: int
    deleted_by_definition: dict[str, int]


@router.post("/retention", response_model=RetentionResponse)
async def run_retention(db: AsyncSession = Depends(get_db)) -> RetentionResponse:
    """Apply every definition's retention policy now."""
    counts = await purge_all(db)
    total = sum(counts.values())
    logger.info("Retention run deleted %d snapshots", total)
    return RetentionResponse(total_deleted=total, deleted_by_definition=counts)
