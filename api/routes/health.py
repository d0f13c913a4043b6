"""
Health check endpoint with database and data source status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db
from schemas.api import HealthCheckResponse
from models.base import SourceStatus
from models.data_source import DataSource
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Data source counts by status
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed: {str(e)}")

    counts = {}
    if db_connected:
        try:
            result = await db.execute(
                select(DataSource.status, func.count()).group_by(DataSource.status)
            )
            counts = {SourceStatus(status): count for status, count in result.all()}
        except SQLAlchemyError as e:
            logger.error(f"Failed to count data sources: {str(e)}")

    # Status is derived by the validator in HealthCheckResponse
    return HealthCheckResponse(
        database_connected=db_connected,
        total_sources=sum(counts.values()),
        active_sources=counts.get(SourceStatus.ACTIVE, 0),
        syncing_sources=counts.get(SourceStatus.SYNCING, 0),
        error_sources=counts.get(SourceStatus.ERROR, 0),
    )
