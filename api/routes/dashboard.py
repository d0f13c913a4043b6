"""
Operator dashboard: sources, recent jobs, review queues and catalog statistics
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.dependencies import get_db, get_registry, get_runner, get_settings, require_api_key
from core.config import Settings
from ingestion.registry import SourceRegistry
from ingestion.runner import IngestionRunner
from models.base import AlertStatus, DuplicateStatus, ProductStatus
from models.product_catalog import ProductCatalogEntry
from models.review import ConsistencyAlert, DuplicateDetection
from schemas.api import (
    AlertResponse,
    DashboardResponse,
    DataSourceResponse,
    DuplicateResponse,
    JobResponse,
    ProductStats,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Dashboard"], dependencies=[Depends(require_api_key)])


async def product_stats(db: AsyncSession) -> ProductStats:
    """Catalog counts by status, policy type and insurer."""
    total = (await db.execute(select(func.count()).select_from(ProductCatalogEntry))).scalar() or 0

    active_filter = ProductCatalogEntry.status == ProductStatus.ACTIVE
    active = (await db.execute(
        select(func.count()).select_from(ProductCatalogEntry).where(active_filter)
    )).scalar() or 0

    by_type_rows = await db.execute(
        select(ProductCatalogEntry.policy_type, func.count())
        .where(active_filter)
        .group_by(ProductCatalogEntry.policy_type)
    )
    by_policy_type = {
        (policy_type.value if hasattr(policy_type, "value") else str(policy_type)): count
        for policy_type, count in by_type_rows.all()
    }

    by_insurer_rows = await db.execute(
        select(ProductCatalogEntry.insurer_name, func.count())
        .where(active_filter, ProductCatalogEntry.insurer_name.isnot(None))
        .group_by(ProductCatalogEntry.insurer_name)
    )
    by_insurer = {insurer: count for insurer, count in by_insurer_rows.all()}

    average = (await db.execute(
        select(func.avg(ProductCatalogEntry.premium_amount))
        .where(active_filter, ProductCatalogEntry.premium_amount > 0)
    )).scalar()

    return ProductStats(
        total_products=total,
        active_products=active,
        by_policy_type=by_policy_type,
        by_insurer=by_insurer,
        average_premium=round(float(average), 2) if average is not None else None,
    )


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    limit: Optional[int] = Query(None, ge=1, le=200, description="Number of recent jobs and review items"),
    db: AsyncSession = Depends(get_db),
    registry: SourceRegistry = Depends(get_registry),
    runner: IngestionRunner = Depends(get_runner),
    config: Settings = Depends(get_settings)
):
    """
    Get the ingestion dashboard.

    Returns:
    - Every data source with its sync status
    - Recent ingestion jobs
    - Active consistency alerts and pending duplicate detections
    - Catalog statistics
    """
    limit = limit or config.RECENT_JOBS_LIMIT

    sources = await registry.list_sources()
    jobs = await runner.list_jobs(limit=limit)

    alerts = (await db.execute(
        select(ConsistencyAlert)
        .where(ConsistencyAlert.status == AlertStatus.ACTIVE)
        .order_by(ConsistencyAlert.created_at.desc())
        .limit(limit)
    )).scalars().all()

    duplicates = (await db.execute(
        select(DuplicateDetection)
        .where(DuplicateDetection.status == DuplicateStatus.PENDING)
        .order_by(DuplicateDetection.similarity_score.desc(), DuplicateDetection.created_at.desc())
        .limit(limit)
    )).scalars().all()

    return DashboardResponse(
        sources=[DataSourceResponse.model_validate(s) for s in sources],
        recent_jobs=[JobResponse.model_validate(j) for j in jobs],
        active_alerts=[AlertResponse.model_validate(a) for a in alerts],
        pending_duplicates=[DuplicateResponse.model_validate(d) for d in duplicates],
        product_stats=await product_stats(db),
    )
