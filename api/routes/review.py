"""
Operator review endpoints: data source administration and the duplicate and
alert review queues.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.dependencies import get_db, get_registry, require_api_key
from core.exceptions import ReviewItemNotFoundError
from ingestion.registry import SourceRegistry
from models.base import AlertStatus, DuplicateStatus, utcnow
from models.product_catalog import ProductCatalogEntry
from models.review import ConsistencyAlert, DuplicateDetection
from schemas.api import (
    AlertResponse,
    AlertUpdate,
    DataSourceCreate,
    DataSourceResponse,
    DataSourceUpdate,
    DuplicateResponse,
    DuplicateReviewUpdate,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Review"], dependencies=[Depends(require_api_key)])


@router.post("/data-sources", response_model=DataSourceResponse, status_code=201)
async def create_data_source(
    body: DataSourceCreate,
    registry: SourceRegistry = Depends(get_registry)
):
    source = await registry.create_source(body.model_dump())
    return DataSourceResponse.model_validate(source)


@router.patch("/data-sources/{source_id}", response_model=DataSourceResponse)
async def update_data_source(
    source_id: UUID,
    body: DataSourceUpdate,
    registry: SourceRegistry = Depends(get_registry)
):
    """Edit a source or flip its status (active/paused/error). Sources are never deleted."""
    source = await registry.update_source(source_id, body.model_dump(exclude_unset=True))
    return DataSourceResponse.model_validate(source)


@router.patch("/duplicates/{detection_id}", response_model=DuplicateResponse)
async def review_duplicate(
    detection_id: UUID,
    body: DuplicateReviewUpdate,
    db: AsyncSession = Depends(get_db)
):
    """
    Record an operator decision on a duplicate detection.

    Confirming marks the product as a duplicate of the other entry;
    dismissing clears that mark when it points at this pair.
    """
    detection = await db.get(DuplicateDetection, detection_id)
    if detection is None:
        raise ReviewItemNotFoundError(
            "Duplicate detection not found",
            context={"detection_id": str(detection_id)}
        )

    detection.status = body.status
    if body.notes is not None:
        detection.notes = body.notes
    detection.reviewed_at = utcnow()

    product = await db.get(ProductCatalogEntry, detection.product_id)
    if product is not None:
        if body.status == DuplicateStatus.CONFIRMED:
            product.is_duplicate = True
            product.duplicate_of = detection.duplicate_product_id
        elif body.status == DuplicateStatus.DISMISSED and product.duplicate_of == detection.duplicate_product_id:
            product.is_duplicate = False
            product.duplicate_of = None

    await db.commit()
    logger.info(f"Duplicate detection {detection_id} marked {body.status.value}")
    return DuplicateResponse.model_validate(detection)


@router.patch("/alerts/{alert_id}", response_model=AlertResponse)
async def review_alert(
    alert_id: UUID,
    body: AlertUpdate,
    db: AsyncSession = Depends(get_db)
):
    alert = await db.get(ConsistencyAlert, alert_id)
    if alert is None:
        raise ReviewItemNotFoundError("Consistency alert not found", context={"alert_id": str(alert_id)})

    now = utcnow()
    alert.status = body.status
    alert.resolved_at = now if body.status == AlertStatus.RESOLVED else None
    alert.updated_at = now
    await db.commit()
    logger.info(f"Alert {alert_id} marked {body.status.value}")
    return AlertResponse.model_validate(alert)
