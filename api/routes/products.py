"""
Product endpoints: normalization, page scraping, webhook ingest, duplicate
detection and consistency checks.
"""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.dependencies import (
    get_consistency_checker,
    get_db,
    get_duplicate_checker,
    get_normalizer,
    get_product_ingest_service,
    get_scraper,
    require_api_key,
    verify_webhook_secret,
)
from core.exceptions import ProductNotFoundError
from ingestion.product_ingest import ProductIngestService
from ingestion.quality.consistency import ConsistencyChecker
from ingestion.quality.duplicates import DuplicateChecker
from ingestion.scraper import ProductPageScraper
from ingestion.transformers.normalizer import ProductNormalizer
from models.base import AlertSeverity
from models.product_catalog import ProductCatalogEntry
from schemas.api import (
    AlertResponse,
    ConsistencyCheckRequest,
    ConsistencyCheckResponse,
    DetectDuplicatesRequest,
    DetectDuplicatesResponse,
    DuplicateResponse,
    MarketplaceProductResponse,
    NormalizeProductRequest,
    ProductIngestRequest,
    ProductIngestResponse,
    ScrapeRequest,
    ScrapeResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Products"])


@router.post("/normalize-product", dependencies=[Depends(require_api_key)])
async def normalize_product(
    body: NormalizeProductRequest,
    normalizer: ProductNormalizer = Depends(get_normalizer)
):
    """Normalize one raw record without persisting it."""
    normalized = await normalizer.normalize(body.product)
    return normalized.model_dump(mode="json")


@router.post("/scrape-product-page", response_model=ScrapeResponse, dependencies=[Depends(require_api_key)])
async def scrape_product_page(
    body: ScrapeRequest,
    scraper: ProductPageScraper = Depends(get_scraper)
):
    products = await scraper.scrape(body.url, body.scrape_rules)
    return ScrapeResponse(products=products, count=len(products), source_url=body.url)


@router.post(
    "/ai-product-ingest",
    response_model=ProductIngestResponse,
    dependencies=[Depends(verify_webhook_secret)]
)
async def ai_product_ingest(
    body: ProductIngestRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    service: ProductIngestService = Depends(get_product_ingest_service)
):
    """
    Publish one product into the marketplace.

    Responds 201 when the product was created and 200 when it was updated.
    """
    result = await service.ingest(body.source_url, body.product_data, body.company_name)
    await db.commit()
    await db.refresh(result.product)

    response.status_code = 201 if result.created else 200
    return ProductIngestResponse(
        success=True,
        action=result.action,
        product=MarketplaceProductResponse.model_validate(result.product),
        extracted_data=result.extracted_data,
        source_url=body.source_url,
        message=f"Product {result.action} successfully",
    )


@router.post("/detect-duplicates", response_model=DetectDuplicatesResponse, dependencies=[Depends(require_api_key)])
async def detect_duplicates(
    body: DetectDuplicatesRequest,
    db: AsyncSession = Depends(get_db),
    checker: DuplicateChecker = Depends(get_duplicate_checker)
):
    detections = await checker.detect_duplicates(body.product_id)
    await db.commit()
    return DetectDuplicatesResponse(
        duplicates=[DuplicateResponse.model_validate(d) for d in detections],
        count=len(detections),
        high_confidence_duplicates=checker.high_confidence_count(detections),
    )


@router.post("/consistency-check", response_model=ConsistencyCheckResponse, dependencies=[Depends(require_api_key)])
async def consistency_check(
    body: ConsistencyCheckRequest,
    db: AsyncSession = Depends(get_db),
    checker: ConsistencyChecker = Depends(get_consistency_checker)
):
    """Run the consistency rules over one product or the whole active catalog."""
    if body.action == "check_product":
        product = await db.get(ProductCatalogEntry, body.product_id)
        if product is None:
            raise ProductNotFoundError("Product not found", context={"product_id": str(body.product_id)})
        alerts = await checker.check_product(product)
    else:
        alerts = await checker.check_all()
    await db.commit()

    return ConsistencyCheckResponse(
        alerts=[AlertResponse.model_validate(a) for a in alerts],
        count=len(alerts),
        critical_count=sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL),
    )
