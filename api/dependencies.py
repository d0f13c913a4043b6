"""
FastAPI dependencies: sessions, settings, service factories and auth checks.

Routes receive every collaborator through ``Depends`` so tests can swap the
database, the AI client or the upstream HTTP transport with
``app.dependency_overrides``.
"""

from typing import AsyncGenerator, Optional
import hmac

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, settings
from core.database import get_session
from core.exceptions import AuthenticationError
from ingestion.ai_client import AIClient
from ingestion.product_ingest import ProductIngestService
from ingestion.quality.consistency import ConsistencyChecker, default_rules
from ingestion.quality.duplicates import DuplicateChecker, DuplicatePolicy
from ingestion.registry import SourceRegistry
from ingestion.runner import IngestionRunner
from ingestion.scraper import ProductPageScraper
from ingestion.transformers.normalizer import ProductNormalizer


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_settings() -> Settings:
    return settings


def get_http_transport():
    """Upstream transport for extractors and the scraper; None means the network."""
    return None


def get_ai_client(config: Settings = Depends(get_settings)) -> AIClient:
    return AIClient.from_settings(config)


def get_normalizer(
    ai_client=Depends(get_ai_client),
    config: Settings = Depends(get_settings)
) -> ProductNormalizer:
    return ProductNormalizer(
        ai_client=ai_client,
        default_currency=config.DEFAULT_CURRENCY,
        min_text_length=config.AI_MIN_TEXT_LENGTH,
    )


def get_scraper(
    ai_client=Depends(get_ai_client),
    config: Settings = Depends(get_settings),
    transport=Depends(get_http_transport)
) -> ProductPageScraper:
    return ProductPageScraper(ai_client=ai_client, timeout=config.HTTP_TIMEOUT, transport=transport)


def get_registry(
    db: AsyncSession = Depends(get_db),
    config: Settings = Depends(get_settings)
) -> SourceRegistry:
    return SourceRegistry(db, error_threshold=config.SOURCE_ERROR_THRESHOLD)


def get_runner(
    db: AsyncSession = Depends(get_db),
    normalizer: ProductNormalizer = Depends(get_normalizer),
    scraper: ProductPageScraper = Depends(get_scraper),
    config: Settings = Depends(get_settings),
    transport=Depends(get_http_transport)
) -> IngestionRunner:
    return IngestionRunner(
        db,
        normalizer=normalizer,
        scraper=scraper,
        duplicate_policy=DuplicatePolicy.from_settings(config),
        consistency_rules=default_rules(config.STALE_VERIFICATION_DAYS),
        config=config,
        transport=transport,
    )


def get_duplicate_checker(
    db: AsyncSession = Depends(get_db),
    config: Settings = Depends(get_settings)
) -> DuplicateChecker:
    return DuplicateChecker(db, DuplicatePolicy.from_settings(config))


def get_consistency_checker(
    db: AsyncSession = Depends(get_db),
    config: Settings = Depends(get_settings)
) -> ConsistencyChecker:
    return ConsistencyChecker(db, default_rules(config.STALE_VERIFICATION_DAYS))


def get_product_ingest_service(
    db: AsyncSession = Depends(get_db),
    ai_client=Depends(get_ai_client),
    scraper: ProductPageScraper = Depends(get_scraper),
    config: Settings = Depends(get_settings)
) -> ProductIngestService:
    return ProductIngestService(db, ai_client=ai_client, scraper=scraper, default_currency=config.DEFAULT_CURRENCY)


# ============================================================================
# Auth
# ============================================================================

def require_api_key(
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
    config: Settings = Depends(get_settings)
) -> None:
    """
    Operator routes accept ``X-API-Key: <key>`` or ``Authorization: Bearer <key>``.

    When API_KEY is unset the routes are open (local development).
    """
    if not config.API_KEY:
        return
    provided = x_api_key
    if not provided and authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()
    if not provided or not hmac.compare_digest(provided, config.API_KEY):
        raise AuthenticationError("Invalid or missing API key")


def verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(None),
    config: Settings = Depends(get_settings)
) -> None:
    """The webhook secret must be configured and match; an unset secret rejects every call."""
    if not config.WEBHOOK_SECRET:
        raise AuthenticationError("Webhook secret is not configured")
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, config.WEBHOOK_SECRET):
        raise AuthenticationError("Invalid webhook secret")
