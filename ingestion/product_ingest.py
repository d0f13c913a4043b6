"""
Webhook product ingest: publish one product into the marketplace tables.

The caller either pushes structured ``product_data`` or only a
``source_url``; in the latter case the page is fetched and the AI client
extracts the fields. Extraction failures degrade to whatever data is at hand.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

from bs4 import BeautifulSoup
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AIServiceError, ScrapeError, ValidationError
from ingestion.scraper import MAX_AI_TEXT, ProductPageScraper, extract_price
from ingestion.transformers.normalizer import (
    normalize_currency,
    normalize_frequency,
    normalize_policy_type,
)
from models.base import utcnow
from models.marketplace import InsuranceCompany, InsuranceProduct

logger = logging.getLogger(__name__)

PRODUCT_EXTRACT_SYSTEM_PROMPT = (
    "You are an expert insurance product analyzer. Extract one insurance product from the "
    "page text and reply with a JSON object with the keys company_name, product_name, "
    "policy_type, description, premium_amount (number), currency (ISO code), "
    "billing_frequency, coverage_details, benefits (list), exclusions (list). "
    "Use null for anything the text does not state."
)


@dataclass
class ProductIngestResult:
    action: str
    product: InsuranceProduct
    extracted_data: Dict[str, Any]

    @property
    def created(self) -> bool:
        return self.action == "created"


def _as_list(value: Any) -> Optional[List[str]]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("items", list(value.values()))
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",")]
    items = [str(item).strip() for item in value if item is not None and str(item).strip()]
    return items or None


def _as_premium(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return extract_price(str(value))


class ProductIngestService:
    """Find-or-create the company, then upsert the product by (company, name)."""

    def __init__(
        self,
        db_session: AsyncSession,
        ai_client=None,
        scraper: Optional[ProductPageScraper] = None,
        default_currency: str = "GBP"
    ):
        self.db = db_session
        self.ai_client = ai_client
        self.scraper = scraper or ProductPageScraper()
        self.default_currency = default_currency

    async def ingest(
        self,
        source_url: str,
        product_data: Optional[Dict[str, Any]] = None,
        company_name: Optional[str] = None
    ) -> ProductIngestResult:
        """
        Publish one product. The caller commits.

        Raises:
            ValidationError: No company name could be determined; the
                context carries the extracted data
        """
        extracted = dict(product_data or {})
        if product_data is None and self.ai_client is not None and self.ai_client.configured:
            extracted = await self._extract_from_url(source_url)

        name = extracted.get("company_name") or company_name
        if not name or not str(name).strip():
            raise ValidationError(
                "Could not determine insurance company",
                context={"extracted_data": extracted}
            )

        company = await self._get_or_create_company(str(name).strip())
        values = self._product_values(extracted, source_url)

        result = await self.db.execute(
            select(InsuranceProduct).where(
                InsuranceProduct.company_id == company.id,
                InsuranceProduct.product_name == values["product_name"],
            )
        )
        product = result.scalar_one_or_none()

        if product is None:
            product = InsuranceProduct(company_id=company.id, **values)
            self.db.add(product)
            action = "created"
        else:
            for field, value in values.items():
                setattr(product, field, value)
            product.updated_at = utcnow()
            action = "updated"

        await self.db.flush()
        logger.info(f"Marketplace product {action}: {company.name} / {product.product_name}")
        return ProductIngestResult(action=action, product=product, extracted_data=extracted)

    async def _extract_from_url(self, source_url: str) -> Dict[str, Any]:
        try:
            html = await self.scraper.fetch_page(source_url)
            text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)[:MAX_AI_TEXT]
            data = await self.ai_client.complete_json(PRODUCT_EXTRACT_SYSTEM_PROMPT, text)
        except (ScrapeError, AIServiceError) as e:
            logger.warning(
                f"Could not extract product from {source_url}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return {}
        logger.info(f"Extracted product data from {source_url}")
        return data

    async def _get_or_create_company(self, name: str) -> InsuranceCompany:
        result = await self.db.execute(select(InsuranceCompany).where(InsuranceCompany.name == name))
        company = result.scalar_one_or_none()
        if company is None:
            company = InsuranceCompany(name=name)
            self.db.add(company)
            await self.db.flush()
            logger.info(f"Created insurance company {name}")
        return company

    def _product_values(self, data: Dict[str, Any], source_url: str) -> Dict[str, Any]:
        coverage = data.get("coverage_details")
        if isinstance(coverage, str):
            coverage = {"details": coverage}

        return {
            "product_name": str(data.get("product_name") or "Unknown Product").strip()[:500],
            "policy_type": normalize_policy_type(data.get("policy_type")).value,
            "description": data.get("description"),
            "premium_amount": _as_premium(data.get("premium_amount")),
            "premium_frequency": normalize_frequency(
                data.get("billing_frequency") or data.get("premium_frequency")
            ) or "monthly",
            "currency": normalize_currency(data.get("currency")) or self.default_currency,
            "coverage_details": coverage or None,
            "benefits": _as_list(data.get("benefits")),
            "exclusions": _as_list(data.get("exclusions")),
            "source_url": source_url,
            "is_active": True,
        }
