"""
Unit tests for the webhook product ingest
"""

import pytest
from sqlalchemy import func, select

from core.exceptions import ValidationError
from ingestion.product_ingest import PRODUCT_EXTRACT_SYSTEM_PROMPT, ProductIngestService
from ingestion.scraper import ProductPageScraper
from models.marketplace import InsuranceCompany, InsuranceProduct
from tests.fakes import FakeAIClient, text_transport

URL = "https://acme.example.com/travel"
PAGE = "<html><body><h1>Acme Travel Plus</h1><p>Annual multi-trip cover from £89 a year.</p></body></html>"


async def count(db_session, model) -> int:
    return await db_session.scalar(select(func.count()).select_from(model))


class TestProductIngestService:
    """Test ProductIngestService.ingest"""

    @pytest.mark.asyncio
    async def test_structured_payload_creates_product(self, db_session):
        """Test pushed product data is published without calling AI"""
        ai = FakeAIClient()
        service = ProductIngestService(db_session, ai_client=ai)

        result = await service.ingest(URL, product_data={
            "company_name": "Acme Insurance",
            "product_name": "Travel Plus",
            "policy_type": "multi-trip travel",
            "premium_amount": "£89.00",
            "billing_frequency": "yearly",
            "coverage_details": "Medical expenses up to 10m",
            "benefits": "Medical, Baggage",
        })
        await db_session.commit()

        assert result.created
        assert ai.calls == []
        product = result.product
        assert product.policy_type == "travel"
        assert product.premium_amount == 89.0
        assert product.premium_frequency == "annual"
        assert product.currency == "GBP"
        assert product.coverage_details == {"details": "Medical expenses up to 10m"}
        assert product.benefits == ["Medical", "Baggage"]
        assert product.source_url == URL
        assert await count(db_session, InsuranceCompany) == 1

    @pytest.mark.asyncio
    async def test_same_name_updates(self, db_session):
        """Test a second push for the same company and name updates in place"""
        service = ProductIngestService(db_session)
        first = await service.ingest(URL, product_data={"product_name": "Travel Plus", "premium_amount": 89},
                                     company_name="Acme Insurance")
        await db_session.commit()

        second = await service.ingest(URL, product_data={"product_name": "Travel Plus", "premium_amount": 95},
                                      company_name="Acme Insurance")
        await db_session.commit()

        assert second.action == "updated"
        assert second.product.id == first.product.id
        assert second.product.premium_amount == 95.0
        assert await count(db_session, InsuranceProduct) == 1
        assert await count(db_session, InsuranceCompany) == 1

    @pytest.mark.asyncio
    async def test_extracts_from_url_with_ai(self, db_session):
        """Test a bare URL is scraped and extracted by the AI client"""
        ai = FakeAIClient(responses={
            "company_name": "Acme Insurance",
            "product_name": "Acme Travel Plus",
            "policy_type": "travel",
            "premium_amount": 89,
            "currency": "GBP",
            "billing_frequency": "annual",
        })
        scraper = ProductPageScraper(transport=text_transport({"/travel": PAGE}))
        service = ProductIngestService(db_session, ai_client=ai, scraper=scraper)

        result = await service.ingest(URL)

        assert result.created
        assert result.extracted_data["product_name"] == "Acme Travel Plus"
        assert ai.calls[0]["system_prompt"] == PRODUCT_EXTRACT_SYSTEM_PROMPT
        assert "Annual multi-trip cover" in ai.calls[0]["content"]
        assert result.product.premium_frequency == "annual"

    @pytest.mark.asyncio
    async def test_extraction_failure_falls_back_to_company_name(self, db_session):
        """Test AI failure degrades to the caller's company name"""
        scraper = ProductPageScraper(transport=text_transport({"/travel": PAGE}))
        service = ProductIngestService(db_session, ai_client=FakeAIClient(fail=True), scraper=scraper)

        result = await service.ingest(URL, company_name="Acme Insurance")

        assert result.created
        assert result.extracted_data == {}
        assert result.product.product_name == "Unknown Product"
        assert result.product.premium_frequency == "monthly"

    @pytest.mark.asyncio
    async def test_missing_company(self, db_session):
        """Test no company name anywhere is a 400 carrying the extracted data"""
        service = ProductIngestService(db_session)

        with pytest.raises(ValidationError) as exc_info:
            await service.ingest(URL, product_data={"product_name": "Orphan"})

        assert exc_info.value.status_code == 400
        assert exc_info.value.context["extracted_data"] == {"product_name": "Orphan"}
