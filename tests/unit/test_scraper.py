"""
Unit tests for the product page scraper
"""

import pytest

from core.exceptions import ScrapeError
from ingestion.ai_client import EXTRACT_SYSTEM_PROMPT
from ingestion.scraper import ProductPageScraper, extract_price, generate_product_id
from tests.fakes import FakeAIClient, text_transport

PAGE = """
<html>
  <body>
    <h1>Acme pet plans</h1>
    <div class="plan">
      <h2 class="name">Pet Complete</h2>
      <span class="price">£12.50 a month</span>
      <a class="more" href="/pet-complete">Details</a>
      <ul><li class="benefit">Vet fees</li><li class="benefit">Third party liability</li></ul>
      <p class="summary">Lifetime cover up to 7,000 per year</p>
    </div>
    <div class="plan">
      <h2 class="name">Pet Basic</h2>
      <span class="price">€1,200 per year</span>
    </div>
    <div class="plan"></div>
    <div class="plan"><span class="price">£3.00 a month</span></div>
  </body>
</html>
"""

RULES = {
    "selector": ".plan",
    "product_name": ".name",
    "premium": ".price",
    "link": "a.more",
    "benefits": ".benefit",
    "description": ".summary",
}

URL = "https://acme.example.com/pet"


class TestHelpers:
    """Test price parsing and id generation"""

    @pytest.mark.parametrize("text,expected", [
        ("£12.50 a month", 12.5),
        ("€1,200 per year", 1200.0),
        ("From 9 pounds", 9.0),
        ("Call for a quote", None),
        (None, None),
    ])
    def test_extract_price(self, text, expected):
        """Test the first number is taken"""
        assert extract_price(text) == expected

    def test_generate_product_id_is_stable(self):
        """Test the same identity gives the same id"""
        product = {"insurer_name": "Acme", "product_name": "Pet Basic", "policy_type": "pet"}

        assert generate_product_id(product) == generate_product_id(dict(product))
        assert generate_product_id(product) != generate_product_id(dict(product, product_name="Pet Plus"))
        assert len(generate_product_id(product)) == 32


class TestSelectorScraping:
    """Test rule-based extraction"""

    @pytest.mark.asyncio
    async def test_rules(self):
        """Test each selector maps onto its field"""
        scraper = ProductPageScraper(transport=text_transport({"/pet": PAGE}))

        products = await scraper.scrape(URL, RULES)

        assert len(products) == 2
        complete, basic = products
        assert complete["product_name"] == "Pet Complete"
        assert complete["premium_amount"] == 12.5
        assert complete["currency"] == "GBP"
        assert complete["product_url"] == "https://acme.example.com/pet-complete"
        assert complete["benefits"] == ["Vet fees", "Third party liability"]
        assert complete["coverage_summary"] == "Lifetime cover up to 7,000 per year"
        assert basic["premium_amount"] == 1200.0
        assert basic["currency"] == "EUR"
        assert basic["product_url"] == URL
        assert "benefits" not in basic
        assert complete["external_id"] != basic["external_id"]

    @pytest.mark.asyncio
    async def test_elements_without_a_name_are_dropped(self):
        """Test matched elements without a product name never become products"""
        page = '<div class="plan"></div><div class="plan"><span class="price">£3</span></div>'
        scraper = ProductPageScraper(transport=text_transport({"/pet": page}))

        products = await scraper.scrape(URL, RULES)

        assert products == []

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Test an error page raises ScrapeError"""
        scraper = ProductPageScraper(transport=text_transport({}))

        with pytest.raises(ScrapeError) as exc_info:
            await scraper.scrape(URL, RULES)

        assert exc_info.value.context["status_code"] == 404


class TestAIScraping:
    """Test AI-assisted extraction"""

    @pytest.mark.asyncio
    async def test_ai_mode(self):
        """Test pages without a selector go to the AI client"""
        ai = FakeAIClient(responses={"products": [
            {"product_name": "Pet Complete", "insurer_name": "Acme", "premium_amount": 12.5},
            "not a product",
        ]})
        scraper = ProductPageScraper(ai_client=ai, transport=text_transport({"/pet": PAGE}))

        products = await scraper.scrape(URL)

        assert len(products) == 1
        assert products[0]["product_name"] == "Pet Complete"
        assert products[0]["product_url"] == URL
        assert products[0]["external_id"]
        assert ai.calls[0]["system_prompt"] == EXTRACT_SYSTEM_PROMPT
        assert "Pet Complete" in ai.calls[0]["content"]

    @pytest.mark.asyncio
    async def test_no_selector_and_no_ai(self):
        """Test scraping without a selector needs an AI client"""
        scraper = ProductPageScraper(transport=text_transport({"/pet": PAGE}))

        with pytest.raises(ScrapeError, match="AI extraction is not configured"):
            await scraper.scrape(URL, {})

    @pytest.mark.asyncio
    async def test_ai_failure(self):
        """Test AI errors surface as ScrapeError"""
        scraper = ProductPageScraper(ai_client=FakeAIClient(fail=True), transport=text_transport({"/pet": PAGE}))

        with pytest.raises(ScrapeError):
            await scraper.scrape(URL)
