"""
Product page scraper.

Fetches an insurer's product page and turns it into raw product records,
either with per-field CSS selector rules or, when no selector is given, by
handing the page text to the AI client.
"""

import hashlib
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from core.exceptions import ScrapeError, AIServiceError
from ingestion.ai_client import EXTRACT_SYSTEM_PROMPT
from ingestion.transformers.normalizer import CURRENCY_SYMBOLS

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-GB,en;q=0.5",
}

MAX_AI_TEXT = 8000

_PRICE = re.compile(r"[\d,]+\.?\d*")


def extract_price(text: Optional[str]) -> Optional[float]:
    """First number in a price string, ignoring symbols and thousands separators."""
    if not text:
        return None
    match = _PRICE.search(text)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def generate_product_id(product: Dict[str, Any]) -> str:
    """Stable identifier from insurer, product name and policy type."""
    key = f"{product.get('insurer_name')}-{product.get('product_name')}-{product.get('policy_type')}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]


class ProductPageScraper:
    """
    Extract insurance products from a web page.

    Scrape rules (all optional except ``selector`` for rule-based mode):
        selector: CSS selector matching one element per product
        product_name, premium, insurer_name, link, description: CSS selectors
            evaluated inside each product element
        benefits: CSS selector whose every match is one benefit
    """

    def __init__(
        self,
        ai_client=None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.ai_client = ai_client
        self.timeout = timeout
        self.transport = transport

    async def fetch_page(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                follow_redirects=True
            ) as client:
                response = await client.get(url, headers=BROWSER_HEADERS)
        except httpx.HTTPError as e:
            raise ScrapeError(
                "Failed to fetch page",
                context={"url": url},
                original_exception=e
            )

        if response.status_code >= 400:
            raise ScrapeError(
                f"Failed to fetch page: HTTP {response.status_code}",
                context={"url": url, "status_code": response.status_code}
            )
        return response.text

    async def scrape(self, url: str, scrape_rules: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Scrape products from ``url``.

        Returns:
            Raw product dicts, each with an ``external_id``

        Raises:
            ScrapeError: Page could not be fetched, or AI extraction was
                needed and failed
        """
        rules = scrape_rules or {}
        html = await self.fetch_page(url)
        soup = BeautifulSoup(html, "html.parser")

        if rules.get("selector"):
            products = [
                self._extract_from_element(element, rules, url)
                for element in soup.select(rules["selector"])
            ]
            products = [p for p in products if p.get("product_name")]
            logger.info(f"Extracted {len(products)} products from {url} with selector rules")
        else:
            products = await self._extract_with_ai(soup, url)
            logger.info(f"AI extracted {len(products)} products from {url}")

        for product in products:
            product.setdefault("product_url", url)
            if not product.get("external_id"):
                product["external_id"] = generate_product_id(product)
        return products

    @staticmethod
    def _text(element, selector: Optional[str]) -> Optional[str]:
        if not selector:
            return None
        found = element.select_one(selector)
        if found is None:
            return None
        text = found.get_text(" ", strip=True)
        return text or None

    def _extract_from_element(self, element, rules: Dict[str, Any], base_url: str) -> Dict[str, Any]:
        product: Dict[str, Any] = {}

        name = self._text(element, rules.get("product_name"))
        if name:
            product["product_name"] = name

        insurer = self._text(element, rules.get("insurer_name"))
        if insurer:
            product["insurer_name"] = insurer

        premium_text = self._text(element, rules.get("premium"))
        if premium_text:
            product["premium_amount"] = extract_price(premium_text)
            symbol = next((s for s in CURRENCY_SYMBOLS if s in premium_text), None)
            if symbol:
                product["currency"] = CURRENCY_SYMBOLS[symbol]

        if rules.get("link"):
            link = element.select_one(rules["link"])
            if link is not None and link.get("href"):
                product["product_url"] = urljoin(base_url, link["href"])

        if rules.get("benefits"):
            benefits = [el.get_text(" ", strip=True) for el in element.select(rules["benefits"])]
            benefits = [b for b in benefits if b]
            if benefits:
                product["benefits"] = benefits

        description = self._text(element, rules.get("description"))
        if description:
            product["coverage_summary"] = description

        return product

    async def _extract_with_ai(self, soup: BeautifulSoup, url: str) -> List[Dict[str, Any]]:
        if self.ai_client is None or not getattr(self.ai_client, "configured", True):
            raise ScrapeError(
                "No selector rule given and AI extraction is not configured",
                context={"url": url}
            )

        body = soup.body or soup
        text = " ".join(body.get_text(" ", strip=True).split())[:MAX_AI_TEXT]
        try:
            result = await self.ai_client.complete_json(
                EXTRACT_SYSTEM_PROMPT,
                f"Source URL: {url}\n\nPage content:\n{text}"
            )
        except AIServiceError as e:
            raise ScrapeError(
                "AI product extraction failed",
                context={"url": url},
                original_exception=e
            )

        products = result.get("products", [])
        if not isinstance(products, list):
            return []
        return [dict(p) for p in products if isinstance(p, dict)]
