"""
Scraper strategy: delegates to the in-process product page scraper
"""

from typing import List, Any
from ingestion.extractors.base import BaseExtractor
from ingestion.scraper import ProductPageScraper
from models.data_source import DataSource
from core.exceptions import ScrapeError


class ScraperExtractor(BaseExtractor):
    """
    Fetch products by scraping ``target_url`` with the source's scrape_rules.

    Configuration:
        target_url: Page to scrape (``url`` accepted as an alias)
        scrape_rules: Selector rules understood by ProductPageScraper
    """

    def __init__(self, source: DataSource, scraper: ProductPageScraper):
        super().__init__(source)
        self.scraper = scraper
        self.target_url = self.config_value("target_url", "url")

    async def fetch(self) -> List[Any]:
        if not self.target_url:
            raise ScrapeError(
                "Scraper source has no target_url configured",
                context={"source_name": self.source_name}
            )
        return await self.scraper.scrape(self.target_url, self.configuration.get("scrape_rules"))
