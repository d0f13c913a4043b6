"""
Fetch strategies keyed by data source type.
"""

from typing import Optional
import httpx

from models.base import SourceType
from models.data_source import DataSource
from ingestion.extractors.base import BaseExtractor
from ingestion.extractors.api_extractor import APIExtractor, AggregatorExtractor, HTTPExtractor
from ingestion.extractors.feed_extractor import FeedExtractor
from ingestion.extractors.regulator_extractor import RegulatorExtractor
from ingestion.extractors.scraper_extractor import ScraperExtractor

HTTP_EXTRACTORS = {
    SourceType.API: APIExtractor,
    SourceType.FEED: FeedExtractor,
    SourceType.AGGREGATOR: AggregatorExtractor,
    SourceType.REGULATOR: RegulatorExtractor,
}


def get_extractor(
    source: DataSource,
    scraper=None,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> BaseExtractor:
    """Build the fetch strategy for ``source``."""
    source_type = SourceType(source.source_type)
    if source_type == SourceType.SCRAPER:
        return ScraperExtractor(source, scraper)
    return HTTP_EXTRACTORS[source_type](
        source,
        max_retries=max_retries,
        retry_delay=retry_delay,
        timeout=timeout,
        transport=transport,
    )


__all__ = [
    "BaseExtractor",
    "HTTPExtractor",
    "APIExtractor",
    "AggregatorExtractor",
    "FeedExtractor",
    "RegulatorExtractor",
    "ScraperExtractor",
    "get_extractor",
]
