"""
Product feed extractor

Reads RSS/Atom product feeds with feedparser, or JSON feeds that list
entries under ``items``/``entries``.
"""

import asyncio
import feedparser
import httpx
from typing import List, Dict, Any
from datetime import datetime
from ingestion.extractors.api_extractor import HTTPExtractor
from core.exceptions import APIExtractionError
import logging

logger = logging.getLogger(__name__)


class FeedExtractor(HTTPExtractor):
    """Extract product entries from RSS/Atom or JSON feeds"""

    RECORD_KEYS = ("items", "entries", "products")

    async def parse_response(self, response: httpx.Response) -> List[Any]:
        content_type = response.headers.get("content-type", "")
        body = response.text.lstrip()
        if "json" in content_type or body.startswith(("{", "[")):
            return self.records_from_json(self.parse_json(response))

        # Parse XML in thread pool
        feed = await asyncio.to_thread(feedparser.parse, response.text)

        if feed.bozo and not feed.entries:  # Feed parsing error
            raise APIExtractionError(
                f"Failed to parse feed: {feed.bozo_exception}",
                context={"api_url": self.endpoint, "source_name": self.source_name}
            )

        entries = [self._entry_to_record(entry) for entry in feed.entries]
        logger.info(f"Parsed {len(entries)} feed entries from {self.source_name}")
        return entries

    @staticmethod
    def _entry_to_record(entry) -> Dict[str, Any]:
        published = None
        if entry.get("published_parsed"):
            published = datetime(*entry.published_parsed[:6])
        elif entry.get("updated_parsed"):
            published = datetime(*entry.updated_parsed[:6])

        categories = [tag.get("term", "") for tag in entry.get("tags", []) if tag.get("term")]
        content = entry.get("content", [{}])[0].get("value", "") if entry.get("content") else ""

        record = {
            "id": entry.get("id") or entry.get("link"),
            "product_name": entry.get("title"),
            "description": entry.get("summary", entry.get("description", "")),
            "product_url": entry.get("link"),
            "insurer_name": entry.get("author") or None,
            "published": published.isoformat() if published else None,
            "categories": categories,
            "content": content,
        }
        if categories:
            record["policy_type"] = categories[0]
        return record
