"""
Insurance product ingestion components.

Modules:
    registry: Data source access and the single-flight syncing marker
    state: Ingestion job state machine
    runner: Job orchestrator (fetch, normalize, upsert, check, log)
    scheduler: Due-source sweep plus the APScheduler driver
    scraper: Product page scraping (CSS selector rules or AI extraction)
    ai_client: Chat completion client returning JSON objects
    product_ingest: Webhook publishing into the marketplace tables

Subpackages:
    extractors: Fetch strategies per source type (api, feed, aggregator,
        regulator, scraper)
    transformers: Raw record normalization into NormalizedProduct
    loaders: Idempotent catalog upsert
    quality: Duplicate detection and consistency rules

Every record in a job is its own unit of work: one bad record is logged,
counted and skipped while the rest of the job carries on.

Usage:
    from ingestion.runner import IngestionRunner

    runner = IngestionRunner(session, normalizer=ProductNormalizer(ai_client))
    result = await runner.start_ingestion(source_id)
    print(result.status, result.stats["products_new"])
"""

__all__ = [
    "IngestionRunner",
    "IngestionResult",
    "SourceRegistry",
    "ProductNormalizer",
    "ProductPageScraper",
    "AIClient",
    "ProductIngestService",
    "IngestionScheduler",
]
