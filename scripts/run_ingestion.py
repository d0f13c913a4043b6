"""
Run ingestion from the command line.

    python scripts/run_ingestion.py              # every due source
    python scripts/run_ingestion.py <source-id>  # one source, manual job
"""

import asyncio
import sys
import os
import logging
from uuid import UUID

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker, engine
from core.exceptions import IngestionException
from core.logging import setup_logging
from ingestion.ai_client import AIClient
from ingestion.runner import IngestionRunner
from ingestion.scheduler import run_due_sources
from ingestion.scraper import ProductPageScraper
from ingestion.quality.consistency import default_rules
from ingestion.quality.duplicates import DuplicatePolicy
from ingestion.transformers.normalizer import ProductNormalizer

logger = logging.getLogger(__name__)


def build_runner(session) -> IngestionRunner:
    ai_client = AIClient.from_settings(settings)
    return IngestionRunner(
        session,
        normalizer=ProductNormalizer(
            ai_client=ai_client,
            default_currency=settings.DEFAULT_CURRENCY,
            min_text_length=settings.AI_MIN_TEXT_LENGTH,
        ),
        scraper=ProductPageScraper(ai_client=ai_client, timeout=settings.HTTP_TIMEOUT),
        duplicate_policy=DuplicatePolicy.from_settings(settings),
        consistency_rules=default_rules(settings.STALE_VERIFICATION_DAYS),
        config=settings,
    )


async def run_ingestion(source_id=None) -> int:
    """Returns the process exit code."""
    try:
        async with async_session_maker() as session:
            runner = build_runner(session)

            if source_id is not None:
                try:
                    result = await runner.start_ingestion(source_id)
                except IngestionException as e:
                    logger.error(f"Ingestion failed: {e.message}", extra={"error_context": e.to_dict()})
                    return 1
                logger.info(f"Job {result.job_id} {result.status.value}: {result.stats}")
                return 0

            summary = await run_due_sources(session, runner)
            for item in summary["results"]:
                outcome = "ok" if item["success"] else f"failed ({item['error']})"
                logger.info(f"{item['source_name']}: {outcome}")
            logger.info(summary["message"])
            return 0 if all(item["success"] for item in summary["results"]) else 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    target = UUID(sys.argv[1]) if len(sys.argv) > 1 else None
    sys.exit(asyncio.run(run_ingestion(target)))
