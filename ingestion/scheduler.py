"""
Scheduled ingestion: start a job for every active source that is due.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Any, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import async_session_maker
from core.exceptions import IngestionException
from ingestion.runner import IngestionRunner
from models.base import JobType, SourceStatus, SyncFrequency, utcnow
from models.data_source import DataSource

logger = logging.getLogger(__name__)

FREQUENCY_INTERVALS = {
    SyncFrequency.HOURLY: timedelta(hours=1),
    SyncFrequency.DAILY: timedelta(days=1),
    SyncFrequency.WEEKLY: timedelta(weeks=1),
    SyncFrequency.MONTHLY: timedelta(days=30),
}


def next_sync_after(frequency: Optional[SyncFrequency], now: datetime) -> datetime:
    interval = FREQUENCY_INTERVALS.get(SyncFrequency(frequency) if frequency else SyncFrequency.DAILY)
    return now + interval


async def due_sources(session: AsyncSession, now: Optional[datetime] = None) -> List[DataSource]:
    now = now or utcnow()
    result = await session.execute(
        select(DataSource)
        .where(
            DataSource.status == SourceStatus.ACTIVE,
            or_(DataSource.next_sync_at.is_(None), DataSource.next_sync_at <= now)
        )
        .order_by(DataSource.created_at)
    )
    return list(result.scalars().all())


async def run_due_sources(session: AsyncSession, runner: IngestionRunner) -> Dict[str, Any]:
    """
    Start a scheduled job for every due source, one after another.

    A source whose job completes gets ``next_sync_at`` advanced by its sync
    frequency. Failing sources are reported and stay due for the next tick.

    Returns:
        dict with sources_checked, jobs_started and per-source results
    """
    sources = await due_sources(session)
    targets = [(s.id, s.name, s.sync_frequency) for s in sources]
    logger.info(f"Scheduled ingestion: {len(targets)} sources due")

    results: List[Dict[str, Any]] = []
    jobs_started = 0
    for source_id, name, frequency in targets:
        try:
            outcome = await runner.start_ingestion(source_id, job_type=JobType.SCHEDULED)
        except IngestionException as e:
            logger.warning(
                f"Scheduled ingestion failed for {name}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            results.append({
                "source_id": source_id,
                "source_name": name,
                "success": False,
                "job_id": e.context.get("job_id"),
                "error": e.message,
            })
            if e.context.get("job_id"):
                jobs_started += 1
            continue

        jobs_started += 1
        next_sync = next_sync_after(frequency, utcnow())
        source = await session.get(DataSource, source_id, populate_existing=True)
        source.next_sync_at = next_sync
        await session.commit()

        results.append({
            "source_id": source_id,
            "source_name": name,
            "success": True,
            "job_id": str(outcome.job_id),
            "stats": outcome.stats,
            "next_sync_at": next_sync,
        })

    return {
        "message": f"Scheduled ingestion finished for {len(targets)} sources",
        "sources_checked": len(targets),
        "jobs_started": jobs_started,
        "results": results,
    }


class IngestionScheduler:
    """In-process APScheduler driver for ``run_due_sources``."""

    def __init__(self, runner_factory: Callable[[AsyncSession], IngestionRunner],
                 interval_minutes: int = settings.SCHEDULER_INTERVAL_MINUTES,
                 session_factory=async_session_maker):
        self.scheduler = AsyncIOScheduler()
        self.runner_factory = runner_factory
        self.interval_minutes = interval_minutes
        self.session_factory = session_factory

    async def run_scheduled_ingestion(self):
        """Job to run scheduled ingestion"""
        logger.info("Scheduler: checking due data sources")
        async with self.session_factory() as session:
            try:
                summary = await run_due_sources(session, self.runner_factory(session))
                logger.info(
                    f"Scheduler: {summary['jobs_started']} jobs started "
                    f"for {summary['sources_checked']} due sources"
                )
            except Exception as e:
                logger.error(f"Scheduler: scheduled ingestion failed - {e}", exc_info=True)

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_scheduled_ingestion,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="scheduled_ingestion",
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(f"Ingestion scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Ingestion scheduler stopped")
