# ============================================================================
# File: ingestion/runner.py
# Description: Ingestion job orchestrator with per-record failure containment
# ============================================================================
"""
Ingestion Runner - creates jobs, fetches source data and processes products.

This module provides job orchestration with:
- Single-flight per data source (compare-and-swap on the source status)
- Explicit job state machine (pending -> running -> completed/failed/cancelled)
- Partial failure support (one bad record never loses the rest)
- Per-record units of work: normalize, upsert, duplicate check, consistency
  rules and an audit log line commit together or not at all
- Job counts persisted in one terminal write
"""

import json
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import httpx
import logging

from core.config import settings as default_settings
from core.exceptions import (
    IngestionException,
    IngestionFailedError,
    JobNotFoundError,
    SourceBusyError,
)
from ingestion.extractors import get_extractor
from ingestion.loaders.catalog_loader import CatalogLoader
from ingestion.quality.consistency import ConsistencyChecker, ConsistencyRule
from ingestion.quality.duplicates import DuplicateChecker, DuplicatePolicy
from ingestion.registry import SourceRegistry
from ingestion.scraper import ProductPageScraper
from ingestion.state import apply_transition, get_status
from ingestion.transformers.normalizer import ProductNormalizer
from models.base import JobStatus, JobType, LogLevel, SourceStatus
from models.ingestion_job import IngestionJob, IngestionLog

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    job_id: UUID
    status: JobStatus
    stats: Dict[str, int] = field(default_factory=dict)


def _jsonable(value: Any) -> Any:
    """Round-trip through JSON so any record can be stored in a log row."""
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return repr(value)[:1000]


class IngestionRunner:
    """
    Ingestion job orchestrator.

    Responsibilities:
    - Validate and acquire the data source
    - Drive the job through its state machine
    - Dispatch to the fetch strategy for the source type
    - Process every raw record as its own unit of work
    - Record accurate job counts and source sync bookkeeping
    """

    def __init__(
        self,
        db_session: AsyncSession,
        normalizer: ProductNormalizer,
        scraper: Optional[ProductPageScraper] = None,
        duplicate_policy: Optional[DuplicatePolicy] = None,
        consistency_rules: Optional[List[ConsistencyRule]] = None,
        config=None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.db = db_session
        self.config = config or default_settings
        self.normalizer = normalizer
        self.scraper = scraper or ProductPageScraper(timeout=self.config.HTTP_TIMEOUT, transport=transport)
        self.transport = transport
        self.registry = SourceRegistry(db_session, error_threshold=self.config.SOURCE_ERROR_THRESHOLD)
        self.loader = CatalogLoader(db_session)
        self.duplicates = DuplicateChecker(db_session, duplicate_policy)
        self.consistency = ConsistencyChecker(db_session, consistency_rules)

    async def start_ingestion(
        self,
        source_id: UUID,
        job_type: JobType = JobType.MANUAL
    ) -> IngestionResult:
        """
        Run one ingestion job against a data source.

        Pipeline phases:
        1. Acquire - validate the source and mark it syncing
        2. Create - insert the job (pending) and move it to running
        3. Fetch - dispatch to the strategy for the source type
        4. Process - normalize, upsert, check and log each record
        5. Finalize - terminal write of counts and source bookkeeping

        Args:
            source_id: Data source to ingest
            job_type: scheduled, manual or webhook

        Returns:
            IngestionResult with the job id, final status and counts

        Raises:
            SourceNotFoundError: Unknown source
            SourceNotActiveError: Source is paused or in error (no job created)
            SourceBusyError: Another job holds the source (no job created)
            IngestionFailedError: Fetch failed; the job is marked failed
        """
        # --------------------------------------------------
        # PHASE 1: ACQUIRE SOURCE
        # --------------------------------------------------
        source = await self.registry.get_source(source_id)
        if source.status == SourceStatus.SYNCING:
            raise SourceBusyError(
                "Data source already has a running ingestion job",
                context={"data_source_id": str(source_id)}
            )
        source = await self.registry.require_active(source_id)
        sync_token = await self.registry.acquire(source_id)
        if sync_token is None:
            raise SourceBusyError(
                "Data source already has a running ingestion job",
                context={"data_source_id": str(source_id)}
            )

        try:
            return await self._run_job(source, job_type)
        finally:
            await self.registry.release(source_id, sync_token)

    async def _run_job(self, source, job_type: JobType) -> IngestionResult:
        source_id = source.id
        provider_name = source.provider_name
        source_name = source.name
        counts = {
            "products_found": 0,
            "products_new": 0,
            "products_updated": 0,
            "products_duplicates": 0,
            "products_errors": 0,
        }

        # --------------------------------------------------
        # PHASE 2: CREATE JOB
        # --------------------------------------------------
        job = IngestionJob(data_source_id=source_id, status=JobStatus.PENDING, job_type=job_type)
        self.db.add(job)
        await self.db.commit()
        job_id = job.id

        self._log(job_id, LogLevel.INFO, "Ingestion job created", details={
            "data_source": source_name,
            "source_type": source.source_type.value,
            "job_type": JobType(job_type).value,
        })
        await apply_transition(self.db, job_id, JobStatus.RUNNING, expected=JobStatus.PENDING)
        await self.db.commit()
        logger.info(f"Job {job_id} running for source {source_name}")

        # --------------------------------------------------
        # PHASE 3: FETCH
        # --------------------------------------------------
        try:
            extractor = get_extractor(
                source,
                scraper=self.scraper,
                max_retries=self.config.MAX_RETRIES,
                retry_delay=self.config.RETRY_DELAY,
                timeout=self.config.HTTP_TIMEOUT,
                transport=self.transport,
            )
            records = await extractor.fetch()
        except Exception as e:
            await self.db.rollback()
            await self._fail_job(job_id, source_id, e)
            raise IngestionFailedError(
                f"Ingestion failed for {source_name}: {self._error_message(e)}",
                context={"job_id": str(job_id), "data_source_id": str(source_id)},
                original_exception=e
            )

        counts["products_found"] = len(records)
        logger.info(f"Fetched {len(records)} records for job {job_id}")

        # --------------------------------------------------
        # PHASE 4: PROCESS RECORDS
        # --------------------------------------------------
        cancelled = False
        for index, raw in enumerate(records):
            if await get_status(self.db, job_id) == JobStatus.CANCELLED:
                cancelled = True
                logger.info(f"Job {job_id} cancelled after {index} of {len(records)} records")
                break

            try:
                is_new, has_duplicates = await self._process_record(job_id, source_id, provider_name, raw)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                counts["products_errors"] += 1

                error_detail = {
                    "index": index,
                    "error_type": type(e).__name__,
                    "error_message": self._error_message(e),
                }
                if isinstance(e, IngestionException):
                    error_detail["context"] = _jsonable(e.context)
                logger.error(
                    f"Failed to process record {index} of job {job_id}: {error_detail['error_message']}",
                    extra={"error_context": error_detail}
                )
                self._log(job_id, LogLevel.ERROR, "Failed to process product", details={
                    **error_detail,
                    "record": _jsonable(raw),
                })
                await self.db.commit()
                continue

            if is_new:
                counts["products_new"] += 1
                if has_duplicates:
                    counts["products_duplicates"] += 1
            else:
                counts["products_updated"] += 1

        # --------------------------------------------------
        # PHASE 5: FINALIZE
        # --------------------------------------------------
        if not cancelled:
            completed = await apply_transition(
                self.db, job_id, JobStatus.COMPLETED, expected=JobStatus.RUNNING, **counts
            )
            if completed:
                await self.registry.record_success(source_id)
                self._log(job_id, LogLevel.INFO, "Ingestion completed", details=counts)
            else:
                # cancelled between the last record and the terminal write
                cancelled = True
            await self.db.commit()

        if cancelled:
            self._log(job_id, LogLevel.INFO, "Ingestion stopped: job was cancelled", details=counts)
            await self.db.commit()

        status = await get_status(self.db, job_id)
        logger.info(
            f"Job {job_id} {status.value}: found={counts['products_found']}, "
            f"new={counts['products_new']}, updated={counts['products_updated']}, "
            f"duplicates={counts['products_duplicates']}, errors={counts['products_errors']}"
        )
        return IngestionResult(job_id=job_id, status=status, stats=counts)

    async def _process_record(
        self,
        job_id: UUID,
        source_id: UUID,
        provider_name: str,
        raw: Any
    ) -> Tuple[bool, bool]:
        """
        Normalize, upsert and check one raw record. The caller commits.

        Returns:
            (is_new, has_duplicates)
        """
        normalized = await self.normalizer.normalize(raw, default_insurer=provider_name)
        entry, is_new = await self.loader.upsert(source_id, normalized)
        product_id = entry.id

        # Duplicate detection only for new rows; updates keep their identity
        duplicates = await self.duplicates.detect_duplicates(product_id) if is_new else []
        alerts = await self.consistency.check_product(entry)

        audit = normalized.ai_normalized_data
        if audit.get("ai_status") == "failed":
            self._log(job_id, LogLevel.WARNING, "AI enrichment failed; stored structured fields only",
                      product_id=product_id,
                      details={"external_id": normalized.external_id, "error": audit.get("ai_error")})

        self._log(
            job_id,
            LogLevel.INFO,
            f"Product {'created' if is_new else 'updated'}: {normalized.product_name}",
            product_id=product_id,
            details={
                "external_id": normalized.external_id,
                "is_new": is_new,
                "duplicates": [str(d.duplicate_product_id) for d in duplicates],
                "alerts": sorted({a.alert_type for a in alerts}),
            }
        )
        return is_new, bool(duplicates)

    async def _fail_job(self, job_id: UUID, source_id: UUID, error: Exception) -> None:
        message = self._error_message(error)
        context = error.to_dict() if isinstance(error, IngestionException) else {
            "error_type": type(error).__name__,
            "message": message,
        }
        logger.error(
            f"Job {job_id} failed during fetch: {message}",
            extra={"error_context": context}
        )

        await apply_transition(
            self.db, job_id, JobStatus.FAILED, expected=JobStatus.RUNNING, error_message=message
        )
        await self.registry.record_failure(source_id, message)
        self._log(job_id, LogLevel.ERROR, "Ingestion failed while fetching source data", details=_jsonable(context))
        await self.db.commit()

    @staticmethod
    def _error_message(error: Exception) -> str:
        if isinstance(error, IngestionException):
            return error.message
        return str(error) or type(error).__name__

    def _log(
        self,
        job_id: UUID,
        level: LogLevel,
        message: str,
        product_id: Optional[UUID] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """Append an audit line to the job; committed with the current unit."""
        self.db.add(IngestionLog(
            job_id=job_id,
            log_level=level,
            message=message[:1000],
            product_id=product_id,
            details=details,
        ))

    # ------------------------------------------------------------------
    # Job queries and operator actions
    # ------------------------------------------------------------------

    async def get_job_status(self, job_id: UUID) -> Tuple[IngestionJob, List[IngestionLog]]:
        """
        Fetch a job and its most recent logs (newest first).

        Raises:
            JobNotFoundError: Unknown job id
        """
        job = await self.db.get(IngestionJob, job_id, populate_existing=True)
        if job is None:
            raise JobNotFoundError("Ingestion job not found", context={"job_id": str(job_id)})

        result = await self.db.execute(
            select(IngestionLog)
            .where(IngestionLog.job_id == job_id)
            .order_by(IngestionLog.created_at.desc())
            .limit(self.config.JOB_LOG_LIMIT)
        )
        return job, list(result.scalars().all())

    async def cancel_job(self, job_id: UUID) -> bool:
        """
        Cancel a running job.

        Jobs in any other status are left untouched and False is returned.
        The source stays syncing until the job's own run hands it back; a
        source whose run died can then be reactivated by an operator
        (``SourceRegistry.update_source``).

        Raises:
            JobNotFoundError: Unknown job id
        """
        job = await self.db.get(IngestionJob, job_id, populate_existing=True)
        if job is None:
            raise JobNotFoundError("Ingestion job not found", context={"job_id": str(job_id)})
        current = JobStatus(job.status)

        cancelled = await apply_transition(self.db, job_id, JobStatus.CANCELLED, expected=JobStatus.RUNNING)
        if not cancelled:
            logger.info(f"Cancel ignored for job {job_id}: status is {current.value}")
            return False

        self._log(job_id, LogLevel.INFO, "Job cancelled by operator")
        await self.db.commit()
        logger.info(f"Job {job_id} cancelled")
        return True

    async def list_jobs(self, source_id: Optional[UUID] = None, limit: int = 20) -> List[IngestionJob]:
        query = (
            select(IngestionJob)
            .order_by(IngestionJob.created_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        if source_id is not None:
            query = query.where(IngestionJob.data_source_id == source_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())
