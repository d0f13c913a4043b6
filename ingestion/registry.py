"""
Source registry: read access to configured data sources plus the
single-flight marker that keeps one job per source at a time.
"""

import uuid
from typing import List, Optional, Dict, Any
from uuid import UUID
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from models.base import JobStatus, SourceStatus, utcnow
from models.data_source import DataSource
from models.ingestion_job import IngestionJob
from core.exceptions import SourceNotFoundError, SourceNotActiveError, SourceBusyError

logger = logging.getLogger(__name__)


class SourceRegistry:
    """
    Data source access for the job runner and operator routes.

    ``acquire``/``release`` implement a compare-and-swap on the status
    column: ``active -> syncing`` before dispatch, ``syncing -> active`` (or
    ``error``) afterwards.
    """

    def __init__(self, db_session: AsyncSession, error_threshold: int = 5):
        self.db = db_session
        self.error_threshold = error_threshold

    async def list_sources(self, status: Optional[SourceStatus] = None) -> List[DataSource]:
        """List sources newest first, optionally filtered by status."""
        query = (
            select(DataSource)
            .order_by(DataSource.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if status is not None:
            query = query.where(DataSource.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_source(self, source_id: UUID) -> DataSource:
        source = await self.db.get(DataSource, source_id, populate_existing=True)
        if source is None:
            raise SourceNotFoundError(
                "Data source not found",
                context={"data_source_id": str(source_id)}
            )
        return source

    async def require_active(self, source_id: UUID) -> DataSource:
        """
        Fetch a source that may start a job.

        Raises:
            SourceNotFoundError: Unknown id
            SourceNotActiveError: Status is anything but active
        """
        source = await self.get_source(source_id)
        if source.status != SourceStatus.ACTIVE:
            raise SourceNotActiveError(
                "Data source is not active",
                context={
                    "data_source_id": str(source_id),
                    "status": SourceStatus(source.status).value
                }
            )
        return source

    async def acquire(self, source_id: UUID) -> Optional[UUID]:
        """
        Atomically mark the source as syncing.

        Returns:
            The sync token the holder passes to ``release``, or None when
            another job already holds the source (or it left active)
        """
        token = uuid.uuid4()
        result = await self.db.execute(
            update(DataSource)
            .where(DataSource.id == source_id, DataSource.status == SourceStatus.ACTIVE)
            .values(status=SourceStatus.SYNCING, sync_token=token, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            logger.warning(f"Data source {source_id} is already syncing")
            return None
        return token

    async def release(self, source_id: UUID, sync_token: UUID) -> SourceStatus:
        """
        Hand the source back after a run.

        Only the holder of ``sync_token`` releases; a source an operator has
        since recovered and another job re-acquired is left alone. Sources
        whose error_count reached the threshold park in ``error`` until an
        operator reactivates them.

        Returns:
            The status the source is in afterwards
        """
        source = await self.get_source(source_id)
        target = SourceStatus.ACTIVE
        if (source.error_count or 0) >= self.error_threshold:
            target = SourceStatus.ERROR

        result = await self.db.execute(
            update(DataSource)
            .where(
                DataSource.id == source_id,
                DataSource.status == SourceStatus.SYNCING,
                DataSource.sync_token == sync_token,
            )
            .values(status=target, sync_token=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            logger.info(f"Data source {source_id} no longer held by this run; left as {source.status.value}")
            return SourceStatus(source.status)
        if target == SourceStatus.ERROR:
            logger.warning(
                f"Data source {source.name} reached {source.error_count} consecutive errors; "
                f"parking in error state"
            )
        return target

    async def record_success(self, source_id: UUID) -> None:
        """Refresh sync bookkeeping after a completed run. The caller commits."""
        await self.db.execute(
            update(DataSource)
            .where(DataSource.id == source_id)
            .values(last_sync_at=utcnow(), error_count=0, last_error=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def record_failure(self, source_id: UUID, error_message: str) -> None:
        """Count a failed dispatch against the source. The caller commits."""
        await self.db.execute(
            update(DataSource)
            .where(DataSource.id == source_id)
            .values(
                error_count=DataSource.error_count + 1,
                last_error=error_message[:2000],
                updated_at=utcnow()
            )
            .execution_options(synchronize_session=False)
        )

    async def create_source(self, payload: Dict[str, Any]) -> DataSource:
        source = DataSource(**payload)
        self.db.add(source)
        await self.db.commit()
        await self.db.refresh(source)
        logger.info(f"Created data source {source.name} ({source.source_type.value})")
        return source

    async def update_source(self, source_id: UUID, payload: Dict[str, Any]) -> DataSource:
        """
        Apply operator edits; status flips only, sources are never deleted.

        A syncing source may be moved on by an operator once none of its
        jobs is running, which recovers a source stranded by a crashed run.

        Raises:
            SourceBusyError: Status change while a job for the source is running
        """
        source = await self.get_source(source_id)
        if source.status == SourceStatus.SYNCING and "status" in payload:
            running_job = await self.db.scalar(
                select(IngestionJob.id)
                .where(IngestionJob.data_source_id == source_id, IngestionJob.status == JobStatus.RUNNING)
                .limit(1)
            )
            if running_job is not None:
                raise SourceBusyError(
                    "Data source has a running job; cancel it before changing the status",
                    context={"data_source_id": str(source_id), "job_id": str(running_job)}
                )
            logger.warning(f"Operator recovered stranded data source {source.name}")
            source.sync_token = None
        if source.status == SourceStatus.ERROR and payload.get("status") == SourceStatus.ACTIVE:
            # reactivation starts a fresh error streak
            source.error_count = 0
        for field, value in payload.items():
            setattr(source, field, value)
        source.updated_at = utcnow()
        await self.db.commit()
        await self.db.refresh(source)
        logger.info(f"Updated data source {source.name}: {sorted(payload)}")
        return source
