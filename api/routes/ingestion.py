"""
Ingestion job endpoints: start, inspect, list and cancel jobs, plus the
scheduled sweep over due sources.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.dependencies import get_db, get_registry, get_runner, require_api_key
from ingestion.registry import SourceRegistry
from ingestion.runner import IngestionRunner
from ingestion.scheduler import run_due_sources
from schemas.api import (
    CancelJobResponse,
    DataIngestionRequest,
    DataSourceResponse,
    JobLogResponse,
    JobResponse,
    JobStats,
    JobStatusResponse,
    ScheduledIngestionResponse,
    SourceListResponse,
    StartIngestionResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Ingestion"], dependencies=[Depends(require_api_key)])


@router.post("/data-ingestion")
async def data_ingestion(
    body: DataIngestionRequest,
    request: Request,
    runner: IngestionRunner = Depends(get_runner),
    registry: SourceRegistry = Depends(get_registry)
):
    """
    Dispatch on ``action``:

    - start_ingestion: run a job for ``data_source_id`` and return its counts
    - get_job_status: job row plus its most recent logs
    - list_sources: every configured data source
    - cancel_job: stop a running job (no-op for any other status)
    """
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] POST /data-ingestion action={body.action}")

    if body.action == "start_ingestion":
        result = await runner.start_ingestion(body.data_source_id, job_type=body.job_type)
        return StartIngestionResponse(
            success=True,
            job_id=result.job_id,
            status=result.status,
            stats=JobStats(**result.stats),
        )

    if body.action == "get_job_status":
        job, logs = await runner.get_job_status(body.job_id)
        return JobStatusResponse(
            job=JobResponse.model_validate(job),
            logs=[JobLogResponse.model_validate(log) for log in logs],
        )

    if body.action == "list_sources":
        sources = await registry.list_sources()
        return SourceListResponse(sources=[DataSourceResponse.model_validate(s) for s in sources])

    cancelled = await runner.cancel_job(body.job_id)
    return CancelJobResponse(
        message="Job cancelled" if cancelled else "Job is not running; nothing to cancel",
        cancelled=cancelled,
    )


@router.post("/scheduled-ingestion", response_model=ScheduledIngestionResponse)
async def scheduled_ingestion(
    db: AsyncSession = Depends(get_db),
    runner: IngestionRunner = Depends(get_runner)
):
    """Start a scheduled job for every active source whose next sync is due."""
    summary = await run_due_sources(db, runner)
    return ScheduledIngestionResponse(**summary)
