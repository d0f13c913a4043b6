# ============================================================================
# File: tests/integration/test_failure_scenarios.py
# ============================================================================

import uuid

import httpx
import pytest
from sqlalchemy import func, select

from core.exceptions import (
    IngestionFailedError,
    JobNotFoundError,
    SourceBusyError,
    SourceNotActiveError,
    SourceNotFoundError,
)
from ingestion.registry import SourceRegistry
from ingestion.runner import IngestionRunner
from ingestion.state import apply_transition
from ingestion.transformers.normalizer import ProductNormalizer
from models.base import JobStatus, JobType, LogLevel, SourceStatus
from models.data_source import DataSource
from models.ingestion_job import IngestionJob, IngestionLog
from models.product_catalog import ProductCatalogEntry
from tests.fakes import CountingTransport, json_transport


async def count(db_session, model) -> int:
    return await db_session.scalar(select(func.count()).select_from(model))


def failing_transport(status_code: int = 500) -> CountingTransport:
    return CountingTransport(lambda request: httpx.Response(status_code, text="upstream down"))


class CancellingNormalizer(ProductNormalizer):
    """Cancels the running job while the first record is processed."""

    def __init__(self, session):
        super().__init__()
        self.session = session
        self.cancelled = False

    async def normalize(self, raw_record, default_insurer=None):
        if not self.cancelled:
            self.cancelled = True
            job_id = await self.session.scalar(
                select(IngestionJob.id).where(IngestionJob.status == JobStatus.RUNNING)
            )
            await apply_transition(self.session, job_id, JobStatus.CANCELLED, expected=JobStatus.RUNNING)
        return await super().normalize(raw_record, default_insurer=default_insurer)


@pytest.mark.asyncio
async def test_partial_failure_keeps_good_records(db_session, make_source, make_runner, mock_products):
    """
    Partial failure:
    1. Two malformed records sit between good ones
    2. Good records load; bad ones are counted and logged with the record
    3. The job still completes
    """
    records = [mock_products[0], {"name": "No identifier"}, "not a record", mock_products[1]]
    source = await make_source()
    runner = make_runner(transport=json_transport({"/products": records}))

    result = await runner.start_ingestion(source.id)

    assert result.status == JobStatus.COMPLETED
    assert result.stats["products_found"] == 4
    assert result.stats["products_new"] == 2
    assert result.stats["products_errors"] == 2
    assert await count(db_session, ProductCatalogEntry) == 2

    errors = (await db_session.execute(
        select(IngestionLog).where(
            IngestionLog.job_id == result.job_id,
            IngestionLog.log_level == LogLevel.ERROR,
        )
    )).scalars().all()
    assert len(errors) == 2
    recorded = sorted(str(log.details["record"]) for log in errors)
    assert recorded == sorted([str({"name": "No identifier"}), "not a record"])
    assert {log.details["error_type"] for log in errors} == {"NormalizationError"}

    job = await db_session.get(IngestionJob, result.job_id, populate_existing=True)
    assert job.products_errors == 2


@pytest.mark.asyncio
async def test_fetch_failure_marks_job_failed(db_session, make_source, make_runner):
    """
    Fetch failure:
    1. Upstream keeps answering 500 until retries run out
    2. The job is failed with the error message, and the error carries its id
    3. The source is released with its error streak incremented
    """
    source = await make_source()
    transport = failing_transport()
    runner = make_runner(transport=transport)

    with pytest.raises(IngestionFailedError) as exc_info:
        await runner.start_ingestion(source.id)

    error = exc_info.value
    assert error.status_code == 500
    assert len(transport.requests) == 2  # MAX_RETRIES in test settings

    job_id = uuid.UUID(error.context["job_id"])
    job, logs = await runner.get_job_status(job_id)
    assert job.status == JobStatus.FAILED
    assert "Server error" in job.error_message
    assert job.completed_at is not None
    assert any(log.log_level == LogLevel.ERROR for log in logs)

    refreshed = await db_session.get(DataSource, source.id, populate_existing=True)
    assert refreshed.status == SourceStatus.ACTIVE
    assert refreshed.error_count == 1
    assert "Server error" in refreshed.last_error
    assert await count(db_session, ProductCatalogEntry) == 0


@pytest.mark.asyncio
async def test_repeated_failures_park_the_source(db_session, make_source, make_runner):
    """
    Error threshold:
    1. Three consecutive failures (threshold 3 in test settings)
    2. The source moves to error and refuses further jobs
    """
    source = await make_source()
    runner = make_runner(transport=failing_transport(status_code=401))

    for _ in range(3):
        with pytest.raises(IngestionFailedError):
            await runner.start_ingestion(source.id)

    refreshed = await db_session.get(DataSource, source.id, populate_existing=True)
    assert refreshed.status == SourceStatus.ERROR
    assert refreshed.error_count == 3

    with pytest.raises(SourceNotActiveError):
        await runner.start_ingestion(source.id)
    assert await count(db_session, IngestionJob) == 3


@pytest.mark.asyncio
async def test_paused_source_creates_no_job(db_session, make_source, make_runner):
    source = await make_source(status=SourceStatus.PAUSED)

    with pytest.raises(SourceNotActiveError) as exc_info:
        await make_runner().start_ingestion(source.id)

    assert exc_info.value.status_code == 403
    assert await count(db_session, IngestionJob) == 0


@pytest.mark.asyncio
async def test_busy_source_creates_no_job(db_session, make_source, make_runner):
    source = await make_source()
    await SourceRegistry(db_session).acquire(source.id)

    with pytest.raises(SourceBusyError) as exc_info:
        await make_runner().start_ingestion(source.id)

    assert exc_info.value.status_code == 409
    assert await count(db_session, IngestionJob) == 0
    refreshed = await db_session.get(DataSource, source.id, populate_existing=True)
    assert refreshed.status == SourceStatus.SYNCING


@pytest.mark.asyncio
async def test_unknown_source(make_runner):
    with pytest.raises(SourceNotFoundError):
        await make_runner().start_ingestion(uuid.uuid4())


@pytest.mark.asyncio
async def test_cancellation_stops_processing(db_session, make_source, test_settings, mock_products):
    """
    Cancellation:
    1. The job is cancelled while the first record is processed
    2. The runner stops before the next record and keeps the cancelled status
    3. The source is handed back
    """
    source = await make_source()
    runner = IngestionRunner(
        db_session,
        normalizer=CancellingNormalizer(db_session),
        config=test_settings,
        transport=json_transport({"/products": mock_products}),
    )

    result = await runner.start_ingestion(source.id)

    assert result.status == JobStatus.CANCELLED
    assert result.stats["products_found"] == 2
    assert result.stats["products_new"] == 1
    assert await count(db_session, ProductCatalogEntry) == 1

    job, logs = await runner.get_job_status(result.job_id)
    assert job.status == JobStatus.CANCELLED
    assert "Ingestion stopped: job was cancelled" in [log.message for log in logs]

    refreshed = await db_session.get(DataSource, source.id, populate_existing=True)
    assert refreshed.status == SourceStatus.ACTIVE


@pytest.mark.asyncio
async def test_cancel_job(db_session, make_source, make_runner):
    """
    Operator cancel:
    1. A running job is cancelled; cancelling again is a no-op
    2. The source stays held until the run that owns it hands it back
    """
    source = await make_source()
    registry = SourceRegistry(db_session)
    token = await registry.acquire(source.id)
    job = IngestionJob(data_source_id=source.id, status=JobStatus.RUNNING, job_type=JobType.MANUAL)
    db_session.add(job)
    await db_session.commit()
    job_id = job.id
    runner = make_runner()

    assert await runner.cancel_job(job_id) is True
    assert await runner.cancel_job(job_id) is False

    job_row, logs = await runner.get_job_status(job_id)
    assert job_row.status == JobStatus.CANCELLED
    assert job_row.completed_at is not None
    assert [log.message for log in logs] == ["Job cancelled by operator"]
    assert (await registry.get_source(source.id)).status == SourceStatus.SYNCING

    await registry.release(source.id, token)
    assert (await registry.get_source(source.id)).status == SourceStatus.ACTIVE


@pytest.mark.asyncio
async def test_cancelled_run_cannot_release_a_newer_holder(db_session, make_source):
    """
    Single flight across a cancel:
    1. Job A is cancelled while its run is still going
    2. No second job can take the source until A's run hands it back
    3. After an operator recovers the source and job B takes it, A's late
       release leaves B holding it
    """
    source = await make_source()
    registry = SourceRegistry(db_session)
    token_a = await registry.acquire(source.id)
    job_a = IngestionJob(data_source_id=source.id, status=JobStatus.RUNNING, job_type=JobType.MANUAL)
    db_session.add(job_a)
    await db_session.commit()
    job_a_id = job_a.id

    await apply_transition(db_session, job_a_id, JobStatus.CANCELLED, expected=JobStatus.RUNNING)
    await db_session.commit()
    assert await registry.acquire(source.id) is None

    await registry.update_source(source.id, {"status": SourceStatus.ACTIVE})
    token_b = await registry.acquire(source.id)
    assert token_b is not None

    await registry.release(source.id, token_a)

    assert (await registry.get_source(source.id)).status == SourceStatus.SYNCING
    assert await registry.acquire(source.id) is None
    assert await registry.release(source.id, token_b) == SourceStatus.ACTIVE


@pytest.mark.asyncio
async def test_stranded_pending_job_source_is_recoverable(db_session, make_source, make_runner, mock_products):
    """
    Crash between job insert and dispatch:
    1. The source is left syncing with a pending job
    2. Cancel is a no-op for the pending job, and starting again is refused
    3. An operator reactivates the source and ingestion runs again
    """
    source = await make_source()
    await SourceRegistry(db_session).acquire(source.id)
    stranded = IngestionJob(data_source_id=source.id, status=JobStatus.PENDING, job_type=JobType.MANUAL)
    db_session.add(stranded)
    await db_session.commit()
    stranded_id = stranded.id
    runner = make_runner(transport=json_transport({"/products": mock_products}))

    assert await runner.cancel_job(stranded_id) is False
    with pytest.raises(SourceBusyError):
        await runner.start_ingestion(source.id)

    await runner.registry.update_source(source.id, {"status": SourceStatus.ACTIVE})
    result = await runner.start_ingestion(source.id)

    assert result.status == JobStatus.COMPLETED
    assert (await runner.get_job_status(stranded_id))[0].status == JobStatus.PENDING
    refreshed = await db_session.get(DataSource, source.id, populate_existing=True)
    assert refreshed.status == SourceStatus.ACTIVE


@pytest.mark.asyncio
async def test_cancel_completed_job_is_rejected(db_session, make_source, make_runner, mock_products):
    """Cancelling a finished job leaves its row untouched"""
    source = await make_source()
    runner = make_runner(transport=json_transport({"/products": mock_products}))
    result = await runner.start_ingestion(source.id)
    before, _ = await runner.get_job_status(result.job_id)
    snapshot = (before.status, before.completed_at, before.stats)

    assert await runner.cancel_job(result.job_id) is False

    after, logs = await runner.get_job_status(result.job_id)
    assert (after.status, after.completed_at, after.stats) == snapshot
    assert snapshot[0] == JobStatus.COMPLETED
    assert snapshot[2]["products_new"] == 2
    assert "Job cancelled by operator" not in [log.message for log in logs]


@pytest.mark.asyncio
async def test_cancel_unknown_job(make_runner):
    with pytest.raises(JobNotFoundError):
        await make_runner().cancel_job(uuid.uuid4())
