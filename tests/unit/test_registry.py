"""
Unit tests for the source registry and single-flight marker
"""

import uuid

import pytest

from core.config import Settings
from core.exceptions import SourceBusyError, SourceNotActiveError, SourceNotFoundError
from ingestion.registry import SourceRegistry
from models.base import JobStatus, JobType, SourceStatus, SourceType
from models.ingestion_job import IngestionJob


class TestSourceLookup:
    """Test reading sources"""

    @pytest.mark.asyncio
    async def test_get_unknown_source(self, db_session):
        """Test unknown ids raise SourceNotFoundError (404)"""
        registry = SourceRegistry(db_session)

        with pytest.raises(SourceNotFoundError) as exc_info:
            await registry.get_source(uuid.uuid4())

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_require_active_rejects_paused(self, db_session, make_source):
        """Test paused sources cannot start jobs"""
        source = await make_source(status=SourceStatus.PAUSED)
        registry = SourceRegistry(db_session)

        with pytest.raises(SourceNotActiveError) as exc_info:
            await registry.require_active(source.id)

        assert exc_info.value.status_code == 403
        assert exc_info.value.context["status"] == "paused"

    @pytest.mark.asyncio
    async def test_list_sources_filters_by_status(self, db_session, make_source):
        """Test status filter on list_sources"""
        await make_source(name="active one")
        await make_source(name="paused one", status=SourceStatus.PAUSED)
        registry = SourceRegistry(db_session)

        all_sources = await registry.list_sources()
        paused = await registry.list_sources(SourceStatus.PAUSED)

        assert len(all_sources) == 2
        assert [s.name for s in paused] == ["paused one"]


class TestSingleFlight:
    """Test acquire/release compare-and-swap"""

    @pytest.mark.asyncio
    async def test_second_acquire_fails(self, db_session, make_source):
        """Test only one caller can hold a source"""
        source = await make_source()
        registry = SourceRegistry(db_session)

        assert await registry.acquire(source.id) is not None
        assert await registry.acquire(source.id) is None

        refreshed = await registry.get_source(source.id)
        assert refreshed.status == SourceStatus.SYNCING

    @pytest.mark.asyncio
    async def test_release_returns_to_active(self, db_session, make_source):
        """Test release hands the source back"""
        source = await make_source()
        registry = SourceRegistry(db_session)
        token = await registry.acquire(source.id)

        status = await registry.release(source.id, token)

        refreshed = await registry.get_source(source.id)
        assert status == SourceStatus.ACTIVE
        assert refreshed.status == SourceStatus.ACTIVE
        assert refreshed.sync_token is None

    @pytest.mark.asyncio
    async def test_release_with_another_token_is_ignored(self, db_session, make_source):
        """Test a run cannot release a source someone else now holds"""
        source = await make_source()
        registry = SourceRegistry(db_session)
        await registry.acquire(source.id)

        status = await registry.release(source.id, uuid.uuid4())

        assert status == SourceStatus.SYNCING
        assert (await registry.get_source(source.id)).status == SourceStatus.SYNCING

    @pytest.mark.asyncio
    async def test_release_parks_source_at_error_threshold(self, db_session, make_source):
        """Test repeated failures park the source in error"""
        source = await make_source()
        registry = SourceRegistry(db_session, error_threshold=2)
        token = await registry.acquire(source.id)

        await registry.record_failure(source.id, "upstream down")
        await registry.record_failure(source.id, "upstream still down")
        await db_session.commit()
        status = await registry.release(source.id, token)

        refreshed = await registry.get_source(source.id)
        assert status == SourceStatus.ERROR
        assert refreshed.status == SourceStatus.ERROR
        assert refreshed.error_count == 2
        assert refreshed.last_error == "upstream still down"

    def test_default_threshold_matches_settings(self):
        """Test the registry parks sources after the configured five failures by default"""
        assert Settings.model_fields["SOURCE_ERROR_THRESHOLD"].default == 5
        assert SourceRegistry(db_session=None).error_threshold == 5

    @pytest.mark.asyncio
    async def test_record_success_resets_errors(self, db_session, make_source):
        """Test a completed run clears the error streak"""
        source = await make_source(error_count=3, last_error="boom")
        registry = SourceRegistry(db_session)

        await registry.record_success(source.id)
        await db_session.commit()

        refreshed = await registry.get_source(source.id)
        assert refreshed.error_count == 0
        assert refreshed.last_error is None
        assert refreshed.last_sync_at is not None


class TestSourceAdministration:
    """Test operator create/update"""

    @pytest.mark.asyncio
    async def test_create_source(self, db_session):
        """Test creating a source with defaults"""
        registry = SourceRegistry(db_session)

        source = await registry.create_source({
            "name": "Regulator register",
            "provider_name": "Financial Regulator",
            "source_type": SourceType.REGULATOR,
            "configuration": {"api_endpoint": "https://register.example.org/products.csv", "format": "csv"},
        })

        assert source.id is not None
        assert source.status == SourceStatus.ACTIVE
        assert source.error_count == 0

    @pytest.mark.asyncio
    async def test_status_change_while_job_runs_is_rejected(self, db_session, make_source):
        """Test operators cannot flip a source whose job is running"""
        source = await make_source()
        registry = SourceRegistry(db_session)
        await registry.acquire(source.id)
        db_session.add(IngestionJob(data_source_id=source.id, status=JobStatus.RUNNING, job_type=JobType.MANUAL))
        await db_session.commit()

        with pytest.raises(SourceBusyError) as exc_info:
            await registry.update_source(source.id, {"status": SourceStatus.PAUSED})

        assert exc_info.value.status_code == 409
        assert (await registry.get_source(source.id)).status == SourceStatus.SYNCING

    @pytest.mark.asyncio
    async def test_stranded_syncing_source_can_be_recovered(self, db_session, make_source):
        """Test a syncing source with no running job can be reactivated"""
        source = await make_source()
        registry = SourceRegistry(db_session)
        stale_token = await registry.acquire(source.id)
        db_session.add(IngestionJob(data_source_id=source.id, status=JobStatus.PENDING, job_type=JobType.MANUAL))
        await db_session.commit()

        updated = await registry.update_source(source.id, {"status": SourceStatus.ACTIVE})

        assert updated.status == SourceStatus.ACTIVE
        assert updated.sync_token is None
        assert await registry.acquire(source.id) is not None
        # the crashed run's token no longer releases the source
        await registry.release(source.id, stale_token)
        assert (await registry.get_source(source.id)).status == SourceStatus.SYNCING

    @pytest.mark.asyncio
    async def test_reactivation_clears_error_count(self, db_session, make_source):
        """Test moving a source out of error starts a fresh streak"""
        source = await make_source(status=SourceStatus.ERROR, error_count=5, last_error="boom")
        registry = SourceRegistry(db_session)

        updated = await registry.update_source(source.id, {"status": SourceStatus.ACTIVE})

        assert updated.status == SourceStatus.ACTIVE
        assert updated.error_count == 0
