"""
Unit tests for the catalog loader (upsert and idempotency)
"""

import pytest
from sqlalchemy import func, select

from core.exceptions import UpsertError
from ingestion.loaders.catalog_loader import CatalogLoader
from models.base import PolicyType, ProductStatus
from models.product_catalog import ProductCatalogEntry
from schemas.normalized import NormalizedProduct


def product(**overrides) -> NormalizedProduct:
    values = {
        "external_id": "acme-home-1",
        "insurer_name": "Acme Insurance",
        "product_name": "Home Essentials",
        "policy_type": PolicyType.HOME,
        "premium_amount": 12.5,
        "premium_frequency": "monthly",
        "currency": "GBP",
        "benefits": ["Legal cover"],
    }
    values.update(overrides)
    return NormalizedProduct(**values)


async def catalog_count(db_session) -> int:
    return await db_session.scalar(select(func.count()).select_from(ProductCatalogEntry))


class TestCatalogLoader:
    """Test CatalogLoader.upsert"""

    @pytest.mark.asyncio
    async def test_insert_new(self, db_session, make_source):
        """Test first sight of an external id inserts a row"""
        source = await make_source()
        loader = CatalogLoader(db_session)

        entry, is_new = await loader.upsert(source.id, product())
        await db_session.commit()

        assert is_new is True
        assert entry.id is not None
        assert entry.status == ProductStatus.ACTIVE
        assert entry.last_verified_at is not None
        assert entry.benefits == ["Legal cover"]
        assert await catalog_count(db_session) == 1

    @pytest.mark.asyncio
    async def test_update_existing(self, db_session, make_source):
        """Test a changed record updates the same row"""
        source = await make_source()
        loader = CatalogLoader(db_session)
        first, _ = await loader.upsert(source.id, product())
        await db_session.commit()

        second, is_new = await loader.upsert(source.id, product(premium_amount=14.0, product_name="Home Essentials 2"))
        await db_session.commit()

        assert is_new is False
        assert second.id == first.id
        assert second.premium_amount == 14.0
        assert second.product_name == "Home Essentials 2"
        assert await catalog_count(db_session) == 1

    @pytest.mark.asyncio
    async def test_idempotent(self, db_session, make_source):
        """Test loading the same product twice keeps one row"""
        source = await make_source()
        loader = CatalogLoader(db_session)

        for _ in range(3):
            await loader.upsert(source.id, product())
            await db_session.commit()

        assert await catalog_count(db_session) == 1

    @pytest.mark.asyncio
    async def test_same_external_id_in_two_sources(self, db_session, make_source):
        """Test the natural key is scoped by data source"""
        first_source = await make_source(name="first")
        second_source = await make_source(name="second")
        loader = CatalogLoader(db_session)

        _, first_new = await loader.upsert(first_source.id, product())
        _, second_new = await loader.upsert(second_source.id, product())
        await db_session.commit()

        assert first_new and second_new
        assert await catalog_count(db_session) == 2

    @pytest.mark.asyncio
    async def test_conflicting_insert_raises_upsert_error(self, db_session, make_source):
        """Test a concurrent insert of the same key surfaces as UpsertError"""
        source = await make_source()
        source_id = source.id
        loader = CatalogLoader(db_session)
        # Unflushed row standing in for another writer's insert
        db_session.add(ProductCatalogEntry(data_source_id=source_id, external_id="acme-home-1", product_name="Other"))

        with pytest.raises(UpsertError) as exc_info:
            await loader.upsert(source_id, product())

        assert exc_info.value.context == {"data_source_id": str(source_id), "external_id": "acme-home-1"}
        assert exc_info.value.status_code == 500
        await db_session.rollback()
        assert await catalog_count(db_session) == 0
