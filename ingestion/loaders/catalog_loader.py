"""
Load normalized products into the catalog with upsert logic (idempotency)
"""

from typing import Tuple
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from core.exceptions import UpsertError
from models.base import ProductStatus, utcnow
from models.product_catalog import ProductCatalogEntry
from schemas.normalized import NormalizedProduct
import logging

logger = logging.getLogger(__name__)


class CatalogLoader:
    """
    Upsert normalized products keyed by (data_source_id, external_id).

    Ensures:
    - No duplicate rows on repeated runs
    - Updates existing rows when source data changes
    - The caller learns whether the row is new, which gates duplicate detection

    The loader flushes but does not commit; the runner commits each record
    as one unit.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def upsert(
        self,
        data_source_id: UUID,
        product: NormalizedProduct
    ) -> Tuple[ProductCatalogEntry, bool]:
        """
        Insert or update one catalog row.

        Args:
            data_source_id: Owning source
            product: Validated NormalizedProduct

        Returns:
            (entry, is_new)

        Raises:
            UpsertError: The write violated a constraint, e.g. a concurrent
                insert of the same (data_source_id, external_id)
        """
        result = await self.db.execute(
            select(ProductCatalogEntry).where(
                ProductCatalogEntry.data_source_id == data_source_id,
                ProductCatalogEntry.external_id == product.external_id
            )
        )
        entry = result.scalar_one_or_none()
        now = utcnow()
        values = product.catalog_values()

        if entry is None:
            entry = ProductCatalogEntry(
                data_source_id=data_source_id,
                external_id=product.external_id,
                status=ProductStatus.ACTIVE,
                last_verified_at=now,
                last_updated_at=now,
                created_at=now,
                **values
            )
            self.db.add(entry)
            await self._flush(data_source_id, product)
            logger.debug(f"Inserted catalog entry {product.external_id}")
            return entry, True

        for field, value in values.items():
            setattr(entry, field, value)
        entry.last_verified_at = now
        entry.last_updated_at = now
        await self._flush(data_source_id, product)
        logger.debug(f"Updated catalog entry {product.external_id}")
        return entry, False

    async def _flush(self, data_source_id: UUID, product: NormalizedProduct) -> None:
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise UpsertError(
                f"Catalog upsert failed for {product.external_id}",
                context={"data_source_id": str(data_source_id), "external_id": product.external_id},
                original_exception=e
            )
