from sqlalchemy import (
    Column, String, Integer, DateTime, Text, Float, Boolean,
    Index, ForeignKey, UniqueConstraint, Uuid
)
import uuid
from models.base import Base, JSONType, utcnow, enum_column, PolicyType, ProductStatus


class ProductCatalogEntry(Base):
    """
    Canonical insurance product normalized from any source.

    (data_source_id, external_id) identifies at most one row; the loader
    upserts on that natural key.
    """
    __tablename__ = "product_catalog"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    data_source_id = Column(Uuid, ForeignKey("data_sources.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)

    # Identity
    insurer_name = Column(String(255), nullable=True, index=True)
    product_name = Column(String(500), nullable=False)
    policy_type = Column(enum_column(PolicyType, "policy_type"), nullable=False, default=PolicyType.OTHER, index=True)

    # Pricing
    premium_amount = Column(Float, nullable=True)
    premium_frequency = Column(String(20), nullable=True)
    currency = Column(String(10), nullable=False, default="GBP")

    # Coverage
    coverage_summary = Column(Text, nullable=True)
    coverage_limits = Column(JSONType, nullable=True)
    benefits = Column(JSONType, nullable=True)
    exclusions = Column(JSONType, nullable=True)
    add_ons = Column(JSONType, nullable=True)

    contact_info = Column(JSONType, nullable=True)
    availability_regions = Column(JSONType, nullable=True)
    product_url = Column(String(2048), nullable=True)
    document_url = Column(String(2048), nullable=True)

    # AI-derived fields
    ai_summary = Column(Text, nullable=True)
    ai_tags = Column(JSONType, nullable=True)
    risk_score = Column(Integer, nullable=True)
    ai_normalized_data = Column(JSONType, nullable=True)  # raw normalizer output kept for audit

    status = Column(enum_column(ProductStatus, "product_status"), nullable=False, default=ProductStatus.ACTIVE, index=True)
    is_duplicate = Column(Boolean, nullable=False, default=False)
    duplicate_of = Column(Uuid, nullable=True)

    # Timestamps
    last_verified_at = Column(DateTime, nullable=True)
    last_updated_at = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("data_source_id", "external_id", name="uq_catalog_source_external"),
        Index("idx_catalog_policy_status", "policy_type", "status"),
    )

    def __repr__(self):
        return f"<ProductCatalogEntry(external_id={self.external_id}, product_name={self.product_name})>"
