"""
Marketplace tables written by the webhook product ingest.
"""

from sqlalchemy import (
    Column, String, DateTime, Text, Float, Boolean,
    ForeignKey, UniqueConstraint, Uuid
)
from sqlalchemy.orm import relationship
import uuid
from models.base import Base, JSONType, utcnow


class InsuranceCompany(Base):
    __tablename__ = "insurance_companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    website = Column(String(2048), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    products = relationship("InsuranceProduct", back_populates="company")


class InsuranceProduct(Base):
    """Published marketplace product, unique per (company, product_name)."""
    __tablename__ = "insurance_products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("insurance_companies.id"), nullable=False, index=True)
    product_name = Column(String(500), nullable=False)
    policy_type = Column(String(50), nullable=False, default="other")
    description = Column(Text, nullable=True)

    premium_amount = Column(Float, nullable=True)
    premium_frequency = Column(String(20), nullable=True)
    currency = Column(String(10), nullable=False, default="GBP")
    coverage_details = Column(JSONType, nullable=True)
    benefits = Column(JSONType, nullable=True)
    exclusions = Column(JSONType, nullable=True)

    source_url = Column(String(2048), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    company = relationship("InsuranceCompany", back_populates="products")

    __table_args__ = (
        UniqueConstraint("company_id", "product_name", name="uq_product_company_name"),
    )
