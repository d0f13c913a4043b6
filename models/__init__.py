"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class, shared enums and column helpers
    data_source: Configured external sources (the source registry)
    ingestion_job: Ingestion jobs and their append-only logs
    product_catalog: Canonical normalized product catalog
    review: Duplicate detections and consistency alerts
    marketplace: Insurance companies and products written by the webhook ingest

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and generic JSON elsewhere; enum columns store the
    lowercase enum values.

Usage:
    from models import DataSource, IngestionJob, ProductCatalogEntry
    from models.base import SourceType, JobStatus

Relationships:
    - DataSource → IngestionJob (one-to-many)
    - IngestionJob → IngestionLog (one-to-many, cascade delete)
    - ProductCatalogEntry ← DuplicateDetection, ConsistencyAlert (referenced, not owned)
    - InsuranceCompany → InsuranceProduct (one-to-many)
"""

from models.base import Base
from models.data_source import DataSource
from models.ingestion_job import IngestionJob, IngestionLog
from models.product_catalog import ProductCatalogEntry
from models.review import DuplicateDetection, ConsistencyAlert
from models.marketplace import InsuranceCompany, InsuranceProduct

__all__ = [
    "Base",
    "DataSource",
    "IngestionJob",
    "IngestionLog",
    "ProductCatalogEntry",
    "DuplicateDetection",
    "ConsistencyAlert",
    "InsuranceCompany",
    "InsuranceProduct",
]
