from sqlalchemy import Column, String, Integer, DateTime, Text, Index, Uuid
from sqlalchemy.orm import relationship
import uuid
from models.base import (
    Base, JSONType, utcnow, enum_column,
    SourceType, SourceStatus, SyncFrequency
)


class DataSource(Base):
    """
    Configured external source of insurance products.

    Purpose:
    - Holds endpoint, credentials and scrape rules (opaque ``configuration``)
    - Tracks sync bookkeeping written by the job runner
    - Status flips only; rows are never hard-deleted
    """
    __tablename__ = "data_sources"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    provider_name = Column(String(200), nullable=False)
    source_type = Column(enum_column(SourceType, "source_type"), nullable=False, index=True)

    # endpoint, method, api_key, target_url, scrape_rules, format, records_path, id_field
    configuration = Column(JSONType, nullable=False, default=dict)

    status = Column(
        enum_column(SourceStatus, "source_status"),
        nullable=False,
        default=SourceStatus.ACTIVE,
        index=True
    )
    sync_frequency = Column(
        enum_column(SyncFrequency, "sync_frequency"),
        nullable=False,
        default=SyncFrequency.DAILY
    )

    # Sync bookkeeping
    last_sync_at = Column(DateTime, nullable=True)
    next_sync_at = Column(DateTime, nullable=True)
    error_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    # Set by acquire; only the holder of the token may release the source
    sync_token = Column(Uuid, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    jobs = relationship("IngestionJob", back_populates="data_source")

    __table_args__ = (
        Index("idx_data_source_status_next_sync", "status", "next_sync_at"),
    )

    def __repr__(self):
        return f"<DataSource(name={self.name}, type={self.source_type}, status={self.status})>"
