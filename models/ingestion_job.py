from sqlalchemy import Column, String, Integer, DateTime, Text, Index, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid
from models.base import Base, JSONType, utcnow, enum_column, JobStatus, JobType, LogLevel


class IngestionJob(Base):
    """
    One execution attempt against a data source.

    Purpose:
    - Audit trail of every ingestion run
    - Per-run outcome counts (found/new/updated/duplicates/errors)
    - Error tracking for failed dispatches

    Status moves only through ``ingestion.state``; completion fields are
    written once, on the terminal transition.
    """
    __tablename__ = "ingestion_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    data_source_id = Column(Uuid, ForeignKey("data_sources.id"), nullable=False, index=True)

    status = Column(enum_column(JobStatus, "job_status"), nullable=False, default=JobStatus.PENDING, index=True)
    job_type = Column(enum_column(JobType, "job_type"), nullable=False, default=JobType.MANUAL)

    # Timestamps
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Statistics
    products_found = Column(Integer, nullable=False, default=0)
    products_new = Column(Integer, nullable=False, default=0)
    products_updated = Column(Integer, nullable=False, default=0)
    products_duplicates = Column(Integer, nullable=False, default=0)
    products_errors = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)

    # Relationships
    data_source = relationship("DataSource", back_populates="jobs")
    logs = relationship(
        "IngestionLog",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    __table_args__ = (
        Index("idx_ingestion_job_source_created", "data_source_id", "created_at"),
    )

    def stats(self) -> dict:
        """Outcome counts in the shape returned by the API."""
        return {
            "products_found": self.products_found or 0,
            "products_new": self.products_new or 0,
            "products_updated": self.products_updated or 0,
            "products_duplicates": self.products_duplicates or 0,
            "products_errors": self.products_errors or 0,
        }

    def __repr__(self):
        return f"<IngestionJob(id={self.id}, status={self.status})>"


class IngestionLog(Base):
    """Append-only audit line owned by exactly one job."""
    __tablename__ = "ingestion_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id = Column(
        Uuid,
        ForeignKey("ingestion_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    log_level = Column(enum_column(LogLevel, "log_level"), nullable=False, default=LogLevel.INFO)
    message = Column(String(1000), nullable=False)
    product_id = Column(Uuid, nullable=True)  # catalog row the entry concerns
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    job = relationship("IngestionJob", back_populates="logs")
