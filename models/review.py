"""
Operator review queues: duplicate detections and consistency alerts.

Both reference catalog rows without owning them; there are no foreign key
cascades, so rows survive later edits to the products they point at.
"""

from sqlalchemy import Column, String, Integer, DateTime, Text, Index, UniqueConstraint, Uuid
import uuid
from models.base import (
    Base, JSONType, utcnow, enum_column,
    DuplicateStatus, AlertSeverity, AlertStatus
)


class DuplicateDetection(Base):
    """Likely duplicate pair flagged after a new catalog insert."""
    __tablename__ = "duplicate_detections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, nullable=False, index=True)
    duplicate_product_id = Column(Uuid, nullable=False, index=True)
    similarity_score = Column(Integer, nullable=False)  # 0-100
    matching_fields = Column(JSONType, nullable=False, default=list)

    status = Column(enum_column(DuplicateStatus, "duplicate_status"), nullable=False, default=DuplicateStatus.PENDING, index=True)
    notes = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("product_id", "duplicate_product_id", name="uq_duplicate_pair"),
    )


class ConsistencyAlert(Base):
    """Rule-triggered flag on a catalog entry awaiting review."""
    __tablename__ = "consistency_alerts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, nullable=False, index=True)
    alert_type = Column(String(100), nullable=False)
    severity = Column(enum_column(AlertSeverity, "alert_severity"), nullable=False, default=AlertSeverity.WARNING)
    message = Column(String(1000), nullable=False)
    details = Column(JSONType, nullable=True)

    status = Column(enum_column(AlertStatus, "alert_status"), nullable=False, default=AlertStatus.ACTIVE, index=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_alert_product_type_status", "product_id", "alert_type", "status"),
    )
