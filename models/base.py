from datetime import datetime, timezone
from sqlalchemy import JSON, Enum
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON on any other dialect (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp used for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_column(enum_cls, name: str):
    """Enum column type persisting the lowercase member values."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


# ============================================================================
# ENUMS
# ============================================================================

class SourceType(str, enum.Enum):
    """Data source types"""
    API = "api"
    SCRAPER = "scraper"
    FEED = "feed"
    AGGREGATOR = "aggregator"
    REGULATOR = "regulator"


class SourceStatus(str, enum.Enum):
    """Data source status; SYNCING marks a source held by a running job"""
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"
    SYNCING = "syncing"


class SyncFrequency(str, enum.Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class JobStatus(str, enum.Enum):
    """Ingestion job status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobType(str, enum.Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class LogLevel(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ProductStatus(str, enum.Enum):
    """Catalog entry status"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    OUTDATED = "outdated"
    ARCHIVED = "archived"


class PolicyType(str, enum.Enum):
    HEALTH = "health"
    AUTO = "auto"
    LIFE = "life"
    HOME = "home"
    TRAVEL = "travel"
    PET = "pet"
    BUSINESS = "business"
    OTHER = "other"


class DuplicateStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"


class AlertSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(str, enum.Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
