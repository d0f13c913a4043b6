"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime
from uuid import UUID
from models.base import (
    SourceType, SourceStatus, SyncFrequency, JobStatus, JobType, LogLevel,
    PolicyType, ProductStatus, DuplicateStatus, AlertSeverity, AlertStatus, utcnow
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Error Schemas
# ============================================================================

class ErrorResponse(BaseModel):
    """Error envelope shared by every route"""
    error: str = Field(..., description="Error message")
    details: Optional[Any] = Field(None, description="Additional error details")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Data source is not active",
                "details": {"data_source_id": "1b4e28ba-2fa1-11d2-883f-0016d3cca427", "status": "paused"}
            }
        }
    )


# ============================================================================
# Source Registry Schemas
# ============================================================================

class DataSourceResponse(ORMModel):
    id: UUID
    name: str
    provider_name: str
    source_type: SourceType
    configuration: Dict[str, Any]
    status: SourceStatus
    sync_frequency: SyncFrequency
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    error_count: int = 0
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DataSourceCreate(BaseModel):
    """Operator-created source; starts active unless paused explicitly"""
    name: str = Field(..., min_length=1, max_length=200)
    provider_name: str = Field(..., min_length=1, max_length=200)
    source_type: SourceType
    configuration: Dict[str, Any] = Field(default_factory=dict)
    status: SourceStatus = SourceStatus.ACTIVE
    sync_frequency: SyncFrequency = SyncFrequency.DAILY

    @field_validator("status")
    @classmethod
    def reject_syncing(cls, v):
        if v == SourceStatus.SYNCING:
            raise ValueError("syncing is set by the job runner only")
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Acme home products",
                "provider_name": "Acme Insurance",
                "source_type": "api",
                "configuration": {"api_endpoint": "https://partner.acme.example/products"},
                "sync_frequency": "daily"
            }
        }
    )


class DataSourceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    provider_name: Optional[str] = Field(None, min_length=1, max_length=200)
    configuration: Optional[Dict[str, Any]] = None
    status: Optional[SourceStatus] = None
    sync_frequency: Optional[SyncFrequency] = None

    @field_validator("status")
    @classmethod
    def reject_syncing(cls, v):
        if v == SourceStatus.SYNCING:
            raise ValueError("syncing is set by the job runner only")
        return v


# ============================================================================
# Job Schemas
# ============================================================================

class JobStats(BaseModel):
    products_found: int = 0
    products_new: int = 0
    products_updated: int = 0
    products_duplicates: int = 0
    products_errors: int = 0


class JobResponse(ORMModel):
    id: UUID
    data_source_id: UUID
    status: JobStatus
    job_type: JobType
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    products_found: int = 0
    products_new: int = 0
    products_updated: int = 0
    products_duplicates: int = 0
    products_errors: int = 0
    error_message: Optional[str] = None
    created_at: datetime


class JobLogResponse(ORMModel):
    id: UUID
    job_id: UUID
    log_level: LogLevel
    message: str
    product_id: Optional[UUID] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class DataIngestionRequest(BaseModel):
    """Body of POST /data-ingestion; required ids depend on the action"""
    action: Literal["start_ingestion", "get_job_status", "list_sources", "cancel_job"]
    data_source_id: Optional[UUID] = None
    job_id: Optional[UUID] = None
    job_type: JobType = JobType.MANUAL

    @model_validator(mode="after")
    def check_required_ids(self):
        if self.action == "start_ingestion" and self.data_source_id is None:
            raise ValueError("data_source_id is required for start_ingestion")
        if self.action in ("get_job_status", "cancel_job") and self.job_id is None:
            raise ValueError(f"job_id is required for {self.action}")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "action": "start_ingestion",
                "data_source_id": "1b4e28ba-2fa1-11d2-883f-0016d3cca427"
            }
        }
    )


class StartIngestionResponse(BaseModel):
    success: bool = True
    job_id: UUID
    status: JobStatus
    stats: JobStats


class JobStatusResponse(BaseModel):
    job: JobResponse
    logs: List[JobLogResponse]


class SourceListResponse(BaseModel):
    sources: List[DataSourceResponse]


class CancelJobResponse(BaseModel):
    message: str
    cancelled: bool


# ============================================================================
# Product Schemas
# ============================================================================

class ProductResponse(ORMModel):
    id: UUID
    data_source_id: UUID
    external_id: str
    insurer_name: Optional[str] = None
    product_name: str
    policy_type: PolicyType
    premium_amount: Optional[float] = None
    premium_frequency: Optional[str] = None
    currency: str
    coverage_summary: Optional[str] = None
    benefits: Optional[List[str]] = None
    product_url: Optional[str] = None
    ai_summary: Optional[str] = None
    ai_tags: Optional[List[str]] = None
    risk_score: Optional[int] = None
    status: ProductStatus
    is_duplicate: bool = False
    duplicate_of: Optional[UUID] = None
    last_verified_at: Optional[datetime] = None
    last_updated_at: datetime


class NormalizeProductRequest(BaseModel):
    product: Dict[str, Any]


class ScrapeRequest(BaseModel):
    url: str = Field(..., min_length=1)
    scrape_rules: Optional[Dict[str, Any]] = None

    @field_validator("url")
    @classmethod
    def http_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return v


class ScrapeResponse(BaseModel):
    products: List[Dict[str, Any]]
    count: int
    source_url: str


class ProductIngestRequest(BaseModel):
    """Body of POST /ai-product-ingest"""
    source_url: str = Field(..., min_length=1)
    product_data: Optional[Dict[str, Any]] = None
    company_name: Optional[str] = None


class MarketplaceProductResponse(ORMModel):
    id: UUID
    company_id: UUID
    product_name: str
    policy_type: str
    description: Optional[str] = None
    premium_amount: Optional[float] = None
    premium_frequency: Optional[str] = None
    currency: str
    source_url: Optional[str] = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class ProductIngestResponse(BaseModel):
    success: bool = True
    action: Literal["created", "updated"]
    product: MarketplaceProductResponse
    extracted_data: Dict[str, Any]
    source_url: str
    message: str


# ============================================================================
# Review Schemas
# ============================================================================

class DetectDuplicatesRequest(BaseModel):
    product_id: UUID


class DuplicateResponse(ORMModel):
    id: UUID
    product_id: UUID
    duplicate_product_id: UUID
    similarity_score: int
    matching_fields: List[str]
    status: DuplicateStatus
    notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime


class DetectDuplicatesResponse(BaseModel):
    duplicates: List[DuplicateResponse]
    count: int
    high_confidence_duplicates: int


class DuplicateReviewUpdate(BaseModel):
    status: DuplicateStatus
    notes: Optional[str] = None


class ConsistencyCheckRequest(BaseModel):
    action: Literal["check_all", "check_product"] = "check_all"
    product_id: Optional[UUID] = None

    @model_validator(mode="after")
    def check_product_id(self):
        if self.action == "check_product" and self.product_id is None:
            raise ValueError("product_id is required for check_product")
        return self


class AlertResponse(ORMModel):
    id: UUID
    product_id: UUID
    alert_type: str
    severity: AlertSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    status: AlertStatus
    resolved_at: Optional[datetime] = None
    created_at: datetime


class ConsistencyCheckResponse(BaseModel):
    alerts: List[AlertResponse]
    count: int
    critical_count: int


class AlertUpdate(BaseModel):
    status: AlertStatus


# ============================================================================
# Scheduled Ingestion Schemas
# ============================================================================

class ScheduledSourceResult(BaseModel):
    source_id: UUID
    source_name: str
    success: bool
    job_id: Optional[UUID] = None
    stats: Optional[JobStats] = None
    error: Optional[str] = None
    next_sync_at: Optional[datetime] = None


class ScheduledIngestionResponse(BaseModel):
    message: str
    sources_checked: int
    jobs_started: int
    results: List[ScheduledSourceResult]


# ============================================================================
# Dashboard / Health Schemas
# ============================================================================

class ProductStats(BaseModel):
    total_products: int = 0
    active_products: int = 0
    by_policy_type: Dict[str, int] = Field(default_factory=dict)
    by_insurer: Dict[str, int] = Field(default_factory=dict)
    average_premium: Optional[float] = None


class DashboardResponse(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    sources: List[DataSourceResponse]
    recent_jobs: List[JobResponse]
    active_alerts: List[AlertResponse]
    pending_duplicates: List[DuplicateResponse]
    product_stats: ProductStats


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=utcnow)
    database_connected: bool
    total_sources: int = 0
    active_sources: int = 0
    syncing_sources: int = 0
    error_sources: int = 0

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.total_sources == 0 or self.error_sources == 0:
            self.status = "healthy"
        elif self.error_sources < self.total_sources:
            self.status = "degraded"
        else:
            self.status = "unhealthy"
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "total_sources": 3,
                "active_sources": 2,
                "syncing_sources": 1,
                "error_sources": 0
            }
        }
    )
