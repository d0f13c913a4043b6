"""
Pydantic schemas for data validation and serialization.

Modules:
    normalized: Canonical normalized product produced by the normalizer
    api: Request/response models for the HTTP routes

Usage:
    from schemas.normalized import NormalizedProduct
    from schemas.api import ErrorResponse, DataIngestionRequest
"""

__all__ = [
    "NormalizedProduct",
    "ErrorResponse",
    "DataIngestionRequest",
    "DataSourceResponse",
    "JobResponse",
    "DashboardResponse",
    "HealthCheckResponse",
]
