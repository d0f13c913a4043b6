"""
Pydantic schema for the canonical normalized product with validation
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from models.base import PolicyType

# Columns copied onto ProductCatalogEntry by the loader
CATALOG_FIELDS = (
    "insurer_name",
    "product_name",
    "policy_type",
    "premium_amount",
    "premium_frequency",
    "currency",
    "coverage_summary",
    "coverage_limits",
    "benefits",
    "exclusions",
    "add_ons",
    "contact_info",
    "availability_regions",
    "product_url",
    "document_url",
    "ai_summary",
    "ai_tags",
    "risk_score",
    "ai_normalized_data",
)


class NormalizedProduct(BaseModel):
    """
    Schema for a product mapped onto the canonical catalog shape.

    Ensures:
    - The natural key (external_id) is present
    - Types are correct
    - List fields are cleaned and de-duplicated in order
    """

    model_config = ConfigDict(use_enum_values=False)

    # Natural key (required)
    external_id: str = Field(..., min_length=1, max_length=255)

    # Identity
    insurer_name: Optional[str] = Field(None, max_length=255)
    product_name: str = Field(..., min_length=1, max_length=500)
    policy_type: PolicyType = PolicyType.OTHER

    # Pricing
    premium_amount: Optional[float] = None
    premium_frequency: Optional[str] = None
    currency: str = Field("GBP", min_length=1, max_length=10)

    # Coverage
    coverage_summary: Optional[str] = None
    coverage_limits: Optional[Dict[str, Any]] = None
    benefits: List[str] = Field(default_factory=list)
    exclusions: List[str] = Field(default_factory=list)
    add_ons: List[str] = Field(default_factory=list)

    contact_info: Optional[Dict[str, Any]] = None
    availability_regions: List[str] = Field(default_factory=list)
    product_url: Optional[str] = Field(None, max_length=2048)
    document_url: Optional[str] = Field(None, max_length=2048)

    # AI-derived fields, null when no AI call was made or it failed
    ai_summary: Optional[str] = None
    ai_tags: Optional[List[str]] = None
    risk_score: Optional[int] = Field(None, ge=0, le=100)

    # Audit trail of the normalization (source fields used, currency hint, AI status)
    ai_normalized_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("product_name")
    @classmethod
    def clean_product_name(cls, v):
        """Clean and normalize product name"""
        v = v.strip()
        if not v:
            raise ValueError("Product name cannot be empty after stripping")
        return v

    @field_validator("benefits", "exclusions", "add_ons", "availability_regions", mode="before")
    @classmethod
    def clean_list(cls, v):
        """Ensure a list of non-empty strings without repeats"""
        if v is None:
            return []
        if isinstance(v, str):
            v = [part for part in v.split(",")]
        if not isinstance(v, (list, tuple)):
            return []
        seen = []
        for item in v:
            text = str(item).strip()
            if text and text not in seen:
                seen.append(text)
        return seen

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v):
        if v is None:
            return "GBP"
        return str(v).strip().upper()

    def catalog_values(self) -> Dict[str, Any]:
        """Column values for ProductCatalogEntry (external_id excluded)."""
        return {name: getattr(self, name) for name in CATALOG_FIELDS}
