from ingestion.transformers.normalizer import (
    ProductNormalizer,
    normalize_currency,
    normalize_frequency,
    normalize_policy_type,
)

__all__ = ["ProductNormalizer", "normalize_currency", "normalize_frequency", "normalize_policy_type"]
