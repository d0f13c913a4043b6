"""
Catalog quality checks: duplicate detection and consistency rules.
"""

from ingestion.quality.duplicates import DuplicateChecker, DuplicatePolicy, score_pair
from ingestion.quality.consistency import ConsistencyChecker, ConsistencyRule, default_rules

__all__ = [
    "DuplicateChecker",
    "DuplicatePolicy",
    "score_pair",
    "ConsistencyChecker",
    "ConsistencyRule",
    "default_rules",
]
