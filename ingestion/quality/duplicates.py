"""
Duplicate detection over the product catalog.

Runs after a new catalog insert. Candidates are other active products with
the same policy type; each is scored 0-100 as the sum of the weights of the
fields that match.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from models.base import ProductStatus, DuplicateStatus
from models.product_catalog import ProductCatalogEntry
from models.review import DuplicateDetection
from core.exceptions import ProductNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: Dict[str, int] = {
    "insurer_name": 20,
    "product_name": 30,
    "policy_type": 10,
    "premium_amount": 20,
    "coverage_summary": 20,
}

_COMPANY_SUFFIXES = re.compile(r"\b(ltd|limited|plc|inc|llc|group|insurance|co)\b\.?")
_NON_WORD = re.compile(r"[^\w\s]")


@dataclass
class DuplicatePolicy:
    """Thresholds and weights for duplicate scoring."""

    threshold: int = 70
    high_confidence_threshold: int = 90
    premium_tolerance: float = 1.0
    name_similarity: float = 0.85
    coverage_similarity: float = 0.8
    weights: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))

    @classmethod
    def from_settings(cls, settings) -> "DuplicatePolicy":
        return cls(
            threshold=settings.DUPLICATE_SIMILARITY_THRESHOLD,
            high_confidence_threshold=settings.HIGH_CONFIDENCE_DUPLICATE_THRESHOLD,
            premium_tolerance=settings.PREMIUM_TOLERANCE,
        )


def normalize_name(value: Optional[str]) -> str:
    if not value:
        return ""
    text = _NON_WORD.sub(" ", value.lower())
    return " ".join(text.split())


def normalize_insurer(value: Optional[str]) -> str:
    return " ".join(_COMPANY_SUFFIXES.sub(" ", normalize_name(value)).split())


def score_pair(
    product: ProductCatalogEntry,
    candidate: ProductCatalogEntry,
    policy: DuplicatePolicy
) -> Tuple[int, List[str]]:
    """
    Score how likely ``candidate`` duplicates ``product``.

    Returns:
        (similarity score 0-100, names of matching fields)
    """
    matching: List[str] = []

    insurer_a, insurer_b = normalize_insurer(product.insurer_name), normalize_insurer(candidate.insurer_name)
    if insurer_a and insurer_a == insurer_b:
        matching.append("insurer_name")

    name_a, name_b = normalize_name(product.product_name), normalize_name(candidate.product_name)
    if name_a and name_b and fuzz.ratio(name_a, name_b) >= policy.name_similarity * 100:
        matching.append("product_name")

    if product.policy_type is not None and product.policy_type == candidate.policy_type:
        matching.append("policy_type")

    if (
        product.premium_amount is not None
        and candidate.premium_amount is not None
        and abs(product.premium_amount - candidate.premium_amount) <= policy.premium_tolerance
    ):
        matching.append("premium_amount")

    coverage_a = normalize_name(product.coverage_summary)
    coverage_b = normalize_name(candidate.coverage_summary)
    if (
        coverage_a
        and coverage_b
        and Levenshtein.normalized_similarity(coverage_a, coverage_b) >= policy.coverage_similarity
    ):
        matching.append("coverage_summary")

    score = sum(policy.weights.get(name, 0) for name in matching)
    return min(100, score), matching


class DuplicateChecker:
    """
    Find and record likely duplicates of a catalog entry.

    Detections are stored once per (product, duplicate) pair in ``pending``
    status. The checker flushes but does not commit.
    """

    def __init__(self, db_session: AsyncSession, policy: Optional[DuplicatePolicy] = None):
        self.db = db_session
        self.policy = policy or DuplicatePolicy()

    async def detect_duplicates(self, product_id: UUID) -> List[DuplicateDetection]:
        """
        Score every candidate and persist matches above the threshold.

        Args:
            product_id: Catalog entry to check

        Returns:
            Detection rows for every candidate at or above the threshold,
            highest score first

        Raises:
            ProductNotFoundError: Unknown product id
        """
        product = await self.db.get(ProductCatalogEntry, product_id)
        if product is None:
            raise ProductNotFoundError("Product not found", context={"product_id": str(product_id)})

        result = await self.db.execute(
            select(ProductCatalogEntry)
            .where(
                ProductCatalogEntry.id != product_id,
                ProductCatalogEntry.policy_type == product.policy_type,
                ProductCatalogEntry.status == ProductStatus.ACTIVE,
            )
            .order_by(ProductCatalogEntry.created_at, ProductCatalogEntry.id)
        )
        candidates = result.scalars().all()

        matches = []
        for candidate in candidates:
            score, matching_fields = score_pair(product, candidate, self.policy)
            if score >= self.policy.threshold:
                matches.append((score, candidate, matching_fields))
        matches.sort(key=lambda m: m[0], reverse=True)

        detections: List[DuplicateDetection] = []
        for score, candidate, matching_fields in matches:
            existing = await self.db.execute(
                select(DuplicateDetection).where(
                    DuplicateDetection.product_id == product_id,
                    DuplicateDetection.duplicate_product_id == candidate.id,
                )
            )
            detection = existing.scalar_one_or_none()
            if detection is None:
                detection = DuplicateDetection(
                    product_id=product_id,
                    duplicate_product_id=candidate.id,
                    similarity_score=score,
                    matching_fields=matching_fields,
                    status=DuplicateStatus.PENDING,
                )
                self.db.add(detection)
                logger.info(
                    f"Possible duplicate: {product.product_name} ~ {candidate.product_name} "
                    f"(score {score}, fields {matching_fields})"
                )
            detections.append(detection)

        if matches and matches[0][0] >= self.policy.high_confidence_threshold:
            product.is_duplicate = True
            product.duplicate_of = matches[0][1].id

        await self.db.flush()
        return detections

    def high_confidence_count(self, detections: List[DuplicateDetection]) -> int:
        return sum(1 for d in detections if d.similarity_score >= self.policy.high_confidence_threshold)
