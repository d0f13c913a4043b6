"""
Consistency rules over catalog entries.

A rule is a value: ``ConsistencyRule(alert_type, severity, message, predicate)``.
The predicate returns None when the product passes, or a details dict when
the rule fires; the message is formatted with those details. Every rule is
evaluated independently for every product.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import AlertSeverity, AlertStatus, ProductStatus, utcnow
from models.product_catalog import ProductCatalogEntry
from models.review import ConsistencyAlert

logger = logging.getLogger(__name__)

Predicate = Callable[[ProductCatalogEntry, datetime], Optional[Dict[str, Any]]]

KNOWN_CURRENCIES = frozenset({
    "GBP", "EUR", "USD", "CAD", "AUD", "NZD", "CHF", "SEK", "NOK", "DKK",
    "PLN", "CZK", "HUF", "JPY", "CNY", "HKD", "SGD", "INR", "ZAR", "AED",
})


@dataclass(frozen=True)
class ConsistencyRule:
    alert_type: str
    severity: AlertSeverity
    message: str
    predicate: Predicate

    def evaluate(self, product: ProductCatalogEntry, now: datetime) -> Optional[Dict[str, Any]]:
        return self.predicate(product, now)


# ============================================================================
# Predicates
# ============================================================================

def _missing_premium(product, now):
    if product.premium_amount is None or product.premium_amount == 0:
        return {"premium_amount": product.premium_amount}
    return None


def _negative_premium(product, now):
    if product.premium_amount is not None and product.premium_amount < 0:
        return {"premium_amount": product.premium_amount}
    return None


def _missing_coverage(product, now):
    if not product.coverage_summary and not product.coverage_limits:
        return {"missing_fields": ["coverage_summary", "coverage_limits"]}
    return None


def _missing_benefits(product, now):
    if not product.benefits:
        return {"missing_fields": ["benefits"]}
    return None


def _missing_links(product, now):
    if not product.product_url and not product.document_url:
        return {"missing_fields": ["product_url", "document_url"]}
    return None


def _invalid_currency(product, now):
    if product.currency not in KNOWN_CURRENCIES:
        return {"currency": product.currency}
    return None


def _currency_conflict(product, now):
    hint = (product.ai_normalized_data or {}).get("currency_hint")
    if hint and product.currency and hint != product.currency:
        return {"currency": product.currency, "price_currency": hint}
    return None


def _days_unverified(product, now) -> int:
    verified = product.last_verified_at or product.created_at or now
    return (now - verified).days


def outdated_between(min_days: int, max_days: Optional[int]) -> Predicate:
    """Fires when the product was last verified more than ``min_days`` ago
    (and at most ``max_days`` ago, when given)."""

    def predicate(product, now):
        days = _days_unverified(product, now)
        if days > min_days and (max_days is None or days <= max_days):
            return {
                "days_since_verification": days,
                "last_verified_at": product.last_verified_at.isoformat() if product.last_verified_at else None,
            }
        return None

    return predicate


def default_rules(stale_days: int = 30, critical_days: int = 90) -> List[ConsistencyRule]:
    return [
        ConsistencyRule("missing_premium", AlertSeverity.WARNING,
                        "Product has no premium amount", _missing_premium),
        ConsistencyRule("negative_premium", AlertSeverity.CRITICAL,
                        "Premium amount is negative ({premium_amount})", _negative_premium),
        ConsistencyRule("missing_coverage", AlertSeverity.WARNING,
                        "Product has no coverage summary or limits", _missing_coverage),
        ConsistencyRule("missing_benefits", AlertSeverity.INFO,
                        "Product lists no benefits", _missing_benefits),
        ConsistencyRule("missing_links", AlertSeverity.INFO,
                        "Product has neither a product page nor a policy document", _missing_links),
        ConsistencyRule("invalid_currency", AlertSeverity.CRITICAL,
                        "Unrecognised currency code '{currency}'", _invalid_currency),
        ConsistencyRule("currency_conflict", AlertSeverity.CRITICAL,
                        "Currency {currency} conflicts with price quoted in {price_currency}", _currency_conflict),
        ConsistencyRule("outdated", AlertSeverity.WARNING,
                        "Product not verified in {days_since_verification} days",
                        outdated_between(stale_days, critical_days)),
        ConsistencyRule("outdated", AlertSeverity.CRITICAL,
                        "Product not verified in {days_since_verification} days",
                        outdated_between(critical_days, None)),
    ]


# ============================================================================
# Checker
# ============================================================================

class ConsistencyChecker:
    """
    Evaluate the rule set and keep one active alert per (product, alert type).

    Fired rules raise a new alert or refresh the active one; active alerts
    whose type no longer fires are resolved. The checker flushes but does
    not commit.
    """

    def __init__(self, db_session: AsyncSession, rules: Optional[Sequence[ConsistencyRule]] = None):
        self.db = db_session
        self.rules = list(rules) if rules is not None else default_rules()

    async def check_product(self, product: ProductCatalogEntry) -> List[ConsistencyAlert]:
        """
        Run every rule against ``product``.

        Returns:
            Active alerts for the rules that fired
        """
        now = utcnow()
        fired: Dict[str, tuple] = {}
        for rule in self.rules:
            details = rule.evaluate(product, now)
            if details is not None and rule.alert_type not in fired:
                fired[rule.alert_type] = (rule, details)

        result = await self.db.execute(
            select(ConsistencyAlert).where(
                ConsistencyAlert.product_id == product.id,
                ConsistencyAlert.status == AlertStatus.ACTIVE,
            )
        )
        active = {alert.alert_type: alert for alert in result.scalars().all()}

        alerts: List[ConsistencyAlert] = []
        for alert_type, (rule, details) in fired.items():
            message = rule.message.format(**details)
            alert = active.get(alert_type)
            if alert is None:
                alert = ConsistencyAlert(
                    product_id=product.id,
                    alert_type=alert_type,
                    severity=rule.severity,
                    message=message,
                    details=details,
                    status=AlertStatus.ACTIVE,
                )
                self.db.add(alert)
            else:
                alert.severity = rule.severity
                alert.message = message
                alert.details = details
                alert.updated_at = now
            alerts.append(alert)

        for alert_type, alert in active.items():
            if alert_type not in fired:
                alert.status = AlertStatus.RESOLVED
                alert.resolved_at = now
                alert.updated_at = now
                logger.info(f"Resolved {alert_type} alert for product {product.id}")

        await self.db.flush()
        return alerts

    async def check_all(self) -> List[ConsistencyAlert]:
        """Re-evaluate every active product."""
        result = await self.db.execute(
            select(ProductCatalogEntry)
            .where(ProductCatalogEntry.status == ProductStatus.ACTIVE)
            .order_by(ProductCatalogEntry.created_at)
        )
        products = result.scalars().all()

        alerts: List[ConsistencyAlert] = []
        for product in products:
            alerts.extend(await self.check_product(product))

        logger.info(f"Consistency check over {len(products)} products raised {len(alerts)} alerts")
        return alerts
