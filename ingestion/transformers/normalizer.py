"""
Transform raw provider records into the canonical product schema with
Pydantic validation and optional AI enrichment
"""

import json
import re
from typing import Dict, Any, Optional, List, Tuple, Iterable
from pydantic import ValidationError as PydanticValidationError

from schemas.normalized import NormalizedProduct
from models.base import PolicyType
from core.exceptions import NormalizationError, AIServiceError
from ingestion.ai_client import NORMALIZE_SYSTEM_PROMPT
import logging

logger = logging.getLogger(__name__)

ID_FIELDS = ("external_id", "id", "product_id")

# Provider field names accepted for each canonical field, in priority order
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "insurer_name": ("insurer_name", "insurer", "provider", "provider_name", "company", "company_name", "underwriter"),
    "product_name": ("product_name", "name", "title", "product", "plan_name"),
    "policy_type": ("policy_type", "insurance_type", "product_type", "type", "category"),
    "premium_amount": ("premium_amount", "premium", "price", "monthly_premium", "annual_premium", "cost"),
    "premium_frequency": ("premium_frequency", "frequency", "payment_frequency", "billing_period"),
    "currency": ("currency", "currency_code"),
    "coverage_summary": ("coverage_summary", "coverage", "cover", "coverage_description"),
    "coverage_limits": ("coverage_limits", "limits"),
    "benefits": ("benefits", "features", "key_features", "highlights"),
    "exclusions": ("exclusions", "not_covered"),
    "add_ons": ("add_ons", "addons", "extras", "optional_extras"),
    "contact_info": ("contact_info", "contact"),
    "availability_regions": ("availability_regions", "regions", "availability", "countries"),
    "product_url": ("product_url", "url", "link"),
    "document_url": ("document_url", "policy_document", "brochure_url", "pdf_url"),
}

# Free-text fields that justify an AI pass
TEXT_FIELDS = ("description", "summary", "details", "content", "text", "coverage_details")

POLICY_TYPE_VARIATIONS = {
    "medical": PolicyType.HEALTH,
    "healthcare": PolicyType.HEALTH,
    "car": PolicyType.AUTO,
    "vehicle": PolicyType.AUTO,
    "motor": PolicyType.AUTO,
    "automobile": PolicyType.AUTO,
    "property": PolicyType.HOME,
    "house": PolicyType.HOME,
    "homeowners": PolicyType.HOME,
    "dwelling": PolicyType.HOME,
    "term": PolicyType.LIFE,
    "whole": PolicyType.LIFE,
    "universal": PolicyType.LIFE,
    "vacation": PolicyType.TRAVEL,
    "trip": PolicyType.TRAVEL,
    "commercial": PolicyType.BUSINESS,
    "liability": PolicyType.BUSINESS,
}

FREQUENCY_VARIATIONS = {
    "monthly": ("monthly", "month", "per month", "pm", "mo", "/mo"),
    "quarterly": ("quarterly", "quarter", "per quarter"),
    "annual": ("annual", "annually", "yearly", "year", "per year", "pa", "per annum", "/yr"),
    "one-time": ("one-time", "one time", "once", "single", "one-off", "one off"),
}

CURRENCY_SYMBOLS = {"£": "GBP", "$": "USD", "€": "EUR"}
CURRENCY_NAMES = {
    "pound": "GBP", "pounds": "GBP", "sterling": "GBP",
    "dollar": "USD", "dollars": "USD",
    "euro": "EUR", "euros": "EUR",
}

_NUMBER = re.compile(r"-?\d[\d,]*(?:\.\d+)?")


def normalize_policy_type(value: Any) -> PolicyType:
    """Map free-form policy type text onto PolicyType, falling back to OTHER."""
    if value is None:
        return PolicyType.OTHER
    if isinstance(value, PolicyType):
        return value
    text = str(value).lower().strip()
    if not text:
        return PolicyType.OTHER

    try:
        return PolicyType(text)
    except ValueError:
        pass

    for key, policy_type in POLICY_TYPE_VARIATIONS.items():
        if key in text:
            return policy_type

    for policy_type in PolicyType:
        if policy_type is not PolicyType.OTHER and policy_type.value in text:
            return policy_type

    return PolicyType.OTHER


def normalize_frequency(value: Any) -> Optional[str]:
    """Map billing period text onto monthly, quarterly, annual or one-time."""
    if value is None:
        return None
    text = str(value).lower().strip()
    if not text:
        return None
    for canonical, variations in FREQUENCY_VARIATIONS.items():
        if text in variations:
            return canonical
    for canonical, variations in FREQUENCY_VARIATIONS.items():
        if any(len(v) > 3 and v in text for v in variations):
            return canonical
    return None


def normalize_currency(value: Any) -> Optional[str]:
    """Upper-cased currency code, translating symbols and common names."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text in CURRENCY_SYMBOLS:
        return CURRENCY_SYMBOLS[text]
    lowered = text.lower()
    if lowered in CURRENCY_NAMES:
        return CURRENCY_NAMES[lowered]
    return text.upper()[:10]


class ProductNormalizer:
    """
    Normalize product records from any source type into NormalizedProduct.

    Handles:
    - Field alias mapping
    - Type conversion (prices, frequencies, currencies, lists)
    - Policy type classification
    - AI gap filling for records carrying unstructured text

    Structured values from the raw record always take precedence over AI
    output, so a record without free text normalizes identically every time.
    """

    def __init__(
        self,
        ai_client=None,
        default_currency: str = "GBP",
        min_text_length: int = 40
    ):
        self.ai_client = ai_client
        self.default_currency = default_currency
        self.min_text_length = min_text_length

    async def normalize(
        self,
        raw_record: Dict[str, Any],
        default_insurer: Optional[str] = None
    ) -> NormalizedProduct:
        """
        Normalize a raw record into the canonical schema.

        Args:
            raw_record: Provider record as fetched
            default_insurer: Insurer name used when the record has none
                (the owning source's provider_name)

        Returns:
            Validated NormalizedProduct

        Raises:
            NormalizationError: Record is not a mapping or has no identifier
        """
        if not isinstance(raw_record, dict):
            raise NormalizationError(
                "Raw product record must be an object",
                context={"record_type": type(raw_record).__name__}
            )

        external_id = self._extract_id(raw_record)
        if external_id is None:
            raise NormalizationError(
                "Raw product record has no identifier",
                context={"expected_fields": list(ID_FIELDS), "fields": sorted(map(str, raw_record))[:20]}
            )

        fields, audit = self._map_structured(raw_record)

        if self._needs_ai(raw_record):
            await self._apply_ai(raw_record, fields, audit)
        else:
            audit["ai_status"] = "not_needed"

        if not fields.get("insurer_name") and default_insurer:
            fields["insurer_name"] = default_insurer
        if not fields.get("product_name"):
            fields["product_name"] = "Unnamed Product"
        if fields.get("policy_type") is None:
            fields["policy_type"] = PolicyType.OTHER
        if not fields.get("currency"):
            fields["currency"] = audit.get("currency_hint") or self.default_currency

        fields["ai_normalized_data"] = audit

        try:
            return NormalizedProduct(external_id=external_id, **fields)
        except PydanticValidationError as e:
            raise NormalizationError(
                "Normalized product failed validation",
                context={
                    "external_id": external_id,
                    "field_errors": {".".join(map(str, err["loc"])): err["msg"] for err in e.errors()}
                },
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Structured mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_id(record: Dict[str, Any]) -> Optional[str]:
        for key in ID_FIELDS:
            value = record.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
        return None

    @staticmethod
    def _pick(record: Dict[str, Any], aliases: Iterable[str]) -> Tuple[Optional[str], Any]:
        for key in aliases:
            value = record.get(key)
            if value is not None and value != "" and value != []:
                return key, value
        return None, None

    def _map_structured(self, record: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        fields: Dict[str, Any] = {}
        audit: Dict[str, Any] = {"source_fields": {}}

        for canonical, aliases in FIELD_ALIASES.items():
            key, value = self._pick(record, aliases)
            if key is not None:
                audit["source_fields"][canonical] = key
            fields[canonical] = value

        fields["insurer_name"] = self._clean_text(fields["insurer_name"], 255)
        fields["product_name"] = self._clean_text(fields["product_name"], 500)
        fields["coverage_summary"] = self._clean_text(fields["coverage_summary"])
        fields["product_url"] = self._clean_text(fields["product_url"], 2048)
        fields["document_url"] = self._clean_text(fields["document_url"], 2048)

        fields["policy_type"] = (
            normalize_policy_type(fields["policy_type"]) if fields["policy_type"] is not None else None
        )

        amount, currency_hint, frequency_hint = self._parse_price(fields["premium_amount"])
        fields["premium_amount"] = amount
        premium_key = audit["source_fields"].get("premium_amount")
        if premium_key == "annual_premium":
            frequency_hint = frequency_hint or "annual"
        elif premium_key == "monthly_premium":
            frequency_hint = frequency_hint or "monthly"
        fields["premium_frequency"] = normalize_frequency(fields["premium_frequency"]) or frequency_hint

        fields["currency"] = normalize_currency(fields["currency"])
        if currency_hint:
            audit["currency_hint"] = currency_hint

        fields["coverage_limits"] = self._parse_limits(record, fields["coverage_limits"])
        fields["contact_info"] = self._parse_contact(record, fields["contact_info"])
        for list_field in ("benefits", "exclusions", "add_ons", "availability_regions"):
            fields[list_field] = self._parse_list(fields[list_field])

        return fields, audit

    @staticmethod
    def _clean_text(value: Any, max_length: Optional[int] = None) -> Optional[str]:
        if value is None:
            return None
        text = " ".join(str(value).split())
        if not text:
            return None
        return text[:max_length] if max_length else text

    @staticmethod
    def _parse_float(value: Any) -> Optional[float]:
        """Safely parse float value"""
        if value is None or value == "" or isinstance(value, bool):
            return None
        try:
            result = float(value)
        except (ValueError, TypeError):
            return None
        return None if result != result else result  # NaN from pandas cells

    @staticmethod
    def _parse_int(value: Any) -> Optional[int]:
        """Safely parse int value"""
        if value is None or value == "" or isinstance(value, bool):
            return None
        try:
            return int(float(value))  # Handle "10.0" strings
        except (ValueError, TypeError, OverflowError):
            return None

    def _parse_price(self, value: Any) -> Tuple[Optional[float], Optional[str], Optional[str]]:
        """
        Parse a premium from a number or text like "£12.50 per month".

        Returns:
            (amount, currency code implied by a symbol, frequency implied by text)
        """
        if value is None:
            return None, None, None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return self._parse_float(value), None, None
        if isinstance(value, dict):
            amount, hint, freq = self._parse_price(value.get("amount", value.get("value")))
            hint = normalize_currency(value.get("currency")) or hint
            freq = normalize_frequency(value.get("frequency")) or freq
            return amount, hint, freq

        text = str(value).strip()
        hint = next((code for symbol, code in CURRENCY_SYMBOLS.items() if symbol in text), None)
        match = _NUMBER.search(text)
        amount = self._parse_float(match.group(0).replace(",", "")) if match else None
        remainder = _NUMBER.sub(" ", text)
        for symbol in CURRENCY_SYMBOLS:
            remainder = remainder.replace(symbol, " ")
        freq = normalize_frequency(remainder.strip(" /"))
        return amount, hint, freq

    def _parse_limits(self, record: Dict[str, Any], value: Any) -> Optional[Dict[str, Any]]:
        if isinstance(value, dict):
            return value or None
        limit = self._parse_float(record.get("coverage_limit", record.get("max_claim")))
        if limit is not None:
            return {"max_claim_amount": limit}
        return None

    @staticmethod
    def _parse_contact(record: Dict[str, Any], value: Any) -> Optional[Dict[str, Any]]:
        if isinstance(value, dict):
            return value or None
        contact = {k: record[k] for k in ("phone", "email", "address") if record.get(k)}
        return contact or None

    @staticmethod
    def _parse_list(value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            parts = re.split(r"[,;\n|]", value)
        elif isinstance(value, (list, tuple)):
            parts = []
            for item in value:
                if isinstance(item, dict):
                    item = item.get("name") or item.get("title") or item.get("value")
                if item is not None:
                    parts.append(str(item))
        else:
            parts = [str(value)]

        cleaned: List[str] = []
        for part in parts:
            text = " ".join(part.split())
            if text and text not in cleaned:
                cleaned.append(text)
        return cleaned

    # ------------------------------------------------------------------
    # AI gap filling
    # ------------------------------------------------------------------

    def _needs_ai(self, record: Dict[str, Any]) -> bool:
        return any(
            isinstance(record.get(key), str) and len(record[key].strip()) > self.min_text_length
            for key in TEXT_FIELDS
        )

    async def _apply_ai(self, record: Dict[str, Any], fields: Dict[str, Any], audit: Dict[str, Any]) -> None:
        """Fill missing fields from the AI reply; failures leave AI fields null."""
        fields.setdefault("ai_summary", None)
        fields.setdefault("ai_tags", None)
        fields.setdefault("risk_score", None)

        if self.ai_client is None or not getattr(self.ai_client, "configured", True):
            audit["ai_status"] = "skipped"
            return

        content = json.dumps(record, default=str, sort_keys=True)[:8000]
        try:
            ai = await self.ai_client.complete_json(NORMALIZE_SYSTEM_PROMPT, content)
        except AIServiceError as e:
            audit["ai_status"] = "failed"
            audit["ai_error"] = e.message
            logger.warning(
                f"AI normalization failed, keeping structured fields: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return

        audit["ai_status"] = "applied"
        audit["ai_output"] = ai

        if not fields.get("insurer_name"):
            fields["insurer_name"] = self._clean_text(ai.get("insurer_name"), 255)
        if not fields.get("product_name"):
            fields["product_name"] = self._clean_text(ai.get("product_name"), 500)
        if fields.get("policy_type") is None and ai.get("policy_type"):
            fields["policy_type"] = normalize_policy_type(ai.get("policy_type"))
        if fields.get("premium_amount") is None:
            amount, hint, freq = self._parse_price(ai.get("premium_amount"))
            fields["premium_amount"] = amount
            if hint and "currency_hint" not in audit:
                audit["currency_hint"] = hint
            fields["premium_frequency"] = fields.get("premium_frequency") or freq
        if not fields.get("premium_frequency"):
            fields["premium_frequency"] = normalize_frequency(ai.get("premium_frequency"))
        if not fields.get("currency"):
            fields["currency"] = normalize_currency(ai.get("currency"))
        if not fields.get("coverage_summary"):
            fields["coverage_summary"] = self._clean_text(ai.get("coverage_summary"))
        if not fields.get("coverage_limits") and isinstance(ai.get("coverage_limits"), dict):
            fields["coverage_limits"] = ai["coverage_limits"] or None
        for list_field in ("benefits", "exclusions", "add_ons", "availability_regions"):
            if not fields.get(list_field):
                fields[list_field] = self._parse_list(ai.get(list_field))

        fields["ai_summary"] = self._clean_text(ai.get("ai_summary"))
        tags = [t.lower() for t in self._parse_list(ai.get("tags", ai.get("ai_tags")))]
        fields["ai_tags"] = list(dict.fromkeys(tags)) or None
        risk = self._parse_int(ai.get("risk_score"))
        fields["risk_score"] = min(100, max(0, risk)) if risk is not None else None
