"""
AI completion client for product extraction and normalization.

Features:
- Async httpx client against an OpenAI-compatible chat-completions endpoint
- Bearer token authentication
- JSON-object responses parsed into plain dicts
- Every failure surfaces as AIServiceError so callers can degrade
"""

import json
import logging
import re
from typing import Any, Dict, Optional

import httpx

from core.exceptions import AIServiceError

logger = logging.getLogger(__name__)

NORMALIZE_SYSTEM_PROMPT = (
    "You normalize insurance product data. Reply with a single JSON object with keys: "
    "insurer_name, product_name, policy_type (health, auto, life, home, travel, pet, business, other), "
    "premium_amount (number), premium_frequency (monthly, quarterly, annual, one-time), currency "
    "(ISO 4217), coverage_summary, benefits (list of strings), exclusions (list of strings), "
    "ai_summary (two sentences max), tags (list of short lowercase tags) and risk_score "
    "(integer 0-100, higher means more exclusions or restrictions). Use null for unknown values."
)

EXTRACT_SYSTEM_PROMPT = (
    "You extract insurance products from web page text. Reply with a JSON object "
    '{"products": [...]} where each product has insurer_name, product_name, policy_type, '
    "premium_amount, premium_frequency, currency, coverage_summary, benefits (list), "
    "exclusions (list) and product_url. Only include products actually described in the text."
)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class AIClient:
    """
    Async HTTP client for chat completions returning JSON objects.

    Injected into the normalizer, scraper and webhook ingest; tests replace
    it with a deterministic stub exposing the same ``complete_json`` method.
    """

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = "https://api.openai.com/v1/chat/completions",
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the AI client.

        Args:
            api_key: Bearer token; the client is unconfigured without one
            api_url: Chat-completions endpoint
            model: Model name sent with every request
            timeout: Request timeout in seconds (default 60s)
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings) -> "AIClient":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            api_url=settings.AI_API_URL,
            model=settings.AI_MODEL,
            timeout=settings.AI_TIMEOUT,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication."""
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def complete_json(self, system_prompt: str, user_content: str) -> Dict[str, Any]:
        """
        Run one completion and parse the reply as a JSON object.

        Args:
            system_prompt: Instructions describing the expected object
            user_content: Text to analyse

        Returns:
            Parsed JSON object

        Raises:
            AIServiceError: Not configured, transport/HTTP failure or unparseable reply
        """
        if not self.configured:
            raise AIServiceError("AI service is not configured", context={"api_url": self.api_url})

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0,
        }

        logger.debug(f"Calling AI service ({len(user_content)} chars)")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.api_url, json=payload, headers=self._get_headers())
        except httpx.TimeoutException as e:
            raise AIServiceError(
                f"AI request timeout after {self.timeout}s",
                context={"api_url": self.api_url},
                original_exception=e
            )
        except httpx.HTTPError as e:
            raise AIServiceError(
                "AI request failed",
                context={"api_url": self.api_url},
                original_exception=e
            )

        if response.status_code != 200:
            raise AIServiceError(
                f"AI service returned status {response.status_code}",
                context={"api_url": self.api_url, "response_body": response.text[:200]}
            )

        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AIServiceError(
                "Unexpected AI response shape",
                context={"response_body": response.text[:200]},
                original_exception=e
            )
        return parse_json_object(content)


def parse_json_object(content: Any) -> Dict[str, Any]:
    """Parse model output into a dict, tolerating markdown code fences."""
    if isinstance(content, dict):
        return content
    if not isinstance(content, str):
        raise AIServiceError("AI reply is not text", context={"type": type(content).__name__})

    text = _FENCE.sub("", content.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AIServiceError(
            "AI reply is not valid JSON",
            context={"content": text[:200]},
            original_exception=e
        )
    if not isinstance(data, dict):
        raise AIServiceError("AI reply is not a JSON object", context={"content": text[:200]})
    return data
