"""
HTTP source extractors with authentication, rate limiting, and retry logic.

This module provides robust HTTP extraction with:
- Exponential backoff retry logic for transient failures
- Circuit breaker pattern to prevent cascading failures
- Rate limiting protection (Retry-After)
- Comprehensive error handling with custom exceptions
- Timeout handling with configurable limits

The api, feed, aggregator and regulator strategies share ``HTTPExtractor``
and differ only in how they read the response body.
"""

import httpx
import asyncio
from typing import List, Dict, Any, Optional
from datetime import datetime, timedelta
from ingestion.extractors.base import BaseExtractor
from models.base import utcnow
from models.data_source import DataSource
from core.exceptions import (
    APIExtractionError,
    NetworkError,
    RateLimitError,
    UpstreamAuthenticationError,
    UpstreamNotFoundError,
)
import logging

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Per-endpoint failure counter that short-circuits calls while open."""

    def __init__(self, threshold: int = 5, timeout_seconds: int = 60):
        self.threshold = threshold
        self.timeout_seconds = timeout_seconds
        self.failures = 0
        self.open_until: Optional[datetime] = None

    def is_open(self) -> bool:
        if self.open_until is None:
            return False
        if utcnow() >= self.open_until:
            # Timeout expired, reset
            self.failures = 0
            self.open_until = None
            return False
        return True

    def record_failure(self) -> bool:
        """Count a failure; returns True when this failure opened the circuit."""
        self.failures += 1
        if self.failures >= self.threshold and self.open_until is None:
            self.open_until = utcnow() + timedelta(seconds=self.timeout_seconds)
            return True
        return False

    def record_success(self):
        self.failures = 0
        self.open_until = None


_circuit_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(endpoint: str) -> CircuitBreaker:
    if endpoint not in _circuit_breakers:
        _circuit_breakers[endpoint] = CircuitBreaker()
    return _circuit_breakers[endpoint]


def reset_circuit_breakers():
    _circuit_breakers.clear()


def _retry_after_seconds(header: Optional[str], fallback: float) -> float:
    if header is None:
        return fallback
    try:
        return max(0.0, float(header))
    except ValueError:
        return fallback  # HTTP-date form


def dig(data: Any, path: str) -> Any:
    """Follow a dotted path (``data.items``) through nested dicts."""
    for part in path.split("."):
        if not isinstance(data, dict):
            return None
        data = data.get(part)
    return data


class HTTPExtractor(BaseExtractor):
    """
    Fetch records over HTTP with resilience patterns.

    Configuration keys:
        api_endpoint: URL to fetch (``url``/``feed_url`` accepted as aliases)
        method: GET (default) or POST
        api_key: Sent as a Bearer token when present
        headers: Extra request headers
        params: Query parameters
        body: JSON body for POST requests
        records_path: Dotted path to the record list inside a JSON body
        paginate: Follow ``page`` numbers while the body says ``has_next``

    Attributes:
        max_retries: Maximum number of attempts (default: 3)
        retry_delay: Initial retry delay in seconds (default: 1.0)
        timeout: Request timeout in seconds (default: 30.0)
    """

    # Keys checked, in order, when a JSON body is an object
    RECORD_KEYS = ("products", "results", "data")

    def __init__(
        self,
        source: DataSource,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__(source)
        self.endpoint = self.config_value("api_endpoint", "url", "feed_url")
        self.method = str(self.config_value("method", default="GET")).upper()
        self.api_key = self.config_value("api_key")
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.transport = transport

        if not self.endpoint:
            raise APIExtractionError(
                "Data source has no endpoint configured",
                context={"source_name": self.source_name, "source_type": self.source_type.value}
            )
        self.circuit_breaker = get_circuit_breaker(self.endpoint)

    def build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json, application/xml;q=0.9, */*;q=0.8"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(self.configuration.get("headers") or {})
        return headers

    def _record_failure(self):
        if self.circuit_breaker.record_failure():
            logger.warning(
                f"Circuit breaker opened for {self.endpoint}. "
                f"Will retry after {self.circuit_breaker.timeout_seconds} seconds."
            )

    async def _make_request_with_retry(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: Dict[str, str],
        params: Dict[str, Any]
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic and exponential backoff.

        Args:
            client: HTTP client
            url: Request URL
            headers: Request headers
            params: Query parameters

        Returns:
            HTTP response

        Raises:
            APIExtractionError: For non-retryable errors and an open circuit
            NetworkError: For retryable failures after max retries
            RateLimitError: Still rate limited after max retries
        """
        if self.circuit_breaker.is_open():
            raise APIExtractionError(
                f"Circuit breaker is open for {url}",
                context={
                    "source_name": self.source_name,
                    "api_url": url,
                    "open_until": self.circuit_breaker.open_until.isoformat()
                }
            )

        last_exception = None

        for attempt in range(self.max_retries):
            delay = self.retry_delay * (2 ** attempt)  # Exponential backoff
            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {url}")

                response = await client.request(
                    self.method,
                    url,
                    headers=headers,
                    params=params,
                    json=self.configuration.get("body") if self.method == "POST" else None,
                )
            except httpx.TimeoutException as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    logger.warning(f"Request timeout. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Request timeout after {self.max_retries} attempts",
                    context={
                        "api_url": url,
                        "source_name": self.source_name,
                        "timeout": self.timeout,
                        "retry_count": attempt + 1
                    },
                    original_exception=e
                )
            except httpx.TransportError as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    logger.warning(f"Network error. Retrying in {delay} seconds: {e}")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Network error after {self.max_retries} attempts",
                    context={
                        "api_url": url,
                        "source_name": self.source_name,
                        "retry_count": attempt + 1
                    },
                    original_exception=e
                )

            # Handle HTTP errors
            if response.status_code in (401, 403):
                self._record_failure()
                raise UpstreamAuthenticationError(
                    f"Authentication failed for {url}",
                    context={
                        "status_code": response.status_code,
                        "api_url": url,
                        "source_name": self.source_name
                    }
                )

            if response.status_code == 404:
                self._record_failure()
                raise UpstreamNotFoundError(
                    f"Resource not found: {url}",
                    context={
                        "status_code": 404,
                        "api_url": url,
                        "source_name": self.source_name
                    }
                )

            if response.status_code == 429:
                retry_after = _retry_after_seconds(response.headers.get("Retry-After"), delay)
                if attempt < self.max_retries - 1:
                    logger.warning(f"Rate limited. Retrying after {retry_after} seconds")
                    await asyncio.sleep(retry_after)
                    continue
                self._record_failure()
                raise RateLimitError(
                    f"Rate limit exceeded for {url}",
                    context={
                        "status_code": 429,
                        "api_url": url,
                        "source_name": self.source_name,
                        "retry_count": attempt + 1
                    },
                    retry_after=int(retry_after)
                )

            if response.status_code >= 500:
                # Server error - retryable
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Server error {response.status_code}. "
                        f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Server error after {self.max_retries} attempts",
                    context={
                        "status_code": response.status_code,
                        "api_url": url,
                        "source_name": self.source_name,
                        "retry_count": attempt + 1,
                        "response_body": response.text[:500]  # Truncate
                    }
                )

            if response.status_code >= 400:
                self._record_failure()
                raise APIExtractionError(
                    f"Request rejected with HTTP {response.status_code}",
                    context={
                        "status_code": response.status_code,
                        "api_url": url,
                        "source_name": self.source_name,
                        "response_body": response.text[:500]
                    }
                )

            # Success
            self.circuit_breaker.record_success()
            return response

        # Only reachable when max_retries rounds all hit ``continue``
        raise APIExtractionError(
            "Max retries exceeded",
            context={"api_url": url, "source_name": self.source_name},
            original_exception=last_exception
        )

    async def fetch(self) -> List[Any]:
        """
        Fetch every page of records from the endpoint.

        Raises:
            APIExtractionError: For HTTP or body-shape errors
            NetworkError: For network failures after retries
        """
        headers = self.build_headers()
        params: Dict[str, Any] = dict(self.configuration.get("params") or {})
        paginate = bool(self.configuration.get("paginate"))

        all_records: List[Any] = []
        page = 1

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            while True:
                if paginate:
                    params["page"] = page

                logger.info(f"Fetching page {page} from {self.endpoint}")
                response = await self._make_request_with_retry(client, self.endpoint, headers, params)
                records = await self.parse_response(response)
                all_records.extend(records)

                if not paginate or not records or not self._has_next(response):
                    break
                page += 1

        logger.info(
            f"Fetched {len(all_records)} records from {self.source_name} ({page} page(s))"
        )
        return all_records

    @staticmethod
    def _has_next(response: httpx.Response) -> bool:
        try:
            data = response.json()
        except ValueError:
            return False
        return isinstance(data, dict) and bool(data.get("has_next"))

    def parse_json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise APIExtractionError(
                "Failed to parse JSON response",
                context={
                    "api_url": self.endpoint,
                    "source_name": self.source_name,
                    "response_body": response.text[:500]
                },
                original_exception=e
            )

    def records_from_json(self, data: Any, keys=None) -> List[Any]:
        """Pull the record list out of a JSON body."""
        records_path = self.configuration.get("records_path")
        if records_path:
            data = dig(data, records_path)
            if isinstance(data, list):
                return data
            raise APIExtractionError(
                f"No record list at '{records_path}'",
                context={"api_url": self.endpoint, "source_name": self.source_name}
            )

        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in keys or self.RECORD_KEYS:
                if isinstance(data.get(key), list):
                    return data[key]
            return []
        raise APIExtractionError(
            "Unexpected response body shape",
            context={
                "api_url": self.endpoint,
                "source_name": self.source_name,
                "body_type": type(data).__name__
            }
        )

    async def parse_response(self, response: httpx.Response) -> List[Any]:
        return self.records_from_json(self.parse_json(response))


class APIExtractor(HTTPExtractor):
    """Partner product API: JSON list, or an object under products/results/data."""
    pass


class AggregatorExtractor(HTTPExtractor):
    """
    Comparison-site feed of offers.

    Accepts a list of offers, an object under offers/products/results, and
    one level of ``{provider, offers: [...]}`` grouping, which is flattened
    with the provider as each offer's insurer.
    """

    RECORD_KEYS = ("offers", "products", "results")

    async def parse_response(self, response: httpx.Response) -> List[Any]:
        records = self.records_from_json(self.parse_json(response))
        flattened: List[Any] = []
        for item in records:
            if isinstance(item, dict) and isinstance(item.get("offers"), list):
                provider = item.get("provider") or item.get("insurer_name") or item.get("name")
                if isinstance(provider, dict):
                    provider = provider.get("name")
                for offer in item["offers"]:
                    if isinstance(offer, dict):
                        offer = dict(offer)
                        if provider and not offer.get("insurer_name"):
                            offer["insurer_name"] = provider
                    flattened.append(offer)
            else:
                flattened.append(item)
        return flattened
