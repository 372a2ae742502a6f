"""Base HTTP client for the user import pipeline.

This module provides a base async HTTP client with connection pooling,
rate limiting, error mapping and request logging.
"""

import asyncio
import time
from typing import Any
from urllib.parse import urljoin

import httpx

from user_import.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from user_import.utils.logging import (
    get_logger,
    log_api_request,
    sanitize_payload,
    should_log_payloads,
    truncate_payload,
)

logger = get_logger(__name__)


class BaseAPIClient:
    """Base async HTTP client with rate limiting and error mapping.

    This client provides:
    - Connection pooling
    - Rate limiting
    - Request/response logging with credential redaction
    - Mapping of HTTP error statuses onto the exception hierarchy
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        verify_ssl: bool = True,
        timeout: float = 30,
        rate_limit: int = 20,
        max_connections: int = 20,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize base API client.

        Args:
            base_url: Base URL for API requests
            token: Authentication token
            verify_ssl: Whether to verify SSL certificates
            timeout: Request timeout in seconds
            rate_limit: Maximum requests per second
            max_connections: Maximum number of connections in pool
            log_payloads: Enable response payload logging at DEBUG level
            max_payload_size: Maximum payload size (chars) to log before truncation
            transport: Optional httpx transport (used to stub the provider)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.log_payloads = log_payloads
        self.max_payload_size = max_payload_size

        self._rate_limit_lock = asyncio.Lock()
        self._last_request_time: float = 0
        self._min_request_interval = 1.0 / rate_limit if rate_limit > 0 else 0

        self.client = httpx.AsyncClient(
            headers=self._build_headers(),
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            limits=httpx.Limits(max_connections=max_connections),
            verify=verify_ssl,
            follow_redirects=True,
            transport=transport,
        )

        logger.debug("client_initialized", base_url=self.base_url, rate_limit=rate_limit)

    def _build_headers(self) -> dict[str, str]:
        """Build HTTP headers for requests."""
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        return urljoin(f"{self.base_url}/", endpoint.lstrip("/"))

    async def _rate_limit_wait(self) -> None:
        """Wait if necessary to stay under the configured request rate."""
        if self._min_request_interval > 0:
            async with self._rate_limit_lock:
                time_since_last = time.monotonic() - self._last_request_time
                if time_since_last < self._min_request_interval:
                    await asyncio.sleep(self._min_request_interval - time_since_last)
                self._last_request_time = time.monotonic()

    def _handle_error_response(self, response: httpx.Response) -> None:
        """Raise the exception matching an error response.

        Raises:
            AuthenticationError: For 401 responses
            AuthorizationError: For 403 responses
            NotFoundError: For 404 responses
            RateLimitError: For 429 responses
            ServerError: For 5xx responses
            APIError: For other error responses
        """
        status_code = response.status_code

        try:
            error_data = response.json()
        except ValueError:
            error_data = {"detail": response.text}

        if not isinstance(error_data, dict):
            error_data = {"detail": str(error_data)}

        error_message = (
            error_data.get("msg")
            or error_data.get("message")
            or error_data.get("error_description")
            or error_data.get("detail")
            or "Unknown error"
        )

        if status_code == 401:
            raise AuthenticationError("Authentication failed", status_code, error_data)
        if status_code == 403:
            raise AuthorizationError("Authorization failed", status_code, error_data)
        if status_code == 404:
            raise NotFoundError("Resource not found", status_code, error_data)
        if status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Rate limit exceeded",
                status_code,
                error_data,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if 500 <= status_code < 600:
            raise ServerError(f"Server error: {error_message}", status_code, error_data)
        raise APIError(f"API error: {error_message}", status_code, error_data)

    async def send(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and return the raw response once it is known to be successful.

        Raises:
            NetworkError: For connection failures and timeouts
            Various APIError subclasses: For error responses
        """
        url = self._build_url(endpoint)
        await self._rate_limit_wait()

        start_time = time.monotonic()
        try:
            response = await self.client.request(method=method, url=url, params=params, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("timeout_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Request timeout: {e}") from e
        except httpx.TransportError as e:
            logger.warning("network_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Network error: {e}") from e

        log_api_request(
            logger,
            method=method,
            url=url,
            status_code=response.status_code,
            duration_ms=(time.monotonic() - start_time) * 1000,
        )

        if should_log_payloads(logger, self.log_payloads) and response.text:
            try:
                payload = truncate_payload(sanitize_payload(response.json()), self.max_payload_size)
            except ValueError:
                payload = response.text[: self.max_payload_size]
            logger.debug("api_response_payload", method=method, url=url, payload=payload)

        if response.status_code >= 400:
            self._handle_error_response(response)

        return response

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self.client.aclose()
        logger.debug("client_closed", base_url=self.base_url)

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
