"""
Shared httpx plumbing for the Notion and Google API clients.

Maps HTTP failures onto the exception hierarchy:
- 401/403 → AuthenticationError
- 404 → ResourceNotFoundError
- 429 → RateLimitError (carries Retry-After)
- 5xx, timeouts, connection errors → NetworkError
- any other 4xx → the client's service error (NotionAPIError, GoogleSheetsAPIError)

Transient failures get a short in-request retry; anything still failing is
raised so the job queue's backoff takes over.
"""

import httpx
import asyncio
from typing import Any, Dict, Optional, Type
from core.exceptions import (
    ExternalAPIError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
)
import logging

logger = logging.getLogger(__name__)


class BaseAPIClient:
    """
    Thin async HTTP client with structured errors.

    Attributes:
        service: Name used in logs and error context ("notion", "google")
        max_retries: Attempts per request for transient failures (default: 2)
        retry_delay: Initial retry delay in seconds, doubled per attempt
    """

    service = "external"
    error_class: Type[ExternalAPIError] = ExternalAPIError

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _context(self, method: str, url: str, **extra) -> Dict[str, Any]:
        return {"service": self.service, "method": method, "url": url, **extra}

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Send one request, retrying transient failures.

        Raises:
            AuthenticationError, ResourceNotFoundError: immediately
            RateLimitError, NetworkError: after max_retries attempts
            ExternalAPIError subclass: other 4xx responses
        """
        request_headers = headers if headers is not None else self._headers()

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1
            delay = self.retry_delay * (2 ** attempt)

            try:
                response = await self._client.request(
                    method, url, params=params, json=json, data=data, headers=request_headers
                )
            except httpx.TimeoutException as e:
                if not is_last:
                    logger.warning(f"{self.service} request timeout. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                raise NetworkError(
                    f"{self.service} request timeout after {self.max_retries} attempts",
                    context=self._context(method, url, timeout=self.timeout),
                    original_exception=e,
                )
            except httpx.TransportError as e:
                if not is_last:
                    logger.warning(f"{self.service} network error. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                raise NetworkError(
                    f"{self.service} network error after {self.max_retries} attempts",
                    context=self._context(method, url),
                    original_exception=e,
                )

            status = response.status_code

            if status in (401, 403):
                raise AuthenticationError(
                    f"{self.service} authentication failed",
                    context=self._context(method, url, status_code=status),
                )

            if status == 404:
                raise ResourceNotFoundError(
                    f"{self.service} resource not found",
                    context=self._context(method, url, status_code=404),
                )

            if status == 429:
                retry_after = self._retry_after(response, delay)
                if not is_last:
                    logger.warning(f"{self.service} rate limited. Retrying after {retry_after} seconds")
                    await asyncio.sleep(retry_after)
                    continue
                raise RateLimitError(
                    f"{self.service} rate limit exceeded",
                    context=self._context(method, url, status_code=429, retry_count=attempt + 1),
                    retry_after=int(retry_after),
                )

            if status >= 500:
                if not is_last:
                    logger.warning(
                        f"{self.service} server error {status}. "
                        f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise NetworkError(
                    f"{self.service} server error after {self.max_retries} attempts",
                    context=self._context(
                        method, url, status_code=status, response_body=response.text[:500]
                    ),
                )

            if status >= 400:
                raise self.error_class(
                    f"{self.service} request failed with status {status}",
                    context=self._context(
                        method, url, status_code=status, response_body=response.text[:500]
                    ),
                )

            return response

        # Unreachable: the last attempt always returns or raises
        raise self.error_class("Max retries exceeded", context=self._context(method, url))

    @staticmethod
    def _retry_after(response: httpx.Response, default: float) -> float:
        try:
            return float(response.headers.get("Retry-After", default))
        except ValueError:
            return default

    def _json(self, response: httpx.Response, method: str, url: str) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            raise self.error_class(
                "Failed to parse JSON response",
                context=self._context(method, url, response_body=response.text[:500]),
                original_exception=e,
            )
