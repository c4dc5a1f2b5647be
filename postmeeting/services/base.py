"""
Shared plumbing for the HTTP adapters: client construction, error mapping, metrics.
"""
import time
from typing import NoReturn, Optional, Type

import httpx

from postmeeting.config import settings
from postmeeting.exceptions import APIError, RateLimitError, TransientAPIError
from postmeeting.logging_config import get_logger
from postmeeting.monitoring import record_error, record_request

logger = get_logger(__name__)


class BaseAPIService:
    """Base class for external API adapters."""

    platform = "generic"
    error_class: Type[APIError] = APIError

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # transport is swapped for httpx.MockTransport in tests
        self._transport = transport

    @property
    def component(self) -> str:
        return f"{self.platform}_service"

    def _client(self, timeout: Optional[float] = None, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or settings.request_timeout,
            transport=self._transport,
            **kwargs,
        )

    def _record_success(self, operation: str, started: float) -> None:
        record_request(self.platform, operation, "success", started)

    def _handle_http_error(self, error: httpx.HTTPStatusError, operation: str) -> NoReturn:
        """
        Map an HTTP error response onto the exception taxonomy.

        429 and 5xx become retryable; everything else is a platform error.
        """
        status_code = error.response.status_code
        record_request(self.platform, operation, f"error_{status_code}", time.time())

        if status_code == 429:
            retry_after = error.response.headers.get("Retry-After")
            record_error("RateLimitError", self.component)
            raise RateLimitError(
                f"Rate limit exceeded for {operation}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                platform=self.platform,
            )
        if status_code >= 500:
            record_error("TransientAPIError", self.component)
            raise TransientAPIError(
                f"{self.platform} {operation} failed with {status_code}",
                status_code=status_code,
                platform=self.platform,
            )
        if status_code == 404:
            # often expected: bot already deleted, transcript not ready
            logger.debug(f"{self.platform}_api_404", operation=operation)
        else:
            record_error(self.error_class.__name__, self.component)

        error_text = error.response.text[:500] if error.response.text else "No details"
        raise self.error_class(f"API error in {operation}: {status_code} - {error_text}", status_code=status_code)

    def _handle_transport_error(self, error: httpx.RequestError, operation: str) -> NoReturn:
        """Timeouts and connection failures are transient."""
        kind = "TimeoutError" if isinstance(error, httpx.TimeoutException) else type(error).__name__
        record_error(kind, self.component)
        logger.warning(f"{self.platform}_api_unreachable", operation=operation, error=str(error), error_type=kind)
        raise TransientAPIError(
            f"{kind} in {operation}: {error}",
            platform=self.platform,
        )
