"""
Base JSON API client for side-effect providers.

Every provider request goes through one code path:
- httpx.AsyncClient with a bounded timeout
- pybreaker circuit breaker via shared.circuit_breaker.call_with_breaker
- 404 -> ConfigurationError, any other failure -> ExternalServiceError

No automatic retries: a failed side effect surfaces as an executor branch.
"""

import logging
from typing import Any

import httpx
import pybreaker

from chatflow.services.errors import ConfigurationError, ExternalServiceError
from shared.circuit_breaker import call_with_breaker

logger = logging.getLogger(__name__)


class JsonApiClient:
    """Minimal JSON client shared by the scheduling, catalog and CRM clients."""

    service_name = "api"

    def __init__(
        self,
        base_url: str,
        breaker: pybreaker.CircuitBreaker,
        token: str | None = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.breaker = breaker
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self.headers,
                **kwargs,
            )
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send a request and decode the JSON body.

        Raises:
            ConfigurationError: On 404 responses
            ExternalServiceError: On any other HTTP/transport failure or open circuit
        """
        try:
            return await call_with_breaker(self.breaker, self._send, method, path, **kwargs)

        except pybreaker.CircuitBreakerError as e:
            raise ExternalServiceError(self.service_name, "circuit open") from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"{self.service_name} {method} {path} returned {status}")
            if status == 404:
                raise ConfigurationError(self.service_name, f"{path} not found", status) from e
            raise ExternalServiceError(self.service_name, f"HTTP {status}", status) from e

        except httpx.HTTPError as e:
            logger.error(f"{self.service_name} {method} {path} failed: {e}")
            raise ExternalServiceError(self.service_name, str(e) or type(e).__name__) from e
