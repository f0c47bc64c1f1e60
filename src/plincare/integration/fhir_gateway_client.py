"""FHIR Gateway Client.

Async client that forwards decoded FHIR resources to the downstream FHIR
gateway, one POST per resource. Every call has a bounded timeout and there
is no retry: idempotency and retry policy belong to the gateway.
"""

import asyncio
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import httpx

from plincare.utils.exceptions import DeliveryError
from plincare.utils.logging import get_logger

logger = get_logger(__name__)

FHIR_JSON = "application/fhir+json"


class FHIRGatewayClient:
    """Async client for the FHIR gateway resource API.

    A single ``httpx.AsyncClient`` is shared by all MLLP connections; it is
    safe for concurrent use.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize gateway client.

        Args:
            base_url: Base URL of the gateway (e.g. http://localhost:3000)
            timeout: Timeout in seconds for a whole request, response included
            transport: Optional httpx transport, used to stub the gateway
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"Accept": FHIR_JSON, "Content-Type": FHIR_JSON},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "FHIRGatewayClient":
        """Enter async context."""
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        """Exit async context, closing the HTTP client."""
        await self.close()

    def resource_url(self, resource_type: str) -> str:
        """URL of the gateway collection for a resource type."""
        return urljoin(self.base_url + "/", f"api/fhir/{resource_type}")

    async def deliver(self, resource: Dict[str, Any]) -> int:
        """POST one resource to the gateway.

        Args:
            resource: FHIR resource to deliver

        Returns:
            HTTP status code of the accepted request (2xx)

        Raises:
            ValueError: If the resource has no resourceType
            DeliveryError: If the gateway rejects the resource, times out or
                cannot be reached
        """
        resource_type = resource.get("resourceType")
        if not resource_type:
            raise ValueError("Resource must have a resourceType")

        client = await self._get_client()
        url = self.resource_url(resource_type)

        try:
            # httpx timeouts are per phase; the whole exchange is bounded here
            response = await asyncio.wait_for(
                client.post(url, json=resource), timeout=self.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise DeliveryError(
                f"Gateway timed out after {self.timeout}s delivering {resource_type}"
            ) from e
        except httpx.RequestError as e:
            raise DeliveryError(f"Gateway unreachable: {e}") from e

        if not response.is_success:
            raise DeliveryError(
                f"Gateway rejected {resource_type}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(
            "resource_delivered",
            resource_type=resource_type,
            resource_id=resource.get("id"),
            status_code=response.status_code,
        )
        return response.status_code
