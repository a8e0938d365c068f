"""
Base Service Client for Internal Microservice Communication

Base class for HTTP clients talking to peer services (e.g. the optimizer).
"""

import httpx
import logging
from typing import Optional, Dict, Any
from abc import ABC

logger = logging.getLogger(__name__)


class BaseServiceClient(ABC):
    """
    Base class for service clients

    Handles:
    1. Base URL resolution
    2. HTTP client lifecycle
    3. Timeout control

    Example:
        class OptimizerClient(BaseServiceClient):
            service_name = "optimizer_service"
            default_port = 8270

            async def suggest(self, payload):
                response = await self.post("/api/v1/suggest", json=payload)
                return response.json()
    """

    # Subclasses define these
    service_name: str = None  # e.g. "optimizer_service"
    default_port: int = None   # e.g. 8270

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the service client

        Args:
            base_url: Service base URL (defaults to localhost on default_port)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if not self.service_name:
            raise ValueError(f"{self.__class__.__name__} must define 'service_name'")

        if base_url:
            self.base_url = base_url.rstrip('/')
        else:
            self.base_url = f"http://localhost:{self.default_port}" if self.default_port else "http://localhost:8000"
            logger.warning(f"No base URL for {self.service_name}, using default: {self.base_url}")

        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers=self._build_default_headers(),
            transport=transport,
        )

        logger.debug(f"Initialized {self.service_name} client: {self.base_url}")

    def _build_default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": f"dispatch-internal-client/{self.service_name}"
        }

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
        logger.debug(f"Closed {self.service_name} client")

    # ========================================
    # HTTP helpers
    # ========================================

    async def post(
        self,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        return await self.client.post(url, json=json, headers=headers)


__all__ = ["BaseServiceClient"]
