"""
HTTP client for an external key/value memory service.

Memories live at {base_url}/memories/{namespace}/{key}. GET returns
{"value": ...} (404 when absent); PUT stores {"value": ...}.
"""

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from .capability import CapabilityError, CapabilityTimeoutError
from .logging_config import get_logger

logger = get_logger("memory_client")


class HttpMemoryStore:
    """
    Async MemoryStore over httpx.

    Example:
        ```python
        async with HttpMemoryStore("http://127.0.0.1:3000", namespace="project:docs") as memory:
            await memory.write("summary", "...")
            summary = await memory.read("summary")
        ```
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:3000",
        namespace: str = "default",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0
    ):
        """
        Args:
            base_url: Memory service URL
            namespace: Namespace all keys are stored under
            client: Pre-built client (e.g. with a MockTransport in tests)
            timeout: Default request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.namespace = namespace
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, key: str) -> str:
        return f"{self.base_url}/memories/{quote(self.namespace, safe='')}/{quote(key, safe='')}"

    @staticmethod
    def _request_options(timeout: Optional[float]) -> Dict[str, Any]:
        return {"timeout": timeout} if timeout is not None else {}

    async def read(self, key: str, *, timeout: Optional[float] = None) -> Optional[Any]:
        """Return the stored value, or None when the key is absent."""
        try:
            response = await self.client.get(self._url(key), **self._request_options(timeout))
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json().get("value")
        except httpx.TimeoutException as e:
            raise CapabilityTimeoutError(f"memory read timed out: {key}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise CapabilityError(f"memory read failed for {key}: {e}") from e

    async def write(self, key: str, value: Any, *, timeout: Optional[float] = None) -> None:
        try:
            response = await self.client.put(
                self._url(key),
                json={"value": value},
                **self._request_options(timeout)
            )
            response.raise_for_status()
            logger.debug(f"Stored memory {self.namespace}/{key}")
        except httpx.TimeoutException as e:
            raise CapabilityTimeoutError(f"memory write timed out: {key}") from e
        except httpx.HTTPError as e:
            raise CapabilityError(f"memory write failed for {key}: {e}") from e

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
