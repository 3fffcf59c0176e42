# inflight/operations/api_client.py
"""
Client-side access to the job HTTP API.

The operations manager talks to the server only through the OperationsApi
protocol; HttpOperationsApi implements it over httpx against the routes
served by inflight.api.
"""

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class OperationsApi(Protocol):
    """Server calls needed by the client operations manager."""

    async def create_job(
        self, job_type: str, input: dict[str, Any], target_id: str | None = None
    ) -> dict[str, Any]:
        """Create a job; returns the job view (job_id, type, status, ...)."""
        ...

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Return the job view, or None if the job does not exist."""
        ...

    async def list_jobs(self, status: str | None = None) -> list[dict[str, Any]]:
        ...

    async def list_active_operations(self) -> list[dict[str, Any]]:
        ...


class HttpOperationsApi:
    """OperationsApi over HTTP."""

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """
        Args:
            base_url: Server root, e.g. "http://127.0.0.1:8765"
            client: Optional pre-built client (tests pass one with an ASGI transport)
            timeout: Request timeout in seconds when building our own client
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout)
        )

    async def create_job(
        self, job_type: str, input: dict[str, Any], target_id: str | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"type": job_type, "input": input}
        if target_id is not None:
            body["target_id"] = target_id
        response = await self._client.post("/api/jobs", json=body)
        response.raise_for_status()
        return response.json()

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        response = await self._client.get(f"/api/jobs/{job_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def list_jobs(self, status: str | None = None) -> list[dict[str, Any]]:
        params = {"status": status} if status else None
        response = await self._client.get("/api/jobs", params=params)
        response.raise_for_status()
        return response.json()["jobs"]

    async def list_active_operations(self) -> list[dict[str, Any]]:
        response = await self._client.get("/api/operations/active")
        response.raise_for_status()
        return response.json()["operations"]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
