"""
Transport abstraction for the Datastore SDK.

This module defines the Transport protocol that DatastoreRequest sends
requests through, plus the HTTP/JSON implementation used in production.

Invariants:
    - One dispatch() call is exactly one round trip
    - dispatch() never retries; transient failures surface immediately
    - The request body is sent as given; the transport owns addressing

How to change safely:
    - Protocol changes require updating FakeTransport in testing.py
    - Keep error types stable: callers match on ApiError/ConnectionError
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx

from .config import Settings
from .errors import ApiError, ConnectionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Operation:
    """Addresses one RPC of a service.

    Attributes:
        service: Service name, always "Datastore" for this SDK
        method: RPC name (lookup, runQuery, commit, rollback, allocateIds)
    """

    service: str
    method: str

    def __str__(self) -> str:
        return f"{self.service}.{self.method}"


@runtime_checkable
class Transport(Protocol):
    """Protocol for sending a single request to the Datastore API.

    Example:
        >>> response = await transport.dispatch(
        ...     Operation("Datastore", "lookup"),
        ...     {"projectId": "my-project", "keys": [key_proto]},
        ... )
    """

    @abstractmethod
    async def dispatch(self, operation: Operation, req_opts: Dict[str, Any]) -> Dict[str, Any]:
        """Send one request and return the decoded response body.

        Args:
            operation: RPC being called
            req_opts: Fully decorated request body (includes projectId)

        Returns:
            Decoded response body

        Raises:
            Any transport-specific error; callers receive it unwrapped
        """
        ...


class HttpTransport:
    """Datastore v1 REST transport built on httpx.

    Requests are posted as JSON to
    ``{base_url}/v1/projects/{projectId}:{method}``.

    Example:
        >>> async with HttpTransport(Settings(project_id="demo")) as transport:
        ...     await transport.dispatch(Operation("Datastore", "lookup"), body)
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the transport.

        Args:
            settings: SDK settings (endpoint, token, timeout)
            client: Optional preconfigured httpx client, not closed by us
        """
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client if we created it."""
        if self._owns_client:
            await self._client.aclose()
            logger.debug("Closed Datastore HTTP transport")

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.access_token and not self._settings.emulator_host:
            headers["Authorization"] = f"Bearer {self._settings.access_token}"
        return headers

    async def dispatch(self, operation: Operation, req_opts: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(req_opts)
        project_id = body.pop("projectId", None) or self._settings.project_id
        url = f"/v1/projects/{project_id}:{operation.method}"

        try:
            response = await self._client.post(url, json=body, headers=self._headers())
        except httpx.TransportError as e:
            logger.warning(f"{operation} failed to reach {self._settings.base_url}: {e}")
            raise ConnectionError(
                f"Failed to reach Datastore API: {e}",
                address=self._settings.base_url,
            ) from e

        payload = _decode_body(response)

        if response.is_error:
            message = f"{operation} failed with HTTP {response.status_code}"
            if payload and isinstance(payload.get("error"), dict):
                message = payload["error"].get("message") or message
            logger.warning(f"{operation} returned {response.status_code}: {message}")
            raise ApiError(message, status_code=response.status_code, response=payload)

        return payload or {}


def _decode_body(response: httpx.Response) -> Optional[Dict[str, Any]]:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return {"error": {"message": response.text}}
