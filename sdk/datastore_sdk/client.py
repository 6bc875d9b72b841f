"""
Datastore client for the Python SDK.

This module provides the main client interface:
- Datastore: request layer wired to settings and an HTTP transport

Example:
    >>> async with Datastore(Settings(project_id="my-project")) as ds:
    ...     task = ds.key(["Task"])
    ...     await ds.save({"key": task, "data": {"title": "Ship it"}})
    ...     entities, info = await ds.run_query(ds.create_query("Task"))

Invariants:
    - Settings are loaded from the environment when not given
    - A transport created here is closed by close(); an injected one is not
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from .config import Settings
from .entity import EntityCodec, Key
from .query import Query
from .request import DatastoreRequest
from .transport import HttpTransport, Transport

logger = logging.getLogger(__name__)


class Datastore(DatastoreRequest):
    """Client for a Datastore project.

    Attributes:
        settings: Effective SDK settings
        namespace: Default namespace for keys and queries
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[Transport] = None,
        codec: Optional[EntityCodec] = None,
    ) -> None:
        """Initialize client.

        Args:
            settings: Optional settings (loaded from env if not provided)
            transport: Optional transport (HttpTransport if not provided)
            codec: Optional codec (EntityCodec if not provided)
        """
        self.settings = settings or Settings()
        self._owns_transport = transport is None

        super().__init__(
            self.settings.project_id,
            transport or HttpTransport(self.settings),
            codec=codec,
            stream_buffer_size=self.settings.stream_buffer_size,
        )
        self.namespace = self.settings.namespace

        logger.debug(
            f"Datastore client for project {self.project_id} at {self.settings.base_url}"
        )

    def key(self, path: Sequence[Any], namespace: Optional[str] = None) -> Key:
        """Create a key in the given or default namespace."""
        return Key(path, namespace=namespace or self.namespace)

    def create_query(self, *kinds: str, namespace: Optional[str] = None) -> Query:
        """Create a query over kinds in the given or default namespace."""
        return Query(kinds, namespace=namespace or self.namespace)

    async def close(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport and isinstance(self.transport, HttpTransport):
            await self.transport.close()

    async def __aenter__(self) -> Datastore:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
