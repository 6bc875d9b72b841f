"""
Datastore Python SDK - request layer for a Datastore document database.

This SDK turns high-level operations into Datastore v1 requests:
- Keys, entities and their wire encoding
- Query builder
- DatastoreRequest / Datastore client with paginated reads, streaming
  delivery and transaction-aware mutations

Example:
    >>> from datastore_sdk import Datastore, Settings
    >>>
    >>> async with Datastore(Settings(project_id="my-project")) as ds:
    ...     key = ds.key(["Task", "sampletask"])
    ...     await ds.save({"key": key, "data": {"title": "Ship it"}})
    ...     task = await ds.get(key)
    ...
    ...     async for entity in ds.run_query_stream(ds.create_query("Task")):
    ...         print(entity.key, entity)

Invariants:
    - Usage errors are raised before any request is sent
    - Reads follow deferred keys and query cursors until complete
    - Ending a stream stops all further round trips

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import Datastore
from .config import Settings
from .entity import Entity, EntityCodec, GeoPoint, Key
from .errors import (
    ApiError,
    ConnectionError,
    DatastoreError,
    InvalidArgumentError,
    UsageError,
)
from .query import Query
from .request import CONSISTENCY_PROTO_CODE, MUTATION_METHODS, DatastoreRequest
from .stream import (
    MORE_RESULTS_AFTER_CURSOR,
    MORE_RESULTS_AFTER_LIMIT,
    MORE_RESULTS_NOT_FINISHED,
    NO_MORE_RESULTS,
    QueryInfo,
    ReadState,
    ResultStream,
)
from .transport import HttpTransport, Operation, Transport

__all__ = [
    # Version
    "__version__",
    # Client
    "Datastore",
    "DatastoreRequest",
    "Settings",
    # Data model
    "Key",
    "Entity",
    "GeoPoint",
    "EntityCodec",
    "Query",
    # Streaming
    "ResultStream",
    "ReadState",
    "QueryInfo",
    # Transport
    "Transport",
    "HttpTransport",
    "Operation",
    # Wire constants
    "CONSISTENCY_PROTO_CODE",
    "MUTATION_METHODS",
    "MORE_RESULTS_NOT_FINISHED",
    "MORE_RESULTS_AFTER_LIMIT",
    "MORE_RESULTS_AFTER_CURSOR",
    "NO_MORE_RESULTS",
    # Errors
    "DatastoreError",
    "UsageError",
    "InvalidArgumentError",
    "ApiError",
    "ConnectionError",
]
