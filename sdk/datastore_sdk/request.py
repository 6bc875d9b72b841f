"""
Request layer of the Datastore SDK.

DatastoreRequest turns high-level operations into wire requests:
- Request decorator: project identity and transaction context per RPC
- Mutation builder: save/insert/update/upsert/delete/allocate_ids
- Paginated read engine: get/run_query with deferred-key and cursor
  continuation, in awaitable or streaming form
- Transaction queue: mutations diverted to a local queue while a
  transaction coordinator has one open

Example:
    >>> request = DatastoreRequest("my-project", transport)
    >>> await request.save({"key": Key(["Task"]), "data": {"title": "Ship"}})
    >>> entities, info = await request.run_query(Query(["Task"]).limit(10))

Invariants:
    - Usage errors are raised before any request is dispatched
    - Transport errors reach the caller unwrapped
    - A read never has more than one round trip in flight
    - Once a stream is ended, its read issues no further round trips
    - Caller-supplied entity objects are never mutated; only the id of an
      incomplete key is assigned after a successful commit
"""

from __future__ import annotations

import copy
import logging
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .entity import Entity, EntityCodec, Key
from .errors import InvalidArgumentError, UsageError
from .stream import MORE_RESULTS_NOT_FINISHED, QueryInfo, ReadState, ResultStream
from .transport import Operation, Transport

logger = logging.getLogger(__name__)

SERVICE = "Datastore"

CONSISTENCY_PROTO_CODE = {
    "strong": 1,
    "eventual": 2,
}

MUTATION_METHODS = ("insert", "update", "upsert", "delete")

CommitCallback = Callable[[Optional[BaseException], Optional[Dict[str, Any]]], Any]


def _arrify(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _with_method(entities: Any, method: str) -> List[Dict[str, Any]]:
    return [dict(entity_object, method=method) for entity_object in _arrify(entities)]


class DatastoreRequest:
    """Builds, decorates and dispatches Datastore requests.

    Attributes:
        project_id: Project every request is addressed to
        transport: Transport used for round trips
        codec: Codec between SDK objects and wire protos
        id: Active transaction id, set by the transaction coordinator
        requests: Pending commit bodies while a transaction queues mutations
        request_callbacks: Completion callbacks parallel to requests
    """

    def __init__(
        self,
        project_id: str,
        transport: Transport,
        *,
        codec: Optional[EntityCodec] = None,
        stream_buffer_size: int = 1,
    ) -> None:
        """Initialize the request layer.

        Args:
            project_id: Project identity attached to every request
            transport: Transport for round trips
            codec: Optional codec (defaults to EntityCodec)
            stream_buffer_size: Entities buffered ahead of a stream consumer
        """
        self.project_id = project_id
        self.transport = transport
        self.codec = codec or EntityCodec()
        self.stream_buffer_size = stream_buffer_size

        # Transaction context, owned by the transaction coordinator
        self.id: Optional[str] = None
        self.requests: Optional[List[Dict[str, Any]]] = None
        self.request_callbacks: Optional[List[CommitCallback]] = None

    # ------------------------------------------------------------------
    # Request decorator
    # ------------------------------------------------------------------

    def _decorate(self, method: str, req_opts: Dict[str, Any]) -> Dict[str, Any]:
        """Attach project identity and transaction context in place.

        Raises:
            UsageError: If a read consistency is set inside a transaction
        """
        req_opts["projectId"] = self.project_id

        if method == "commit":
            req_opts["mode"] = "NON_TRANSACTIONAL"
            if self.id:
                req_opts["mode"] = "TRANSACTIONAL"
                req_opts["transaction"] = self.id

        elif method == "rollback":
            req_opts["transaction"] = self.id

        elif method in ("lookup", "runQuery") and self.id:
            read_options = req_opts.setdefault("readOptions", {})
            if read_options.get("readConsistency"):
                raise UsageError("Read consistency cannot be specified in a transaction.")
            read_options["transaction"] = self.id

        return req_opts

    async def _request(
        self,
        method: str,
        req_opts: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Decorate a request body and send it.

        Args:
            method: RPC name
            req_opts: Request body, decorated in place

        Returns:
            Decoded response body
        """
        req_opts = self._decorate(method, {} if req_opts is None else req_opts)
        operation = Operation(SERVICE, method)
        logger.debug(f"Dispatching {operation} for project {self.project_id}")
        return await self.transport.dispatch(operation, req_opts)

    # ------------------------------------------------------------------
    # Transaction queue
    # ------------------------------------------------------------------

    @property
    def is_queueing(self) -> bool:
        """Whether mutations are currently diverted to the transaction queue."""
        return bool(self.id) and self.requests is not None

    def _enqueue(self, req_opts: Dict[str, Any], on_commit: CommitCallback) -> None:
        if self.requests is None:
            raise UsageError("Mutations can only be queued inside a transaction.")
        if self.request_callbacks is None:
            self.request_callbacks = []

        self.requests.append(req_opts)
        self.request_callbacks.append(on_commit)
        logger.debug(
            f"Queued {len(req_opts['mutations'])} mutations in transaction {self.id}"
        )

    # ------------------------------------------------------------------
    # Mutation builder
    # ------------------------------------------------------------------

    def _entity_proto(
        self,
        data: Union[Dict[str, Any], List[Dict[str, Any]]],
        exclude_from_indexes: Sequence[str] = (),
    ) -> Dict[str, Any]:
        if not isinstance(data, list):
            return self.codec.entity_to_entity_proto(data, exclude_from_indexes)

        properties: Dict[str, Any] = {}
        for prop in data:
            value_proto = self.codec.encode_value(prop.get("value"))
            exclude = prop.get("exclude_from_indexes")

            if isinstance(exclude, bool):
                values = (value_proto.get("arrayValue") or {}).get("values")
                if values is not None:
                    for element in values:
                        element["excludeFromIndexes"] = exclude
                else:
                    value_proto["excludeFromIndexes"] = exclude

            properties[prop["name"]] = value_proto

        return {"properties": properties}

    def _assign_generated_ids(
        self,
        entity_objects: List[Dict[str, Any]],
        insert_indexes: List[int],
        response: Optional[Dict[str, Any]],
    ) -> None:
        results = (response or {}).get("mutationResults") or []

        for index in insert_indexes:
            if index >= len(results):
                break
            key_proto = results[index].get("key")
            if key_proto is None:
                continue
            entity_objects[index]["key"].id = self.codec.key_from_key_proto(key_proto).id

    async def save(
        self,
        entities: Union[Dict[str, Any], Sequence[Dict[str, Any]]],
        callback: Optional[CommitCallback] = None,
    ) -> Optional[Dict[str, Any]]:
        """Insert, update, upsert or delete entities in one commit.

        Each entity object is a dict with ``key``, ``data`` and an optional
        ``method`` (default ``upsert``). ``data`` is either a property dict or
        a list of ``{"name", "value", "exclude_from_indexes"}`` dicts. With
        dict data, an optional ``exclude_from_indexes`` list names the
        properties left out of indexes.

        Args:
            entities: One entity object or a list of them
            callback: Called with (error, api_response) when the enclosing
                transaction commits; only used while mutations are queued

        Returns:
            API response, or None when the mutations were queued

        Raises:
            InvalidArgumentError: If a method is not recognized
        """
        entity_objects = _arrify(entities)
        insert_indexes: List[int] = []
        mutations: List[Dict[str, Any]] = []

        for index, entity_object in enumerate(entity_objects):
            method = entity_object.get("method") or "upsert"
            if method not in MUTATION_METHODS:
                raise InvalidArgumentError(
                    f"Method {method} not recognized.",
                    argument="method",
                    value=method,
                )

            key = entity_object["key"]
            key_proto = self.codec.key_to_key_proto(key)

            if method == "delete":
                mutations.append({"delete": key_proto})
                continue

            if not self.codec.is_key_complete(key):
                insert_indexes.append(index)

            entity_proto = self._entity_proto(
                copy.deepcopy(entity_object.get("data") or {}),
                entity_object.get("exclude_from_indexes") or (),
            )
            entity_proto["key"] = key_proto
            mutations.append({method: entity_proto})

        req_opts: Dict[str, Any] = {"mutations": mutations}

        if self.is_queueing:

            def on_commit(
                error: Optional[BaseException],
                response: Optional[Dict[str, Any]],
            ) -> None:
                if error is None:
                    self._assign_generated_ids(entity_objects, insert_indexes, response)
                if callback is not None:
                    callback(error, response)

            self._enqueue(req_opts, on_commit)
            return None

        response = await self._request("commit", req_opts)
        self._assign_generated_ids(entity_objects, insert_indexes, response)
        return response

    async def insert(
        self,
        entities: Union[Dict[str, Any], Sequence[Dict[str, Any]]],
        callback: Optional[CommitCallback] = None,
    ) -> Optional[Dict[str, Any]]:
        """Save entities that must not exist yet."""
        return await self.save(_with_method(entities, "insert"), callback)

    async def update(
        self,
        entities: Union[Dict[str, Any], Sequence[Dict[str, Any]]],
        callback: Optional[CommitCallback] = None,
    ) -> Optional[Dict[str, Any]]:
        """Save entities that must already exist."""
        return await self.save(_with_method(entities, "update"), callback)

    async def upsert(
        self,
        entities: Union[Dict[str, Any], Sequence[Dict[str, Any]]],
        callback: Optional[CommitCallback] = None,
    ) -> Optional[Dict[str, Any]]:
        """Save entities whether or not they exist."""
        return await self.save(_with_method(entities, "upsert"), callback)

    async def delete(
        self,
        keys: Union[Key, Sequence[Key]],
        callback: Optional[CommitCallback] = None,
    ) -> Optional[Dict[str, Any]]:
        """Delete entities by key in one commit.

        Args:
            keys: One key or a list of keys
            callback: Called with (error, api_response) when the enclosing
                transaction commits; only used while mutations are queued

        Returns:
            API response, or None when the mutations were queued
        """
        req_opts: Dict[str, Any] = {
            "mutations": [{"delete": self.codec.key_to_key_proto(key)} for key in _arrify(keys)]
        }

        if self.is_queueing:

            def on_commit(
                error: Optional[BaseException],
                response: Optional[Dict[str, Any]],
            ) -> None:
                if callback is not None:
                    callback(error, response)

            self._enqueue(req_opts, on_commit)
            return None

        return await self._request("commit", req_opts)

    async def allocate_ids(
        self,
        incomplete_key: Key,
        n: int,
    ) -> Tuple[List[Key], Dict[str, Any]]:
        """Reserve n ids for an incomplete key.

        Args:
            incomplete_key: Key whose kind, namespace and ancestors are used
            n: Number of ids to allocate

        Returns:
            Tuple of (complete keys, API response)

        Raises:
            UsageError: If the key is already complete
        """
        if self.codec.is_key_complete(incomplete_key):
            raise UsageError("An incomplete key should be provided.")

        key_proto = self.codec.key_to_key_proto(incomplete_key)
        req_opts = {"keys": [copy.deepcopy(key_proto) for _ in range(n)]}

        response = await self._request("allocateIds", req_opts)
        keys = [self.codec.key_from_key_proto(proto) for proto in response.get("keys") or []]
        return keys, response

    # ------------------------------------------------------------------
    # Paginated read engine
    # ------------------------------------------------------------------

    def _read_options(self, consistency: Optional[str]) -> Dict[str, Any]:
        if consistency is None:
            return {}
        if consistency not in CONSISTENCY_PROTO_CODE:
            raise InvalidArgumentError(
                f"Consistency {consistency} not recognized.",
                argument="consistency",
                value=consistency,
            )
        if self.id:
            raise UsageError("Read consistency cannot be specified in a transaction.")
        return {"readConsistency": CONSISTENCY_PROTO_CODE[consistency]}

    def get_stream(
        self,
        keys: Union[Key, Sequence[Key]],
        *,
        consistency: Optional[str] = None,
        max_api_calls: Optional[int] = None,
    ) -> ResultStream[Entity]:
        """Stream the entities stored under keys.

        Deferred keys are looked up again until the server resolves them
        all or the stream is ended.

        Args:
            keys: One key or a list of keys
            consistency: "strong" or "eventual"
            max_api_calls: Stop after this many lookups

        Raises:
            UsageError: If no key is given, or consistency is set inside a transaction
        """
        key_list = _arrify(keys)
        if not key_list:
            raise UsageError("At least one Key object is required.")

        producer = partial(
            self._run_lookup,
            key_protos=[self.codec.key_to_key_proto(key) for key in key_list],
            read_options=self._read_options(consistency),
            max_api_calls=max_api_calls,
        )
        return ResultStream(producer, max_buffer=self.stream_buffer_size)

    async def get(
        self,
        keys: Union[Key, Sequence[Key]],
        *,
        consistency: Optional[str] = None,
        max_api_calls: Optional[int] = None,
    ) -> Union[Entity, List[Entity], None]:
        """Fetch entities by key.

        Returns:
            For a single key, the entity or None; for a list of keys, the
            found entities in no guaranteed order
        """
        stream = self.get_stream(keys, consistency=consistency, max_api_calls=max_api_calls)
        entities = await stream.collect()

        if isinstance(keys, (list, tuple)):
            return entities
        return entities[0] if entities else None

    async def _run_lookup(
        self,
        stream: ResultStream[Entity],
        *,
        key_protos: List[Dict[str, Any]],
        read_options: Dict[str, Any],
        max_api_calls: Optional[int],
    ) -> None:
        api_calls = 0

        while key_protos:
            req_opts: Dict[str, Any] = {"keys": key_protos}
            if read_options:
                req_opts["readOptions"] = dict(read_options)

            stream.state = ReadState.AWAITING_RESPONSE
            response = await self._request("lookup", req_opts)
            api_calls += 1

            entities = self.codec.format_array(response.get("found"))
            key_protos = [
                self.codec.key_to_key_proto(self.codec.key_from_key_proto(key_proto))
                for key_proto in response.get("deferred") or []
            ]

            stream.state = ReadState.DELIVER
            for entity in entities:
                if not await stream.push(entity):
                    break

            if stream.ended:
                return

            if key_protos:
                if max_api_calls is not None and api_calls >= max_api_calls:
                    logger.debug(f"Lookup stopped after {api_calls} calls")
                    return
                stream.state = ReadState.CONTINUE
                if not await stream.wait_consumed():
                    return
                logger.debug(f"Lookup deferred {len(key_protos)} keys, looking up again")

    def run_query_stream(
        self,
        query: Any,
        *,
        consistency: Optional[str] = None,
        max_api_calls: Optional[int] = None,
    ) -> ResultStream[Entity]:
        """Stream the results of a query across all of its batches.

        A QueryInfo is emitted through on_info() after every batch.

        Args:
            query: Query builder
            consistency: "strong" or "eventual"
            max_api_calls: Stop after this many round trips

        Raises:
            UsageError: If consistency is set inside a transaction
        """
        producer = partial(
            self._run_query,
            query=query,
            read_options=self._read_options(consistency),
            max_api_calls=max_api_calls,
        )
        return ResultStream(producer, max_buffer=self.stream_buffer_size)

    async def run_query(
        self,
        query: Any,
        *,
        consistency: Optional[str] = None,
        max_api_calls: Optional[int] = None,
    ) -> Tuple[List[Entity], Optional[QueryInfo]]:
        """Run a query to completion.

        Returns:
            Tuple of (all entities, info of the final round trip)
        """
        stream = self.run_query_stream(query, consistency=consistency, max_api_calls=max_api_calls)
        entities = await stream.collect()
        return entities, stream.info

    async def _run_query(
        self,
        stream: ResultStream[Entity],
        *,
        query: Any,
        read_options: Dict[str, Any],
        max_api_calls: Optional[int],
    ) -> None:
        limit = query.limit_val if query.limit_val > 0 else None
        offset = query.offset_val if query.offset_val > 0 else None
        results_so_far = 0
        skipped_so_far = 0
        api_calls = 0

        while True:
            req_opts: Dict[str, Any] = {
                "readOptions": dict(read_options),
                "query": self.codec.query_to_query_proto(query),
            }
            if query.namespace:
                req_opts["partitionId"] = {"namespaceId": query.namespace}

            stream.state = ReadState.AWAITING_RESPONSE
            response = await self._request("runQuery", req_opts)
            api_calls += 1

            batch = response.get("batch") or {}
            entity_results = batch.get("entityResults") or []
            entities = self.codec.format_array(entity_results)
            results_so_far += len(entity_results)
            skipped_so_far += int(batch.get("skippedResults") or 0)
            info = QueryInfo(
                end_cursor=batch.get("endCursor"),
                more_results=batch.get("moreResults"),
            )

            stream.state = ReadState.DELIVER
            for entity in entities:
                if not await stream.push(entity):
                    break

            if stream.ended:
                return

            stream.emit_info(info)

            if info.more_results != MORE_RESULTS_NOT_FINISHED:
                return
            if max_api_calls is not None and api_calls >= max_api_calls:
                logger.debug(f"Query stopped after {api_calls} calls")
                return

            stream.state = ReadState.CONTINUE
            if not await stream.wait_consumed():
                return

            query = copy.copy(query).start(info.end_cursor)
            if offset is not None:
                query = query.offset(max(offset - skipped_so_far, 0))
            if limit is not None:
                query = query.limit(limit - results_so_far)

            logger.debug(
                f"Query not finished after {results_so_far} results, continuing from cursor"
            )
