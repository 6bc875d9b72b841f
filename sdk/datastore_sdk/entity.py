"""
Keys, entities and their wire encoding.

This module converts between Python values and the JSON form of the
Datastore v1 protocol:
- Key: structured identifier (namespace + ancestor path + kind/id-or-name)
- Entity: dict of decoded properties carrying its Key
- EntityCodec: the default codec used by DatastoreRequest

Example:
    >>> key = Key(["Company", "acme", "Employee", 42], namespace="prod")
    >>> key_to_key_proto(key)["path"][-1]
    {'kind': 'Employee', 'id': '42'}

Invariants:
    - int64 values (integerValue, key ids) are written as decimal strings
    - Decoding accepts both string and numeric int64 forms
    - Ancestor keys always carry an id or a name
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import InvalidArgumentError

OP_TO_OPERATOR = {
    "=": "EQUAL",
    ">": "GREATER_THAN",
    ">=": "GREATER_THAN_OR_EQUAL",
    "<": "LESS_THAN",
    "<=": "LESS_THAN_OR_EQUAL",
    "HAS_ANCESTOR": "HAS_ANCESTOR",
}

_FRACTION = re.compile(r"\.(\d+)")


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair."""

    latitude: float
    longitude: float


class Key:
    """Identifier of an entity.

    A key is built from a flat path of alternating kinds and identifiers.
    An even-length path ends with an id (int or numeric string) or a name;
    an odd-length path, or a trailing None, makes the key incomplete.

    Attributes:
        namespace: Optional namespace
        kind: Kind of the final path element
        id: Numeric identifier, once known
        name: String identifier
        parent: Key of the ancestor, if any
    """

    def __init__(self, path: Sequence[Any], namespace: Optional[str] = None) -> None:
        elements = list(path)
        if not elements:
            raise InvalidArgumentError("A key path is required.", argument="path", value=path)

        self.namespace = namespace
        self.id: Optional[int] = None
        self.name: Optional[str] = None

        if len(elements) % 2 == 0:
            identifier = elements.pop()
            if isinstance(identifier, bool):
                raise InvalidArgumentError(
                    f"Invalid key identifier, {identifier!r}.",
                    argument="path",
                    value=path,
                )
            if isinstance(identifier, int):
                self.id = identifier
            elif isinstance(identifier, str) and identifier.isdigit():
                self.id = int(identifier)
            elif identifier is not None:
                self.name = identifier

        self.kind: str = elements.pop()
        self.parent: Optional[Key] = Key(elements, namespace) if elements else None

    @property
    def path(self) -> List[Any]:
        """Flat path including ancestors."""
        prefix = self.parent.path if self.parent else []
        return prefix + [self.kind, self.name if self.name is not None else self.id]

    @property
    def is_complete(self) -> bool:
        """Whether the final path element has an id or a name."""
        return self.id is not None or self.name is not None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self.namespace == other.namespace and self.path == other.path

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Key(path={self.path!r}, namespace={self.namespace!r})"


class Entity(dict):
    """Decoded entity: its properties plus the key it was stored under."""

    def __init__(self, *args: Any, key: Optional[Key] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.key = key

    def __repr__(self) -> str:
        return f"Entity(key={self.key!r}, properties={dict.__repr__(self)})"


def is_key_complete(key: Key) -> bool:
    """Check whether a key is complete."""
    return key.is_complete


def key_to_key_proto(key: Key) -> Dict[str, Any]:
    """Convert a Key to its wire form.

    Raises:
        InvalidArgumentError: If an ancestor has neither id nor name
    """
    key_proto: Dict[str, Any] = {"path": []}

    if key.namespace:
        key_proto["partitionId"] = {"namespaceId": key.namespace}

    node: Optional[Key] = key
    while node is not None:
        element: Dict[str, Any] = {"kind": node.kind}
        if node.id is not None:
            element["id"] = str(node.id)
        if node.name is not None:
            element["name"] = node.name
        key_proto["path"].insert(0, element)

        node = node.parent
        if node is not None and not node.is_complete:
            raise InvalidArgumentError(
                "Ancestor keys require an id or name.",
                argument="key",
                value=key,
            )

    return key_proto


def key_from_key_proto(key_proto: Dict[str, Any]) -> Key:
    """Build a Key from its wire form.

    Raises:
        InvalidArgumentError: If an ancestor element has neither id nor name
    """
    namespace = (key_proto.get("partitionId") or {}).get("namespaceId") or None
    elements = key_proto.get("path") or []
    path: List[Any] = []

    for index, element in enumerate(elements):
        path.append(element["kind"])
        if element.get("id") is not None:
            path.append(int(element["id"]))
        elif element.get("name") is not None:
            path.append(element["name"])
        elif index < len(elements) - 1:
            raise InvalidArgumentError(
                "Invalid key. Ancestor keys require an id or name.",
                argument="key_proto",
                value=key_proto,
            )

    return Key(path, namespace=namespace)


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_timestamp(value: str) -> datetime:
    # The API may send nanosecond precision; datetime keeps microseconds.
    text = value.replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text)


def encode_value(value: Any) -> Dict[str, Any]:
    """Encode a Python value as a wire value.

    Raises:
        InvalidArgumentError: For unsupported value types
    """
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, (bytes, bytearray)):
        return {"blobValue": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, datetime):
        return {"timestampValue": _format_timestamp(value)}
    if isinstance(value, Key):
        return {"keyValue": key_to_key_proto(value)}
    if isinstance(value, GeoPoint):
        return {"geoPointValue": {"latitude": value.latitude, "longitude": value.longitude}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"entityValue": entity_to_entity_proto(value)}

    raise InvalidArgumentError(
        f"Unsupported field value, {value!r}, was provided.",
        argument="value",
        value=value,
    )


def decode_value(value_proto: Dict[str, Any]) -> Any:
    """Decode a wire value into a Python value.

    Raises:
        InvalidArgumentError: If the value type is not recognized
    """
    if "arrayValue" in value_proto:
        values = (value_proto["arrayValue"] or {}).get("values") or []
        return [decode_value(v) for v in values]
    if "entityValue" in value_proto:
        return entity_from_entity_proto(value_proto["entityValue"] or {})
    if "keyValue" in value_proto:
        return key_from_key_proto(value_proto["keyValue"])
    if "geoPointValue" in value_proto:
        point = value_proto["geoPointValue"]
        return GeoPoint(point.get("latitude", 0.0), point.get("longitude", 0.0))
    if "timestampValue" in value_proto:
        return _parse_timestamp(value_proto["timestampValue"])
    if "blobValue" in value_proto:
        return base64.b64decode(value_proto["blobValue"])
    if "integerValue" in value_proto:
        return int(value_proto["integerValue"])
    if "doubleValue" in value_proto:
        return float(value_proto["doubleValue"])
    if "stringValue" in value_proto:
        return value_proto["stringValue"]
    if "booleanValue" in value_proto:
        return value_proto["booleanValue"]
    if "nullValue" in value_proto:
        return None

    raise InvalidArgumentError(
        f"Unrecognized value type in {value_proto!r}.",
        argument="value_proto",
        value=value_proto,
    )


def entity_to_entity_proto(
    data: Dict[str, Any],
    exclude_from_indexes: Iterable[str] = (),
) -> Dict[str, Any]:
    """Encode a property dict as an entity proto (without key)."""
    excluded = set(exclude_from_indexes)
    properties: Dict[str, Any] = {}

    for name, value in data.items():
        value_proto = encode_value(value)
        if name in excluded:
            value_proto["excludeFromIndexes"] = True
        properties[name] = value_proto

    return {"properties": properties}


def entity_from_entity_proto(entity_proto: Dict[str, Any]) -> Dict[str, Any]:
    """Decode the properties of an entity proto."""
    properties = entity_proto.get("properties") or {}
    return {name: decode_value(value) for name, value in properties.items()}


def format_array(results: Optional[List[Dict[str, Any]]]) -> List[Entity]:
    """Decode found/query entity results into Entity objects."""
    entities = []
    for result in results or []:
        entity_proto = result["entity"]
        key_proto = entity_proto.get("key")
        key = key_from_key_proto(key_proto) if key_proto else None
        entities.append(Entity(entity_from_entity_proto(entity_proto), key=key))
    return entities


def query_to_query_proto(query: Any) -> Dict[str, Any]:
    """Serialize a Query builder into a query proto."""
    query_proto: Dict[str, Any] = {
        "distinctOn": [{"name": name} for name in query.group_by_val],
        "kind": [{"name": kind} for kind in query.kinds],
        "order": [
            {
                "property": {"name": name},
                "direction": "DESCENDING" if descending else "ASCENDING",
            }
            for name, descending in query.orders
        ],
        "projection": [{"property": {"name": name}} for name in query.select_val],
    }

    if query.end_val:
        query_proto["endCursor"] = query.end_val
    if query.limit_val > 0:
        query_proto["limit"] = query.limit_val
    if query.offset_val > 0:
        query_proto["offset"] = query.offset_val
    if query.start_val:
        query_proto["startCursor"] = query.start_val

    if query.filters:
        filters = []
        for name, op, value in query.filters:
            if name == "__key__":
                value_proto = {"keyValue": key_to_key_proto(value)}
            else:
                value_proto = encode_value(value)
            filters.append(
                {
                    "propertyFilter": {
                        "property": {"name": name},
                        "op": OP_TO_OPERATOR[op],
                        "value": value_proto,
                    }
                }
            )
        query_proto["filter"] = {"compositeFilter": {"op": "AND", "filters": filters}}

    return query_proto


class EntityCodec:
    """Default codec between SDK objects and the JSON wire form.

    DatastoreRequest only talks to the codec through these methods,
    so a replacement with the same surface can be injected.
    """

    def key_to_key_proto(self, key: Key) -> Dict[str, Any]:
        return key_to_key_proto(key)

    def key_from_key_proto(self, key_proto: Dict[str, Any]) -> Key:
        return key_from_key_proto(key_proto)

    def is_key_complete(self, key: Key) -> bool:
        return is_key_complete(key)

    def encode_value(self, value: Any) -> Dict[str, Any]:
        return encode_value(value)

    def entity_to_entity_proto(
        self,
        data: Dict[str, Any],
        exclude_from_indexes: Iterable[str] = (),
    ) -> Dict[str, Any]:
        return entity_to_entity_proto(data, exclude_from_indexes)

    def format_array(self, results: Optional[List[Dict[str, Any]]]) -> List[Entity]:
        return format_array(results)

    def query_to_query_proto(self, query: Any) -> Dict[str, Any]:
        return query_to_query_proto(query)
