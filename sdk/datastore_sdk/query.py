"""
Query builder for the Datastore SDK.

A Query holds predicate and paging state and is serialized by the
codec (see entity.query_to_query_proto). All mutators return the same
instance so calls can be chained.

Example:
    >>> query = (
    ...     Query(["Task"], namespace="prod")
    ...     .filter("done", "=", False)
    ...     .order("priority", descending=True)
    ...     .limit(10)
    ... )
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Tuple

from .entity import OP_TO_OPERATOR, Key
from .errors import InvalidArgumentError


class Query:
    """Fluent query builder.

    Attributes:
        kinds: Kinds the query runs over
        namespace: Namespace the query runs in
        filters: (property, operator, value) triples, ANDed together
        orders: (property, descending) pairs
        limit_val: Maximum results, -1 when unbounded
        offset_val: Results to skip, -1 when unset
    """

    def __init__(
        self,
        kinds: Optional[Iterable[str]] = None,
        namespace: Optional[str] = None,
    ) -> None:
        self.kinds: List[str] = list(kinds or [])
        self.namespace = namespace
        self.filters: List[Tuple[str, str, Any]] = []
        self.orders: List[Tuple[str, bool]] = []
        self.group_by_val: List[str] = []
        self.select_val: List[str] = []
        self.start_val: Optional[str] = None
        self.end_val: Optional[str] = None
        self.limit_val = -1
        self.offset_val = -1

    def filter(self, name: str, op: str, value: Any) -> Query:
        """Add a property filter.

        Raises:
            InvalidArgumentError: If the operator is not supported
        """
        op = op.strip()
        if op not in OP_TO_OPERATOR:
            raise InvalidArgumentError(
                f"Operator {op} is not supported.",
                argument="op",
                value=op,
            )
        self.filters.append((name.strip(), op, value))
        return self

    def has_ancestor(self, key: Key) -> Query:
        """Restrict results to descendants of key."""
        self.filters.append(("__key__", "HAS_ANCESTOR", key))
        return self

    def order(self, name: str, descending: bool = False) -> Query:
        self.orders.append((name, descending))
        return self

    def group_by(self, names: str | Iterable[str]) -> Query:
        self.group_by_val = [names] if isinstance(names, str) else list(names)
        return self

    def select(self, names: str | Iterable[str]) -> Query:
        self.select_val = [names] if isinstance(names, str) else list(names)
        return self

    def start(self, cursor: Optional[str]) -> Query:
        """Resume after the given cursor."""
        self.start_val = cursor
        return self

    def end(self, cursor: Optional[str]) -> Query:
        self.end_val = cursor
        return self

    def limit(self, n: int) -> Query:
        self.limit_val = n
        return self

    def offset(self, n: int) -> Query:
        self.offset_val = n
        return self

    def __repr__(self) -> str:
        return (
            f"Query(kinds={self.kinds!r}, namespace={self.namespace!r}, "
            f"limit={self.limit_val}, offset={self.offset_val})"
        )
