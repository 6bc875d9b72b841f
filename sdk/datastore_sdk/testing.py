"""
Scripted in-memory transport for testing.

This module provides a Transport that never touches the network:
- Unit tests of the request layer
- Examples and local development without an emulator

Invariants:
    - Every dispatch() is recorded before its response is produced
    - Scripted responses are returned in order; the last one repeats
    - Scripted exceptions are raised as-is

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the Transport protocol
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Union

from .transport import Operation

logger = logging.getLogger(__name__)

Response = Union[Dict[str, Any], BaseException]
Handler = Callable[[Dict[str, Any]], Any]


@dataclass
class RecordedCall:
    """A request seen by FakeTransport.

    Attributes:
        operation: RPC that was called
        req_opts: Deep copy of the request body as dispatched
    """

    operation: Operation
    req_opts: Dict[str, Any]

    @property
    def method(self) -> str:
        return self.operation.method


class FakeTransport:
    """Transport returning scripted responses.

    Example:
        >>> transport = FakeTransport()
        >>> transport.respond("lookup", {"found": [], "deferred": [key_proto]}, {"found": []})
        >>> request = DatastoreRequest("project", transport)
        >>> await request.get(key)
        >>> len(transport.calls_for("lookup"))
        2
    """

    def __init__(self) -> None:
        self.calls: List[RecordedCall] = []
        self._responses: Dict[str, List[Response]] = defaultdict(list)
        self._handlers: Dict[str, Handler] = {}

    def respond(self, method: str, *responses: Response) -> FakeTransport:
        """Script responses (or exceptions) for a method, in order."""
        self._responses[method].extend(responses)
        return self

    def on(self, method: str, handler: Handler) -> FakeTransport:
        """Compute responses for a method with a (possibly async) handler.

        The handler receives the request body and returns the response
        body, or raises.
        """
        self._handlers[method] = handler
        return self

    def calls_for(self, method: str) -> List[RecordedCall]:
        """Recorded calls of one method, in order."""
        return [call for call in self.calls if call.method == method]

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def dispatch(self, operation: Operation, req_opts: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(RecordedCall(operation, copy.deepcopy(req_opts)))
        logger.debug(f"FakeTransport received {operation} (call {len(self.calls)})")

        # Let other tasks run, as a real round trip would
        await asyncio.sleep(0)

        handler = self._handlers.get(operation.method)
        if handler is not None:
            result = handler(req_opts)
            if inspect.isawaitable(result):
                result = await result
            return result

        scripted = self._responses.get(operation.method)
        if not scripted:
            return {}

        response = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        if isinstance(response, BaseException):
            raise response
        return response
