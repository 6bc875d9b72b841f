"""
Streaming delivery for paginated reads.

A ResultStream is a bounded channel between a read engine (the producer)
and the caller (the consumer):
- The producer task starts when the consumer first asks for an item
- The producer blocks while the buffer is full
- The next round trip waits until the consumer has taken the last batch
- end() stops delivery from any task; waiting consumers and producers wake
  and the producer issues no further round trips
- Leaving async iteration early ends the stream
- A producer error is raised to the consumer after the items already
  delivered, then the stream is closed

Example:
    >>> async with ds.run_query_stream(query) as stream:
    ...     stream.on_info(lambda info: print(info.end_cursor))
    ...     async for entity in stream:
    ...         if done_with(entity):
    ...             break
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Dict,
    Generic,
    List,
    Optional,
    TypeVar,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MORE_RESULTS_NOT_FINISHED = "NOT_FINISHED"
MORE_RESULTS_AFTER_LIMIT = "MORE_RESULTS_AFTER_LIMIT"
MORE_RESULTS_AFTER_CURSOR = "MORE_RESULTS_AFTER_CURSOR"
NO_MORE_RESULTS = "NO_MORE_RESULTS"


class ReadState(Enum):
    """Where a read engine is in its request loop."""

    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    DELIVER = "deliver"
    CONTINUE = "continue"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class QueryInfo:
    """Side-channel details of a query round trip.

    Attributes:
        end_cursor: Cursor after the last result of the batch
        more_results: moreResults enumerant reported by the server
    """

    end_cursor: Optional[str] = None
    more_results: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"endCursor": self.end_cursor, "moreResults": self.more_results}


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


_DONE = object()

Producer = Callable[["ResultStream[Any]"], Awaitable[None]]


class ResultStream(Generic[T]):
    """Async iterable fed by a read engine through a bounded buffer.

    Iteration runs through an async generator, so a consumer that leaves
    ``async for`` early (break or exception) ends the stream when the
    iterator is finalized. ``async with stream:`` ends it deterministically.

    Attributes:
        info: Last side-channel value emitted, if any
        state: Current ReadState of the engine
    """

    def __init__(self, producer: Producer, *, max_buffer: int = 1) -> None:
        """Initialize the stream.

        Args:
            producer: Coroutine function driving the reads; receives this stream
            max_buffer: Items buffered ahead of the consumer
        """
        self._producer = producer
        self._max_buffer = max(max_buffer, 1)
        self._buffer: Deque[Any] = deque()
        self._changed = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None
        self._ended = False
        self._closed = False
        self._info_listeners: List[Callable[[QueryInfo], Any]] = []
        self.info: Optional[QueryInfo] = None
        self.state = ReadState.IDLE

    @property
    def ended(self) -> bool:
        """Whether the consumer has terminated the stream."""
        return self._ended

    @property
    def closed(self) -> bool:
        """Whether iteration is over (completed, failed or ended)."""
        return self._closed

    def on_info(self, listener: Callable[[QueryInfo], Any]) -> ResultStream[T]:
        """Register a listener for side-channel info values."""
        self._info_listeners.append(listener)
        return self

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        try:
            while True:
                try:
                    item = await self.__anext__()
                except StopAsyncIteration:
                    return
                yield item
        finally:
            if not self._closed:
                self.end()

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration

        self._start()
        await self._wait_until(lambda: bool(self._buffer) or self._ended)

        if self._ended:
            raise StopAsyncIteration

        item = self._buffer.popleft()
        self._notify()

        if item is _DONE:
            self._closed = True
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._closed = True
            raise item.error
        return item

    async def __aenter__(self) -> ResultStream[T]:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def collect(self) -> List[T]:
        """Drain the stream into a list."""
        return [item async for item in self]

    def end(self) -> None:
        """Stop delivery. Buffered items are discarded.

        Safe to call from any task or from an on_info listener: a consumer
        waiting for the next item stops, and a producer waiting for buffer
        space is released.
        """
        if self._ended:
            return
        self._ended = True
        self._closed = True
        self._buffer.clear()
        self._notify()
        logger.debug("Result stream ended by consumer")

    async def aclose(self) -> None:
        """End the stream and wait for the engine to finish its round trip."""
        self.end()
        if self._task is not None:
            await self._task

    # Producer side

    async def push(self, item: T) -> bool:
        """Deliver one item, waiting for buffer space.

        Returns:
            False once the consumer has ended the stream
        """
        await self._wait_until(lambda: self._ended or len(self._buffer) < self._max_buffer)
        if self._ended:
            return False
        self._buffer.append(item)
        self._notify()
        return True

    async def wait_consumed(self) -> bool:
        """Wait until the consumer has taken every buffered item.

        Returns:
            False once the consumer has ended the stream
        """
        await self._wait_until(lambda: self._ended or not self._buffer)
        return not self._ended

    def emit_info(self, info: QueryInfo) -> None:
        """Publish a side-channel value to all listeners."""
        self.info = info
        for listener in self._info_listeners:
            listener(info)

    def _notify(self) -> None:
        self._changed.set()

    async def _wait_until(self, predicate: Callable[[], bool]) -> None:
        while not predicate():
            self._changed.clear()
            await self._changed.wait()

    def _finish(self, item: Any) -> None:
        # Terminal markers bypass the bound; nobody reads them once ended
        if not self._ended:
            self._buffer.append(item)
            self._notify()

    def _start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        try:
            await self._producer(self)
        except Exception as e:
            self.state = ReadState.FAILED
            logger.debug(f"Read failed: {e!r}")
            self._finish(_Failure(e))
        else:
            self.state = ReadState.DONE
            self._finish(_DONE)
