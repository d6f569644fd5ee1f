import asyncio
from enum import Enum
from typing import Callable, Generic, List, TypeVar, Union

from mentorchat.core.errors import MessagingError

UpdateT = TypeVar("UpdateT")

_END = object()


class SyncState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    ERROR = "error"


class SyncHandle(Generic[UpdateT]):
    """Stream of updates from a listening sync engine.

    Closing the handle (directly or by leaving ``async with``) stops the
    engine and detaches its store subscription. A listener error is raised
    once from iteration, after which the stream ends.
    """

    def __init__(self, stop: Callable[[], None]) -> None:
        self._stop = stop
        self._queue: "asyncio.Queue[Union[UpdateT, MessagingError, object]]" = asyncio.Queue()
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, update: UpdateT) -> None:
        if not self._closed:
            self._queue.put_nowait(update)

    def fail(self, error: MessagingError) -> None:
        if not self._closed:
            self._queue.put_nowait(error)
            self.finish()

    def close(self) -> None:
        if self._closed:
            return
        self._stop()
        self.finish()

    def finish(self) -> None:
        """End the stream. Updates queued before this are still yielded."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)

    def drain(self) -> List[UpdateT]:
        """Return the updates queued so far without waiting."""
        items: List[UpdateT] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return items
            if item is _END or isinstance(item, MessagingError):
                # keep terminal markers for the iterator
                self._requeue_terminal(item)
                return items
            items.append(item)

    def _requeue_terminal(self, item) -> None:
        rest = [item]
        while not self._queue.empty():
            rest.append(self._queue.get_nowait())
        for it in rest:
            self._queue.put_nowait(it)

    def __aiter__(self) -> "SyncHandle[UpdateT]":
        return self

    async def __anext__(self) -> UpdateT:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._finished = True
            raise StopAsyncIteration
        if isinstance(item, MessagingError):
            raise item
        return item

    async def __aenter__(self) -> "SyncHandle[UpdateT]":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()
