"""Live snapshot queries on top of the realtime bus.

A ``LiveQuery`` runs its query once on start and again every time its bus
channel is notified, handing the full result set to ``on_snapshot``.
Notifications that arrive while a query is running are coalesced into one
follow-up query.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from mentorchat.core.errors import MessagingError, StoreUnavailable

logger = logging.getLogger(__name__)

SnapshotHandler = Callable[[List[Dict[str, Any]]], None]
ErrorHandler = Callable[[MessagingError], None]


class LiveQuery:

    def __init__(
        self,
        bus,
        channel: str,
        query: Callable[[], Awaitable[List[Dict[str, Any]]]],
        on_snapshot: SnapshotHandler,
        on_error: ErrorHandler,
    ) -> None:
        self._bus = bus
        self._channel = channel
        self._query = query
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._dirty = asyncio.Event()
        self._active = False
        self._subscriber = None
        self._sub_task: Optional[asyncio.Task] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._cleanup: Set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self._active

    async def start(self) -> "LiveQuery":
        self._active = True
        self._subscriber = await self._bus.subscribe(self._channel, self._notify)
        self._sub_task = asyncio.create_task(self._subscriber.run())
        self._pump_task = asyncio.create_task(self._pump())
        logger.debug("Live query started on %s", self._channel)
        return self

    async def _notify(self, _message: str) -> None:
        self._dirty.set()

    async def _pump(self) -> None:
        while self._active:
            try:
                records = await self._query()
            except asyncio.CancelledError:
                raise
            except MessagingError as exc:
                self._fail(exc)
                return
            except Exception as exc:
                self._fail(StoreUnavailable(str(exc) or None))
                return
            if not self._active:
                return
            self._on_snapshot(records)
            await self._dirty.wait()
            self._dirty.clear()

    def _fail(self, error: MessagingError) -> None:
        if not self._active:
            return
        logger.warning("Live query on %s failed: %s", self._channel, error.message)
        self.close()
        self._on_error(error)

    def close(self) -> None:
        """Detach immediately; no snapshot is delivered after this returns."""
        if not self._active:
            return
        self._active = False
        current = asyncio.current_task()
        for task in (self._pump_task, self._sub_task):
            if task is not None and task is not current:
                task.cancel()
        if self._subscriber is not None:
            task = asyncio.get_running_loop().create_task(self._subscriber.cancel())
            self._cleanup.add(task)
            task.add_done_callback(self._cleanup.discard)
        logger.debug("Live query closed on %s", self._channel)
