"""Continuous device list tracking over ``host:track-devices``."""

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Union

from .connection import Connection
from .devices import DeviceRecord
from .errors import ADBError
from .framing import CompletionPolicy
from ..util.logging import get_logger

if TYPE_CHECKING:
    from .client import ADBClient

logger = get_logger(__name__)

DevicesCallback = Callable[[List[DeviceRecord]], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], Union[None, Awaitable[None]]]

_STOP = object()


class DeviceTracker:
    """Delivers a fresh device list every time the ADB server reports a change.

    One reader task pulls snapshots off the tracking connection and queues
    them. A single worker enriches and delivers them one at a time, so the
    callback always sees snapshots in the order the server sent them even
    though the per-device lookups inside a snapshot run concurrently.
    """

    def __init__(
        self,
        client: "ADBClient",
        callback: DevicesCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.client = client
        self.callback = callback
        self.on_error = on_error
        self.connection: Connection = client.connection()
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._reader: Optional[asyncio.Task] = None
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Snapshots received but not yet delivered."""
        return self._queue.qsize()

    def start(self, read: bool = True) -> "DeviceTracker":
        """Start delivering snapshots.

        Args:
            read: Also start reading from the tracking connection. Without it
                snapshots only come from :meth:`submit`.
        """
        if self._worker is None:
            self._worker = asyncio.ensure_future(self._deliver())
        if read and self._reader is None:
            self._reader = asyncio.ensure_future(self._read())
        return self

    def submit(self, snapshot: Union[bytes, Exception]) -> None:
        """Queue a raw device list (or an error) for delivery."""
        if not self._closed:
            self._queue.put_nowait(snapshot)

    def finish(self) -> None:
        """Deliver whatever is queued, then stop."""
        self._queue.put_nowait(_STOP)

    def close(self) -> None:
        """Stop tracking and close the connection."""
        if self._closed:
            return
        self._closed = True
        self.connection.close()

        current = asyncio.current_task()
        for task in (self._reader, self._worker):
            if task is not None and task is not current:
                task.cancel()

    async def wait_closed(self) -> None:
        """Wait until tracking has stopped."""
        tasks = [t for t in (self._reader, self._worker) if t is not None]
        if not tasks:
            return
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                raise result

    async def __aenter__(self) -> "DeviceTracker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
        await self.wait_closed()

    async def _read(self) -> None:
        try:
            async for snapshot in self.connection.stream(
                "host:track-devices", CompletionPolicy.FRAMED_STREAM
            ):
                self.submit(snapshot)
        except ADBError as e:
            logger.error(f"Device tracking connection failed: {e}")
            self.submit(e)
        finally:
            if not self._closed:
                self.finish()

    async def _deliver(self) -> None:
        try:
            while not self._closed:
                item = await self._queue.get()
                if item is _STOP:
                    break
                if isinstance(item, Exception):
                    await self._call(self.on_error, item)
                    continue
                devices = await self.client.parse_devices(item)
                if self._closed:
                    break
                await self._call(self.callback, devices)
        finally:
            self._closed = True
            self.connection.close()

    @staticmethod
    async def _call(func: Optional[Callable[[Any], Any]], arg: Any) -> None:
        if func is None:
            return
        result = func(arg)
        if inspect.isawaitable(result):
            await result
