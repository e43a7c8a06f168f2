"""A single TCP connection to the ADB server."""

import asyncio
import socket
from typing import TYPE_CHECKING, AsyncIterator, List, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from .errors import ADBConnectionError, ServerNotRunning
from .framing import CompletionPolicy, Frame, ParserState, ResponseParser, encode_command
from ..util.logging import ConnectionLogAdapter, get_logger

if TYPE_CHECKING:
    from .client import ADBClient

logger = get_logger(__name__)

READ_SIZE = 65536


class Connection:
    """Owns one socket to the ADB server and runs commands over it.

    The socket is opened lazily by the first command. Commands issued on the
    same connection run one after the other; a second ``exec`` waits until
    the first one has completed.
    """

    def __init__(self, client: "ADBClient") -> None:
        self.client = client
        self.host = client.config.server.host
        self.port = client.config.server.port
        self.seq = client.next_connection_id()
        self.parser = ResponseParser()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()
        self.log = ConnectionLogAdapter(logger, self.seq, client.debug)

    @property
    def state(self) -> ParserState:
        return self.parser.state

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    async def __aenter__(self) -> "Connection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def exec(
        self,
        command: str,
        policy: CompletionPolicy = CompletionPolicy.OKAY_ONLY,
    ) -> Optional[bytes]:
        """Run a command and return its payload.

        Args:
            command: Command body, e.g. ``host:version``
            policy: How the response is terminated

        Returns:
            The response payload, or None if the command carries none

        Raises:
            RemoteFailure: If the server answered FAIL
            ProtocolError: If the server answered neither OKAY nor FAIL
            ADBConnectionError: On socket errors or timeouts
        """
        if policy is CompletionPolicy.FRAMED_STREAM:
            raise ValueError("Streaming commands must be run with Connection.stream()")

        frame = encode_command(command)
        timeout = self.client.config.server.command_timeout

        async with self._lock:
            await self._open()
            try:
                await self._send(frame, command, policy)
                if timeout is None:
                    return await self._read_until_final()
                return await asyncio.wait_for(self._read_until_final(), timeout)
            except asyncio.TimeoutError as e:
                self.close()
                raise ADBConnectionError(
                    f"Timed out after {timeout}s waiting for a response to {command!r}"
                ) from e
            except BaseException:
                # the response may be partly read
                self.close()
                raise

    async def stream(
        self,
        command: str,
        policy: CompletionPolicy = CompletionPolicy.FRAMED_STREAM,
    ) -> AsyncIterator[bytes]:
        """Run a command and yield every payload until the socket closes.

        The connection is closed when the iteration ends.
        """
        frame = encode_command(command)

        async with self._lock:
            await self._open()
            try:
                await self._send(frame, command, policy)
                while True:
                    data = await self._read()
                    frames: List[Frame] = self.parser.close() if not data else self.parser.feed(data)
                    for item in frames:
                        if item.payload is not None:
                            yield item.payload
                        if item.final:
                            return
                    if not data:
                        return
            finally:
                self.close()

    def close(self) -> None:
        """Close the socket and reset the parser. Safe to call repeatedly."""
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is not None:
            self.log.trace("CLOSING CONNECTION")
            try:
                writer.close()
            except (OSError, RuntimeError) as e:
                self.log.debug(f"Error closing ADB socket: {e}")
        self.parser.reset()

    async def _open(self) -> None:
        if self._writer is not None:
            self.log.trace("SOCKET ALREADY OPEN, SENDING NEW COMMAND")
            return

        retrying = AsyncRetrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(ServerNotRunning),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        self.log.info("ADB server is not running, starting it")
                        await self.client.start_server()
                    await self._connect()
        except ServerNotRunning as e:
            raise ServerNotRunning(
                f"Unable to start ADB server on {self.host}:{self.port}"
            ) from e

    async def _connect(self) -> None:
        try:
            self._reader, self._writer = await asyncio.open_connection(self.host, self.port)
        except ConnectionRefusedError as e:
            self.log.trace("CONNECTION REFUSED")
            raise ServerNotRunning(
                f"Connection to ADB server at {self.host}:{self.port} refused"
            ) from e
        except OSError as e:
            raise ADBConnectionError(
                f"Unable to connect to ADB server at {self.host}:{self.port}: {e}"
            ) from e

        sock = self._writer.get_extra_info("socket")
        if sock is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        self.log.trace("CONNECTED")

        # the server can drop a command written right after accept()
        delay = self.client.config.server.connect_delay
        if delay:
            await asyncio.sleep(delay)

    async def _send(self, frame: bytes, command: str, policy: CompletionPolicy) -> None:
        if self._writer is None:
            raise ADBConnectionError("Connection to ADB server is closed")
        self.parser.begin(policy)
        self.log.trace(f"SENDING {command} ({policy.value})")
        try:
            self._writer.write(frame)
            await self._writer.drain()
        except OSError as e:
            raise ADBConnectionError(f"Failed to send {command!r} to ADB server: {e}") from e

    async def _read(self) -> bytes:
        reader = self._reader
        if reader is None:
            return b""
        try:
            data = await reader.read(READ_SIZE)
        except OSError as e:
            raise ADBConnectionError(f"Lost connection to ADB server: {e}") from e
        if data:
            self.log.trace(f"RECEIVED {len(data)} BYTES (state={self.parser.state.value})")
        else:
            self.log.trace("SOCKET CLOSED BY SERVER")
        return data

    async def _read_until_final(self) -> Optional[bytes]:
        while True:
            data = await self._read()
            if not data:
                frames = self.parser.close()
                self.close()
                return frames[-1].payload if frames else None
            for frame in self.parser.feed(data):
                if frame.final:
                    self.log.trace(f"DONE ({frame.payload and len(frame.payload) or 0} BYTES)")
                    return frame.payload
