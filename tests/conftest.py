"""Shared test helpers: an in-process fake ADB server."""

import asyncio
import socket
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from adbwire.adb import ADBClient
from adbwire.config import AdbWireConfig, ServerConfig


def framed(payload: bytes) -> bytes:
    """Length-prefix a payload the way the ADB server does."""
    return f"{len(payload):04x}".encode("ascii") + payload


def okay(payload: Optional[bytes] = None) -> bytes:
    return b"OKAY" + (framed(payload) if payload is not None else b"")


def fail(message: str) -> bytes:
    return b"FAIL" + framed(message.encode("utf-8"))


@dataclass
class Reply:
    """Bytes the fake server writes back for one command.

    Chunks are written one by one with ``pause`` seconds between them. With
    ``close`` unset the server keeps the socket open and waits for the next
    command.
    """

    chunks: List[bytes] = field(default_factory=list)
    close: bool = True
    pause: float = 0.0


class FakeADBServer:
    """Answers ADB smart-socket commands from a table of canned replies."""

    def __init__(self, responses: Dict[str, Union[bytes, Reply]], port: int = 0):
        self.responses = responses
        self.port = port
        self.commands: List[str] = []
        self.connections = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: List[asyncio.StreamWriter] = []

    async def start(self) -> "FakeADBServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for writer in self._writers:
            writer.close()
        await self._server.wait_closed()
        self._server = None

    async def __aenter__(self) -> "FakeADBServer":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        try:
            while True:
                header = await reader.readexactly(4)
                body = await reader.readexactly(int(header.decode("ascii"), 16))
                command = body.decode("utf-8")
                self.commands.append(command)

                reply = self.responses.get(command, Reply([fail(f"unknown command {command}")]))
                if isinstance(reply, bytes):
                    reply = Reply([reply])

                for chunk in reply.chunks:
                    writer.write(chunk)
                    await writer.drain()
                    if reply.pause:
                        await asyncio.sleep(reply.pause)
                if reply.close:
                    break
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


def free_port() -> int:
    """Return a local TCP port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def make_client(port: int, **server_options) -> ADBClient:
    server_options.setdefault("connect_delay", 0)
    return ADBClient(AdbWireConfig(server=ServerConfig(port=port, **server_options)))
