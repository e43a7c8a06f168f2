"""Spawning the native ``adb`` executable."""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Union

from .errors import ExternalToolError, NotFoundError
from ..util.logging import get_logger

logger = get_logger(__name__)

LineHandler = Callable[[str], Union[None, Awaitable[None]]]


@dataclass
class ToolResult:
    """Exit status and output of a finished native tool."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self, message: Optional[str] = None) -> "ToolResult":
        """Raise ExternalToolError if the tool exited non-zero.

        Args:
            message: Error summary; the tool's own output is appended to it
        """
        if not self.ok:
            message = message or f"Command exited with code {self.returncode}"
            detail = self.stderr.strip() or self.stdout.strip()
            raise ExternalToolError(
                f"{message}: {detail}" if detail else message,
                returncode=self.returncode,
                stdout=self.stdout,
                stderr=self.stderr,
            )
        return self


class NativeTools:
    """Runs the ``adb`` executable as a subprocess.

    The executable path comes from configuration; nothing here searches the
    filesystem for an SDK.
    """

    def __init__(self, adb_path: str = "adb") -> None:
        """Initialize the tool runner.

        Args:
            adb_path: Path to adb executable
        """
        self.adb_path = adb_path

    async def _spawn(self, args: List[str], stdout: int, stderr: int) -> asyncio.subprocess.Process:
        cmd = [self.adb_path, *args]
        logger.debug(f"Running ADB command: {' '.join(cmd)}")
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
            )
        except FileNotFoundError as e:
            raise NotFoundError(
                f"ADB not found at {self.adb_path}. Please install Android platform tools."
            ) from e
        except PermissionError as e:
            raise NotFoundError(f"ADB at {self.adb_path} is not executable") from e

    async def run(self, args: List[str], capture_stdout: bool = True) -> ToolResult:
        """Run adb to completion.

        Args:
            args: Command arguments
            capture_stdout: Whether stdout is collected or discarded

        Returns:
            The exit code with decoded stdout and stderr
        """
        stdout_mode = asyncio.subprocess.PIPE if capture_stdout else asyncio.subprocess.DEVNULL
        process = await self._spawn(args, stdout_mode, asyncio.subprocess.PIPE)
        stdout_bytes, stderr_bytes = await process.communicate()

        result = ToolResult(
            returncode=process.returncode,
            stdout=(stdout_bytes or b"").decode("utf-8", errors="replace"),
            stderr=(stderr_bytes or b"").decode("utf-8", errors="replace"),
        )
        if not result.ok:
            logger.debug(f"adb {' '.join(args)} exited with code {result.returncode}")
        return result

    async def stream_lines(self, args: List[str], handler: LineHandler) -> int:
        """Run adb and hand every stdout line to ``handler`` until it exits.

        Returns:
            The process exit code
        """
        process = await self._spawn(args, asyncio.subprocess.PIPE, asyncio.subprocess.DEVNULL)
        try:
            async for raw in process.stdout:
                result = handler(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
                if inspect.isawaitable(result):
                    await result
            return await process.wait()
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
