"""ADB client for device communication."""

import itertools
import re
from pathlib import Path
from typing import List, Optional, Union

from .apps import find_pid, force_stop_command, force_stop_unsupported, is_legacy_ps, start_command
from .connection import Connection
from .devices import DeviceEnricher, DeviceRecord, EmulatorIdentity, SerialEmulatorIdentity
from .errors import (
    ADBError,
    CertificateMismatchError,
    ExternalToolError,
    InsufficientStorageError,
    NotFoundError,
)
from .framing import CompletionPolicy
from .tools import LineHandler, NativeTools, ToolResult
from .tracker import DevicesCallback, DeviceTracker, ErrorCallback
from ..config import AdbWireConfig
from ..util.logging import get_logger
from ..util.paths import ensure_directory, expand_path

logger = get_logger(__name__)

# "-d" (allow version downgrade) needs Android 4.2
DOWNGRADE_MIN_API_LEVEL = 17

INSTALL_FAILURE = re.compile(r"^Failure \[(.+)\]$", re.MULTILINE)
INSTALL_ERROR = re.compile(r"^Error: (.+)$", re.MULTILINE)

CERTIFICATE_MISMATCH_MESSAGE = (
    "The app is already installed, but signed with a different certificate\n"
    "You need to either manually uninstall the app or rebuild using the same "
    "certificate that was used to sign the installed app"
)


def check_install_result(result: ToolResult) -> None:
    """Translate ``adb install`` output into a specific error, if it failed."""
    failure = INSTALL_FAILURE.search(result.stdout)
    reason = failure.group(1) if failure else None

    def error(cls, message: str) -> ExternalToolError:
        return cls(message, returncode=result.returncode, stdout=result.stdout, stderr=result.stderr)

    if (not result.ok and "No space left on device" in result.stderr) or (
        result.ok and reason == "INSTALL_FAILED_INSUFFICIENT_STORAGE"
    ):
        raise error(InsufficientStorageError, "Not enough free space on device")
    if reason == "INSTALL_PARSE_FAILED_INCONSISTENT_CERTIFICATES":
        raise error(CertificateMismatchError, CERTIFICATE_MISMATCH_MESSAGE)
    if reason:
        raise error(ExternalToolError, reason)
    if not result.ok:
        raise error(ExternalToolError, f"{result.stdout.strip()}\n{result.stderr.strip()}".strip())

    # adb can exit 0 and still report an error
    message = INSTALL_ERROR.search(result.stdout)
    if message:
        raise error(ExternalToolError, message.group(1))


class ADBClient:
    """Client for the ADB server.

    Device queries and shell commands go over the ADB server's TCP protocol;
    file transfer, install, forwarding and logcat run the native ``adb``
    executable.
    """

    def __init__(
        self,
        config: Optional[AdbWireConfig] = None,
        identity: Optional[EmulatorIdentity] = None,
        tools: Optional[NativeTools] = None,
    ) -> None:
        """Initialize ADB client.

        Args:
            config: Configuration, defaults are used if omitted
            identity: Decides which device ids are emulators
            tools: Runner for the native adb executable
        """
        self.config = config or AdbWireConfig()
        self.debug = self.config.server.debug
        self.identity = identity or SerialEmulatorIdentity()
        self.tools = tools or NativeTools(self.config.tools.adb_path)
        self._connection_ids = itertools.count(1)

    def next_connection_id(self) -> int:
        return next(self._connection_ids)

    def connection(self) -> Connection:
        """Create a new, not yet connected, connection to the ADB server."""
        return Connection(self)

    async def version(self) -> str:
        """Return the ADB server version, e.g. ``1.0.41``."""
        async with self.connection() as conn:
            data = await conn.exec("host:version", CompletionPolicy.FRAMED)

        try:
            version = int(data.decode("ascii"), 16)
        except (AttributeError, UnicodeDecodeError, ValueError) as e:
            raise ADBError(f"Unable to get adb version, received value {data!r}") from e
        return f"1.0.{version}"

    async def devices(self) -> List[DeviceRecord]:
        """List connected devices and emulators with their properties."""
        async with self.connection() as conn:
            data = await conn.exec("host:devices", CompletionPolicy.FRAMED)
        return await self.parse_devices(data)

    async def parse_devices(self, data: Union[bytes, str, None]) -> List[DeviceRecord]:
        """Parse a device list and fetch additional info for each device."""
        return await DeviceEnricher(self.shell, self.identity).enrich(data)

    def track_devices(
        self,
        callback: DevicesCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> DeviceTracker:
        """Call ``callback`` with the device list now and whenever it changes.

        Tracking continues until the returned tracker (or its connection) is
        closed, or the ADB server drops the connection.
        """
        return DeviceTracker(self, callback, on_error).start()

    async def shell(self, device_id: str, cmd: str) -> bytes:
        """Run a shell command on a device and return its raw output.

        ADB converts ``\\n`` to ``\\r\\n``, so output is usually larger than
        on the device.
        """
        if cmd.startswith("shell:"):
            cmd = cmd[len("shell:"):]

        async with self.connection() as conn:
            await conn.exec(f"host:transport:{device_id}", CompletionPolicy.OKAY_ONLY)
            data = await conn.exec(f"shell:{cmd}", CompletionPolicy.UNTIL_CLOSE)
        return data or b""

    async def ps(self, device_id: str) -> bytes:
        """Return ``ps`` output listing every process on the device."""
        output = await self.shell(device_id, "ps -A")
        if is_legacy_ps(output):
            logger.debug(f"{device_id} does not support 'ps -A', falling back to 'ps'")
            output = await self.shell(device_id, "ps")
        return output

    async def get_pid(self, device_id: str, app_id: str) -> int:
        """Return the pid of a running app, or 0 if it is not running."""
        return find_pid(await self.ps(device_id), app_id)

    async def start_app(self, device_id: str, app_id: str, activity: str) -> bytes:
        """Launch an app the way the launcher would."""
        return await self.shell(device_id, start_command(app_id, activity))

    async def stop_app(self, device_id: str, app_id: str) -> bytes:
        """Stop a running app.

        Raises:
            NotFoundError: If the app is not running
        """
        pid = await self.get_pid(device_id, app_id)
        if not pid:
            raise NotFoundError(f'Application "{app_id}" is not running')

        output = await self.shell(device_id, force_stop_command(app_id))
        if force_stop_unsupported(output):
            logger.debug(f"force-stop unsupported on {device_id}, killing pid {pid}")
            return await self.shell(device_id, f"kill {pid}")
        return output

    async def install_app(self, device_id: str, apk_file: Union[str, Path]) -> None:
        """Install (or reinstall) an APK on a device.

        Raises:
            NotFoundError: If the APK or the device does not exist
            InsufficientStorageError: If the device is out of space
            CertificateMismatchError: If the installed app has another signature
            ExternalToolError: For any other install failure
        """
        apk = expand_path(apk_file)
        if not apk.exists():
            raise NotFoundError(f'APK file "{apk}" does not exist')

        matches = [d for d in await self.devices() if d.id == device_id]
        if not matches:
            raise NotFoundError("device not found")

        args = ["-s", device_id, "install", "-r"]
        if (matches[0].api_level or 1) >= DOWNGRADE_MIN_API_LEVEL:
            args.append("-d")
        args.append(str(apk))

        logger.info(f"Installing {apk.name} on {matches[0].display_name}")
        check_install_result(await self.tools.run(args))

    async def push(self, device_id: str, src: Union[str, Path], dest: str) -> None:
        """Copy a local file to the device."""
        source = expand_path(src)
        if not source.exists():
            raise NotFoundError(f'Source file "{source}" does not exist')

        result = await self.tools.run(["-s", device_id, "push", str(source), dest])
        result.check(f"Failed to push {source} to {dest}")

    async def pull(self, device_id: str, src: str, dest: Union[str, Path]) -> None:
        """Copy a file from the device, creating the local directory first."""
        target = expand_path(dest)
        try:
            ensure_directory(target.parent)
        except OSError as e:
            raise ADBError(f'Failed to create destination directory "{target.parent}"') from e

        result = await self.tools.run(["-s", device_id, "pull", src, str(target)])
        result.check(f"Failed to pull {src} to {target}")

    async def forward(self, device_id: str, src: str, dest: str) -> None:
        """Forward a host socket (``tcp:<port>``) to the device (``tcp:<port>``, ``jdwp:<pid>``)."""
        result = await self.tools.run(["-s", device_id, "forward", src, dest])
        result.check(f"Failed to forward {src} to {dest}")

    async def logcat(self, device_id: str, handler: LineHandler) -> int:
        """Stream logcat lines to ``handler`` until ``adb logcat`` exits."""
        return await self.tools.stream_lines(
            ["-s", device_id, "logcat", "-v", "brief", "-b", "main"], handler
        )

    async def start_server(self) -> None:
        """Start the ADB server with the native executable."""
        result = await self.tools.run(["start-server"], capture_stdout=False)
        result.check(f"Failed to start ADB (code {result.returncode})")

    async def stop_server(self) -> None:
        """Kill the ADB server with the native executable."""
        result = await self.tools.run(["kill-server"], capture_stdout=False)
        result.check(f"Failed to stop ADB (code {result.returncode})")
