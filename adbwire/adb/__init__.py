"""ADB module initialization."""

from .client import ADBClient, check_install_result
from .connection import Connection
from .devices import DeviceEnricher, DeviceRecord, EmulatorIdentity, SerialEmulatorIdentity
from .errors import (
    ADBConnectionError,
    ADBError,
    CertificateMismatchError,
    ExternalToolError,
    InsufficientStorageError,
    NotFoundError,
    ProtocolError,
    RemoteFailure,
    ServerNotRunning,
)
from .framing import CompletionPolicy, Frame, ParserState, ResponseParser, decode_length, encode_command
from .tools import NativeTools, ToolResult
from .tracker import DeviceTracker

__all__ = [
    # client
    "ADBClient",
    "check_install_result",
    # connection
    "Connection",
    # devices
    "DeviceEnricher",
    "DeviceRecord",
    "EmulatorIdentity",
    "SerialEmulatorIdentity",
    # errors
    "ADBConnectionError",
    "ADBError",
    "CertificateMismatchError",
    "ExternalToolError",
    "InsufficientStorageError",
    "NotFoundError",
    "ProtocolError",
    "RemoteFailure",
    "ServerNotRunning",
    # framing
    "CompletionPolicy",
    "Frame",
    "ParserState",
    "ResponseParser",
    "decode_length",
    "encode_command",
    # tools
    "NativeTools",
    "ToolResult",
    # tracker
    "DeviceTracker",
]
