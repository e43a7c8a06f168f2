"""Exceptions raised by the ADB client."""

from typing import Optional


class ADBError(Exception):
    """ADB operation error."""
    pass


class ProtocolError(ADBError):
    """The server sent a response header that is neither OKAY nor FAIL."""
    pass


class RemoteFailure(ADBError):
    """The server answered FAIL; the message is the server's error text."""
    pass


class ADBConnectionError(ADBError):
    """Socket level error talking to the ADB server."""
    pass


class ServerNotRunning(ADBConnectionError):
    """The ADB server refused the connection."""
    pass


class NotFoundError(ADBError):
    """A device, application, file or executable could not be found."""
    pass


class ExternalToolError(ADBError):
    """A spawned native tool exited with an error."""

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class InsufficientStorageError(ExternalToolError):
    """The device ran out of space while installing an APK."""
    pass


class CertificateMismatchError(ExternalToolError):
    """The installed app is signed with a different certificate."""
    pass
