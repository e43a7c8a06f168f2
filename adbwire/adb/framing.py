"""ADB smart-socket framing and the response parser state machine.

Requests are framed as ``<4 hex digit length><body>``. Every response starts
with ``OKAY`` or ``FAIL``; what follows ``OKAY`` depends on the command, so
the caller picks a :class:`CompletionPolicy` that tells the parser how to
decide the command is finished.

The parser does no I/O. The connection feeds it bytes as they arrive and
acts on the :class:`Frame` objects it returns.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .errors import ADBConnectionError, ProtocolError, RemoteFailure

MAX_COMMAND_LENGTH = 0xFFFF

OKAY = b"OKAY"
FAIL = b"FAIL"

HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")


class CompletionPolicy(Enum):
    """How a command's response is terminated."""

    # OKAY alone completes the command; trailing data is read as one frame
    OKAY_ONLY = "okay-only"
    # one length-prefixed frame
    FRAMED = "framed"
    # length-prefixed frames until the socket closes (host:track-devices)
    FRAMED_STREAM = "framed-stream"
    # raw bytes until the socket closes (shell:)
    UNTIL_CLOSE = "until-close"
    # one length-prefixed frame, then raw bytes until the socket closes
    FRAMED_UNTIL_CLOSE = "framed-until-close"
    # whatever arrives first after OKAY
    FIRST_CHUNK = "first-chunk"


class ParserState(Enum):
    """Response parser states."""

    IDLE = "idle"
    AWAITING_RESULT = "awaiting-result"
    AWAITING_CHUNK = "awaiting-chunk"
    BUFFER_UNTIL_CLOSE = "buffer-until-close"
    AWAITING_FIRST_CHUNK = "awaiting-first-chunk"


# State entered right after OKAY for each policy.
AFTER_OKAY: Dict[CompletionPolicy, ParserState] = {
    CompletionPolicy.OKAY_ONLY: ParserState.AWAITING_CHUNK,
    CompletionPolicy.FRAMED: ParserState.AWAITING_CHUNK,
    CompletionPolicy.FRAMED_STREAM: ParserState.AWAITING_CHUNK,
    CompletionPolicy.FRAMED_UNTIL_CLOSE: ParserState.AWAITING_CHUNK,
    CompletionPolicy.UNTIL_CLOSE: ParserState.BUFFER_UNTIL_CLOSE,
    CompletionPolicy.FIRST_CHUNK: ParserState.AWAITING_FIRST_CHUNK,
}


@dataclass(frozen=True)
class Frame:
    """A unit of response data produced by the parser.

    ``final`` frames complete the in-flight command; non-final frames only
    occur for :attr:`CompletionPolicy.FRAMED_STREAM`.
    """

    payload: Optional[bytes]
    final: bool = True


def encode_command(body: str) -> bytes:
    """Frame a command body for the ADB server.

    Raises:
        ValueError: If the encoded body does not fit the 4 hex digit length
    """
    data = body.encode("utf-8")
    if len(data) > MAX_COMMAND_LENGTH:
        raise ValueError(
            f"ADB command is {len(data)} bytes, the maximum is {MAX_COMMAND_LENGTH}"
        )
    return f"{len(data):04X}".encode("ascii") + data


def decode_length(raw: bytes) -> Optional[int]:
    """Parse a 4 hex digit length field, returning None if it is not hex."""
    if len(raw) != 4 or not all(c in HEX_DIGITS for c in raw):
        return None
    return int(raw, 16)


class ResponseParser:
    """Incremental parser for one command's response at a time."""

    def __init__(self) -> None:
        self.state = ParserState.IDLE
        self.policy = CompletionPolicy.OKAY_ONLY
        self._buffer: Optional[bytearray] = None
        self._expected: Optional[int] = None

    @property
    def buffered(self) -> int:
        """Number of pending bytes not yet consumed."""
        return len(self._buffer) if self._buffer is not None else 0

    @property
    def expected_length(self) -> Optional[int]:
        return self._expected

    def reset(self) -> None:
        """Drop any pending bytes and return to IDLE."""
        self.state = ParserState.IDLE
        self._buffer = None
        self._expected = None

    def begin(self, policy: CompletionPolicy) -> None:
        """Arm the parser for a command that has just been sent."""
        if self.state is not ParserState.IDLE:
            raise ADBConnectionError(
                f"Cannot start a new command while the parser is {self.state.value}"
            )
        self.policy = policy
        self._buffer = bytearray()
        self._expected = None
        self.state = ParserState.AWAITING_RESULT

    def feed(self, data: bytes) -> List[Frame]:
        """Consume received bytes and return any frames they complete."""
        if self.state is ParserState.IDLE:
            return []

        if self._buffer is None:
            self._buffer = bytearray(data)
        else:
            self._buffer.extend(data)

        frames: List[Frame] = []
        while self.state is not ParserState.IDLE:
            if not self._HANDLERS[self.state](self, frames):
                break
        return frames

    def close(self) -> List[Frame]:
        """Handle the socket closing and return the final frame, if any."""
        state = self.state
        frames: List[Frame] = []

        if state is ParserState.IDLE:
            return frames

        if state is ParserState.AWAITING_RESULT:
            if self._buffer is not None and self._buffer[:4] == FAIL:
                self._on_failure(eof=True)
            self.reset()
            raise ADBConnectionError("ADB server closed the connection before responding")

        if state is ParserState.AWAITING_CHUNK:
            if self.policy is CompletionPolicy.FRAMED_STREAM:
                self.reset()
                return frames
            if self.buffered or self._expected is not None:
                expected = self._expected
                received = self.buffered
                self.reset()
                raise ADBConnectionError(
                    f"ADB server closed the connection mid-frame "
                    f"({received} of {expected if expected is not None else '?'} bytes)"
                )
            self._complete(None, frames)
            return frames

        if state is ParserState.BUFFER_UNTIL_CLOSE:
            self._complete(bytes(self._buffer or b""), frames)
            return frames

        # AWAITING_FIRST_CHUNK
        self._complete(None, frames)
        return frames

    def _complete(self, payload: Optional[bytes], frames: List[Frame]) -> None:
        frames.append(Frame(payload, final=True))
        self.reset()

    def _on_result(self, frames: List[Frame]) -> bool:
        buf = self._buffer
        if len(buf) < 4:
            return False

        result = bytes(buf[:4])
        if result == FAIL:
            return self._on_failure(eof=False)
        if result != OKAY:
            self.reset()
            raise ProtocolError(f'Unknown adb result "{result.decode("ascii", "replace")}"')

        del buf[:4]
        if self.policy is CompletionPolicy.OKAY_ONLY and not buf:
            self._complete(None, frames)
            return False

        self.state = AFTER_OKAY[self.policy]
        return True

    def _on_failure(self, eof: bool) -> bool:
        rest = bytes(self._buffer[4:])
        message = b""
        if len(rest) >= 4:
            length = decode_length(rest[:4]) or 0
            message = rest[4:4 + length]
            if len(message) < length and not eof:
                return False
        elif not eof:
            return False

        self.reset()
        raise RemoteFailure(message.decode("utf-8", "replace"))

    def _on_chunk(self, frames: List[Frame]) -> bool:
        buf = self._buffer
        policy = self.policy

        if self._expected is None:
            if len(buf) < 4:
                return False
            length = decode_length(bytes(buf[:4]))
            if length is None:
                if policy is CompletionPolicy.FRAMED_UNTIL_CLOSE:
                    self.state = ParserState.BUFFER_UNTIL_CLOSE
                else:
                    # not a frame header; drop it and wait for the next one
                    self._buffer = bytearray()
                return False
            del buf[:4]
            if length == 0:
                if policy is CompletionPolicy.FRAMED_STREAM:
                    frames.append(Frame(b"", final=False))
                    return True
                self._complete(None, frames)
                return False
            self._expected = length

        if len(buf) < self._expected:
            return False

        if policy is CompletionPolicy.FRAMED_UNTIL_CLOSE:
            self._expected = None
            self.state = ParserState.BUFFER_UNTIL_CLOSE
            return False

        payload = bytes(buf[:self._expected])
        del buf[:self._expected]
        self._expected = None

        if policy is CompletionPolicy.FRAMED_STREAM:
            frames.append(Frame(payload, final=False))
            return True

        self._complete(payload, frames)
        return False

    def _on_buffer_until_close(self, frames: List[Frame]) -> bool:
        return False

    def _on_first_chunk(self, frames: List[Frame]) -> bool:
        if not self._buffer:
            return False
        self._complete(bytes(self._buffer), frames)
        return False

    _HANDLERS: Dict[ParserState, Callable[["ResponseParser", List[Frame]], bool]] = {
        ParserState.AWAITING_RESULT: _on_result,
        ParserState.AWAITING_CHUNK: _on_chunk,
        ParserState.BUFFER_UNTIL_CLOSE: _on_buffer_until_close,
        ParserState.AWAITING_FIRST_CHUNK: _on_first_chunk,
    }
