"""
Exceptions raised by the ROSY client.

Every error is fatal for the current run: the instrument protocol has no
negative-acknowledgement detail and no in-session recovery. Only the initial
TCP connect is retried (see SessionConnection.connect).
"""

from typing import Optional


class RosyError(Exception):
    """Base class for all rosyclient errors."""


class FatalConnectError(RosyError):
    """Raised when the connect retry budget is exhausted.

    Attributes:
        host: Instrument host
        port: Port that could not be reached
        attempts: Number of attempts made
    """

    def __init__(self, host: str, port: int, attempts: int):
        self.host = host
        self.port = port
        self.attempts = attempts
        super().__init__(f"Could not connect to {host}:{port} after {attempts} attempts")

    def __repr__(self) -> str:
        return f"FatalConnectError(host={self.host!r}, port={self.port}, attempts={self.attempts})"


class UnexpectedReply(RosyError):
    """Raised when a reply line does not contain the expected token.

    Attributes:
        exchange: Name of the exchange that failed (e.g. "acquireDevice")
        expected: Token that was expected somewhere in the line
        received: Line actually received
    """

    def __init__(self, expected: str, received: str, exchange: Optional[str] = None):
        self.exchange = exchange
        self.expected = expected
        self.received = received
        where = f"{exchange}: " if exchange else ""
        super().__init__(f"{where}expected reply containing {expected!r}, got {received!r}")

    def __repr__(self) -> str:
        return f"UnexpectedReply(exchange={self.exchange!r}, expected={self.expected!r}, received={self.received!r})"


class MalformedReply(RosyError):
    """Raised when a reply cannot be interpreted (e.g. non-integer size line)."""

    def __init__(self, message: str, line: Optional[str] = None):
        self.message = message
        self.line = line
        super().__init__(message)

    def __repr__(self) -> str:
        return f"MalformedReply({self.message!r}, line={self.line!r})"


class ConnectionClosed(RosyError):
    """Raised when the peer closes (or we shut down) a connection mid-exchange."""

    def __init__(self, message: str = "Connection closed by peer"):
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"ConnectionClosed({self.message!r})"


class ShortRead(ConnectionClosed):
    """Raised when a binary block ends before its announced size.

    Attributes:
        expected: Announced block size in bytes
        received: Bytes received before the stream closed
    """

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"Stream closed after {received} of {expected} bytes")

    def __repr__(self) -> str:
        return f"ShortRead(expected={self.expected}, received={self.received})"


class ChannelCountMismatch(RosyError):
    """Raised when the waveform data offered disagrees with the configuration.

    Attributes:
        expected: Number of enabled channels (or sub-blocks) configured
        received: Number actually offered by the instrument
    """

    def __init__(self, expected: int, received: int, message: Optional[str] = None):
        self.expected = expected
        self.received = received
        super().__init__(message or f"Expected data for {expected} channels, instrument offered {received}")

    def __repr__(self) -> str:
        return f"ChannelCountMismatch(expected={self.expected}, received={self.received})"


class SessionStateError(RosyError):
    """Raised when an operation is not allowed in the current session state."""

    def __init__(self, operation: str, state):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} in state {state.name}")

    def __repr__(self) -> str:
        return f"SessionStateError(operation={self.operation!r}, state={self.state.name})"
