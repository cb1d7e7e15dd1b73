"""
TCP connection to one ROSY endpoint.

A session uses two of these: CONTROL (port 3893) carries every command and
the histogram data, DATA (port 3894) carries only waveform buffers. Both are
plain blocking sockets; reads block until a full line or block has arrived.
"""

import logging
import socket
import threading
import time
from typing import Iterable, Optional

import numpy as np

from rosyclient.commands import encode_command
from rosyclient.errors import ConnectionClosed, FatalConnectError, RosyError, UnexpectedReply
from rosyclient.types import EndpointRole
from rosyclient.wire import ByteStream, read_binary_block, read_int_line, read_line

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_ATTEMPTS = 5
DEFAULT_RETRY_DELAY = 1.0


class SessionConnection:
    """
    Blocking TCP connection to one instrument endpoint.

    Example:
        with SessionConnection("rosy.local", role=EndpointRole.CONTROL) as conn:
            conn.send(["hello"])
            conn.expect("hello")

    close() may be called from another thread; a read blocked on the socket
    then fails with ConnectionClosed instead of hanging.
    """

    def __init__(
        self,
        host: str,
        port: Optional[int] = None,
        role: EndpointRole = EndpointRole.CONTROL,
        timeout: Optional[float] = None,
    ):
        if not host:
            raise ValueError("host cannot be empty")
        if port is None:
            port = role.default_port
        if port <= 0 or port > 65535:
            raise ValueError(f"port must be between 1 and 65535, got {port}")
        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        self._host = host
        self._port = port
        self._role = role
        self._timeout = timeout

        self._socket: Optional[socket.socket] = None
        self._stream: Optional[ByteStream] = None
        self._close_lock = threading.Lock()
        self._connected = False

    @property
    def role(self) -> EndpointRole:
        return self._role

    @property
    def connected(self) -> bool:
        return self._connected and self._socket is not None

    def connect(self, max_attempts: int = DEFAULT_CONNECT_ATTEMPTS, retry_delay: float = DEFAULT_RETRY_DELAY) -> None:
        """
        Connect, retrying up to max_attempts times.

        Raises:
            FatalConnectError: If every attempt failed. Not recoverable; the
                caller should abandon the whole session.
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if self._connected:
            raise RosyError(f"{self._role.name} connection already established")

        last_error: Optional[OSError] = None
        for attempt in range(1, max_attempts + 1):
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                sock.settimeout(self._timeout)
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                logger.debug(f"{self._role.name}: connecting to {self._host}:{self._port}")
                sock.connect((self._host, self._port))
            except OSError as e:
                last_error = e
                sock.close()
                logger.warning(
                    f"{self._role.name}: attempt {attempt}/{max_attempts} to {self._host}:{self._port} failed: {e}"
                )
                if attempt < max_attempts:
                    time.sleep(retry_delay)
                continue

            self._socket = sock
            self._stream = ByteStream(sock)
            self._connected = True
            logger.info(f"{self._role.name}: connected to {self._host}:{self._port}")
            return

        raise FatalConnectError(self._host, self._port, max_attempts) from last_error

    def send(self, lines: Iterable[str]) -> None:
        """Send one command (verb plus argument lines) in a single write."""
        data = encode_command(lines)
        sock = self._require_socket()
        logger.debug(f"{self._role.name}: sending {data!r}")
        try:
            sock.sendall(data)
        except socket.timeout:
            raise TimeoutError("Send timeout")
        except OSError as e:
            self._connected = False
            raise ConnectionClosed(f"{self._role.name}: send failed: {e}") from e

    def read_line(self) -> str:
        self._require_socket()
        return read_line(self._stream)

    def read_int(self) -> int:
        self._require_socket()
        return read_int_line(self._stream)

    def read_block(self, byte_count: int, element_width: int) -> np.ndarray:
        self._require_socket()
        return read_binary_block(self._stream, byte_count, element_width)

    def expect(self, token: str, exchange: Optional[str] = None) -> str:
        """
        Read one line and check that it contains token.

        Substring match, not equality: the greeting replies carry extra text.

        Raises:
            UnexpectedReply: If token is not found in the line
        """
        line = self.read_line()
        if token not in line:
            raise UnexpectedReply(token, line, exchange=exchange)
        return line

    def close(self) -> None:
        """Shut down and close the socket. Safe to call repeatedly and from other threads."""
        with self._close_lock:
            sock, self._socket = self._socket, None
            self._connected = False
        if sock is None:
            return
        try:
            # shutdown wakes up a recv() blocked in another thread
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            sock.close()
        except OSError:
            pass
        logger.debug(f"{self._role.name}: connection closed")

    def _require_socket(self) -> socket.socket:
        sock = self._socket
        if sock is None:
            raise ConnectionClosed(f"{self._role.name} connection is not open")
        return sock

    def __enter__(self) -> "SessionConnection":
        if not self._connected:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def __repr__(self) -> str:
        status = "connected" if self._connected else "disconnected"
        return f"SessionConnection({self._role.name}, {self._host}:{self._port}, {status})"
