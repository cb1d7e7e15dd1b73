"""
Wire decoding for the ROSY protocol.

Replies are newline-terminated ASCII lines. Binary sample blocks carry no
framing of their own: their length is always announced by a preceding
decimal size line, and exactly that many bytes must be consumed.

Histogram bins are little-endian int32, waveform samples little-endian int16.
"""

import logging
import re
import socket

import numpy as np

from rosyclient.errors import ConnectionClosed, MalformedReply, ShortRead

logger = logging.getLogger(__name__)

RECV_CHUNK_SIZE = 65536

# Element width in bytes -> numpy dtype
HISTOGRAM_WIDTH = 4
WAVEFORM_WIDTH = 2
_DTYPES = {
    HISTOGRAM_WIDTH: np.dtype("<i4"),
    WAVEFORM_WIDTH: np.dtype("<i2"),
}

_INT_RE = re.compile(r"^[+-]?\d+$")


class ByteStream:
    """
    Buffered reader over a socket-like object.

    Anything received past the end of a line stays in the buffer for the next
    read, so a size line and the binary block that follows it may arrive in
    the same recv() chunk.
    """

    def __init__(self, sock):
        self._sock = sock
        self._buffer = bytearray()

    def _fill(self) -> bool:
        """Receive one chunk; False if the stream ended."""
        try:
            chunk = self._sock.recv(RECV_CHUNK_SIZE)
        except socket.timeout:
            raise TimeoutError("Receive timeout")
        except OSError as e:
            raise ConnectionClosed(f"Receive failed: {e}") from e
        if not chunk:
            return False
        self._buffer.extend(chunk)
        return True

    def read_until(self, delimiter: bytes = b"\n") -> bytes:
        """Read through the next delimiter; returns the data without it."""
        start = 0
        while True:
            idx = self._buffer.find(delimiter, start)
            if idx >= 0:
                data = bytes(self._buffer[:idx])
                del self._buffer[: idx + len(delimiter)]
                return data
            start = max(0, len(self._buffer) - len(delimiter) + 1)
            if not self._fill():
                raise ConnectionClosed("Connection closed before end of line")

    def read_exact(self, n: int) -> bytes:
        """Read exactly n bytes."""
        while len(self._buffer) < n:
            if not self._fill():
                raise ShortRead(expected=n, received=len(self._buffer))
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        return data

    @property
    def buffered(self) -> int:
        return len(self._buffer)


def read_line(stream: ByteStream) -> str:
    """Read one reply line, stripped of its terminator."""
    raw = stream.read_until(b"\n")
    line = raw.decode("utf-8", errors="replace").rstrip("\r")
    logger.debug(f"Received: {line!r}")
    return line


def read_int_line(stream: ByteStream) -> int:
    """Read a line holding a base-10 integer."""
    line = read_line(stream)
    text = line.strip()
    if not _INT_RE.match(text):
        raise MalformedReply(f"Expected an integer reply, got {line!r}", line=line)
    return int(text)


def read_binary_block(stream: ByteStream, byte_count: int, element_width: int) -> np.ndarray:
    """Read byte_count bytes as little-endian signed integers of element_width."""
    dtype = _DTYPES.get(element_width)
    if dtype is None:
        raise ValueError(f"element_width must be one of {sorted(_DTYPES)}, got {element_width}")
    if byte_count < 0 or byte_count % element_width:
        raise MalformedReply(f"Block size {byte_count} is not a multiple of {element_width} bytes")
    data = stream.read_exact(byte_count)
    # frombuffer on bytes is read-only; copy so callers own a normal array
    return np.frombuffer(data, dtype=dtype).copy()
