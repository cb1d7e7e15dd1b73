"""
rosyclient - control and data acquisition client for ROSY instruments.

Quick start:
    import rosyclient
    from rosyclient import AcquisitionCoordinator, FileSink, HistogramConfig

    with rosyclient.open_session("192.168.0.10") as session:
        session.acquire_device()
        coord = AcquisitionCoordinator(session, sink=FileSink("data"))
        coord.run_histogram(HistogramConfig(iteration_count=5, threshold_mv=15))
        session.release_device()

Environment variables (read at import):
    ROSY_HOST              instrument host
    ROSY_CONTROL_PORT      control port (default 3893)
    ROSY_DATA_PORT         data port (default 3894)
    ROSY_CONNECT_ATTEMPTS  connect retry budget (default 5)
    ROSY_RETRY_DELAY       seconds between connect attempts (default 1.0)
    ROSY_TIMEOUT           socket timeout in seconds (default: block forever)
"""

import logging
import os
from typing import Optional

from rosyclient.connection import DEFAULT_CONNECT_ATTEMPTS, DEFAULT_RETRY_DELAY, SessionConnection
from rosyclient.coordinator import AcquisitionCoordinator, AcquisitionSummary
from rosyclient.errors import (
    ChannelCountMismatch,
    ConnectionClosed,
    FatalConnectError,
    MalformedReply,
    RosyError,
    SessionStateError,
    ShortRead,
    UnexpectedReply,
)
from rosyclient.session import DeviceSession
from rosyclient.sink import ConsolePreviewSink, FileSink, MultiSink, NullSink, SampleSink
from rosyclient.types import (
    DeviceId,
    EndpointRole,
    HistogramConfig,
    HistogramData,
    SessionState,
    TriggerChannel,
    TriggerDirection,
    VerticalRange,
    WaveformBlock,
    WaveformConfig,
)

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Environment Variables (read at import)
# ─────────────────────────────────────────────────────────────────────────────


def _get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Get environment variable as int."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {val!r}")


def _get_env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    """Get environment variable as float."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {val!r}")


_env_host = os.environ.get("ROSY_HOST")
_env_control_port = _get_env_int("ROSY_CONTROL_PORT")
_env_data_port = _get_env_int("ROSY_DATA_PORT")
_env_connect_attempts = _get_env_int("ROSY_CONNECT_ATTEMPTS")
_env_retry_delay = _get_env_float("ROSY_RETRY_DELAY")
_env_timeout = _get_env_float("ROSY_TIMEOUT")


def _first(*values):
    return next((v for v in values if v is not None), None)


def open_session(
    host: Optional[str] = None,
    control_port: Optional[int] = None,
    data_port: Optional[int] = None,
    *,
    timeout: Optional[float] = None,
    max_attempts: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> DeviceSession:
    """
    Connect to an instrument and complete the handshake.

    Explicit arguments win over ROSY_* environment variables, which win over
    the built-in defaults.

    Returns:
        DeviceSession in state CONNECTED (device not yet acquired)

    Raises:
        ValueError: If no host is given and ROSY_HOST is unset
        FatalConnectError: If an endpoint could not be reached
        UnexpectedReply: If the handshake fails
    """
    host = _first(host, _env_host)
    if not host:
        raise ValueError("No instrument host given. Pass host=... or set ROSY_HOST.")

    session = DeviceSession(
        host,
        control_port=_first(control_port, _env_control_port, EndpointRole.CONTROL.default_port),
        data_port=_first(data_port, _env_data_port, EndpointRole.DATA.default_port),
        timeout=_first(timeout, _env_timeout),
    )
    session.connect(
        max_attempts=_first(max_attempts, _env_connect_attempts, DEFAULT_CONNECT_ATTEMPTS),
        retry_delay=_first(retry_delay, _env_retry_delay, DEFAULT_RETRY_DELAY),
    )
    logger.info(f"Session open to {host}")
    return session


__all__ = [
    "open_session",
    "DeviceSession",
    "SessionConnection",
    "AcquisitionCoordinator",
    "AcquisitionSummary",
    # sinks
    "SampleSink",
    "NullSink",
    "MultiSink",
    "ConsolePreviewSink",
    "FileSink",
    # types
    "DeviceId",
    "EndpointRole",
    "HistogramConfig",
    "HistogramData",
    "SessionState",
    "TriggerChannel",
    "TriggerDirection",
    "VerticalRange",
    "WaveformBlock",
    "WaveformConfig",
    # errors
    "RosyError",
    "FatalConnectError",
    "UnexpectedReply",
    "MalformedReply",
    "ConnectionClosed",
    "ShortRead",
    "ChannelCountMismatch",
    "SessionStateError",
]
