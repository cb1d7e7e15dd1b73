"""
Command/response orchestration for one ROSY instrument.

DeviceSession sequences every exchange in the control vocabulary over two
SessionConnections:

    CONTROL (3893): all commands, status replies and histogram data
    DATA    (3894): waveform buffers, sent once a triggered capture completes

Lifecycle:
    DISCONNECTED -> handshake -> CONNECTED -> acquire_device -> DEVICE_ACQUIRED
    -> start_histogram / start_waveform -> CONFIGURED -> fetch / arm -> ACQUIRING
    -> stop_acquisition -> STOPPED -> release_device -> RELEASED

Any protocol error is fatal for the run. The instrument reports nothing
beyond "not OK", so there is no recovery path inside a session.
"""

import logging
import threading
from typing import Callable, Iterator, Optional

from rosyclient import commands
from rosyclient.commands import RESPONSE_OK
from rosyclient.connection import DEFAULT_CONNECT_ATTEMPTS, DEFAULT_RETRY_DELAY, SessionConnection
from rosyclient.errors import ChannelCountMismatch, ConnectionClosed, MalformedReply, SessionStateError, ShortRead
from rosyclient.types import (
    DeviceId,
    EndpointRole,
    HistogramData,
    SessionState,
    WaveformBlock,
    WaveformConfig,
)
from rosyclient.wire import HISTOGRAM_WIDTH, WAVEFORM_WIDTH

logger = logging.getLogger(__name__)

_S = SessionState

# States from which the device may be stopped, reconfigured or released
_ACTIVE = frozenset({_S.DEVICE_ACQUIRED, _S.CONFIGURED, _S.ACQUIRING, _S.STOPPED})


class DeviceSession:
    """
    Session with a ROSY instrument.

    Example:
        with DeviceSession("rosy.local") as session:
            session.acquire_device()
            session.start_histogram(15)
            hist = session.fetch_histogram()
            session.stop_acquisition()
            session.release_device()

    Thread safety:
        Two threads may use a session concurrently only in the way
        AcquisitionCoordinator does: one polls histograms on CONTROL while the
        other reads waveform blocks on DATA. State transitions are locked;
        the sockets themselves are never shared between threads.
    """

    def __init__(
        self,
        host: str,
        control_port: Optional[int] = None,
        data_port: Optional[int] = None,
        timeout: Optional[float] = None,
        *,
        control: Optional[SessionConnection] = None,
        data: Optional[SessionConnection] = None,
    ):
        self._host = host
        self._control = control or SessionConnection(host, control_port, EndpointRole.CONTROL, timeout)
        self._data = data or SessionConnection(host, data_port, EndpointRole.DATA, timeout)
        self._state = _S.DISCONNECTED
        self._state_lock = threading.Lock()
        self._waveform_config: Optional[WaveformConfig] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def control(self) -> SessionConnection:
        return self._control

    @property
    def data(self) -> SessionConnection:
        return self._data

    @property
    def waveform_config(self) -> Optional[WaveformConfig]:
        return self._waveform_config

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self, max_attempts: int = DEFAULT_CONNECT_ATTEMPTS, retry_delay: float = DEFAULT_RETRY_DELAY) -> None:
        """Connect CONTROL, verify the handshake, then connect DATA."""
        try:
            self._control.connect(max_attempts, retry_delay)
            self.handshake()
            self._data.connect(max_attempts, retry_delay)
        except BaseException:
            self.close()
            raise

    def handshake(self) -> None:
        """Exchange the greeting and protocol version on CONTROL."""
        self._check("handshake", {_S.DISCONNECTED})
        logger.info("Handshake started")
        self._control.send([commands.GREETING])
        self._control.expect(commands.GREETING_REPLY, exchange="hello")
        self._control.send([commands.VERSION])
        self._control.expect(commands.VERSION_REPLY, exchange="version")
        self._transition(_S.CONNECTED)
        logger.info("Handshake completed")

    # ------------------------------------------------------------------
    # Device lifecycle
    # ------------------------------------------------------------------

    def acquire_device(self) -> None:
        self._check("acquire device", {_S.CONNECTED})
        self._exchange(commands.command(commands.ACQUIRE_DEVICE), "acquireDevice")
        self._transition(_S.DEVICE_ACQUIRED)

    def release_device(self) -> None:
        """Release the device, say goodbye and close both connections."""
        self._check("release device", _ACTIVE)
        try:
            self._exchange(commands.command(commands.RELEASE_DEVICE), "releaseDevice")
            self._control.send([commands.BYE])
            self._transition(_S.RELEASED)
        finally:
            self.close()

    def stop_acquisition(self) -> None:
        self._check("stop acquisition", _ACTIVE)
        self._exchange(commands.command(commands.STOP_ACQUISITION), "stopAcquisition")
        self._transition(_S.STOPPED)

    def swap_device_roles(self, device: DeviceId) -> None:
        """Choose which physical device plays the time loss role.

        With DeviceId.POST_MORTEM selected, a regular waveform capture reads
        out the raw inputs of the time loss device.
        """
        self._check("swap device roles", _ACTIVE)
        self._exchange(commands.swap_roles_command(DeviceId(device)), "setTimelossDevice")

    # ------------------------------------------------------------------
    # Histogram (time loss)
    # ------------------------------------------------------------------

    def start_histogram(self, threshold_mv: float) -> None:
        self._check("configure histogram", {_S.DEVICE_ACQUIRED, _S.CONFIGURED, _S.STOPPED})
        self._exchange(commands.histogram_setup_lines(threshold_mv), "setupHistogram")
        self._transition(_S.CONFIGURED)

    def fetch_histogram(self) -> HistogramData:
        """Request one histogram on CONTROL and read its bins."""
        self._check("fetch histogram", {_S.CONFIGURED, _S.ACQUIRING, _S.STOPPED})
        self._advance_to_acquiring()
        self._control.send(commands.command(commands.GET_HISTOGRAM))
        size = self._control.read_int()
        if size < 0 or size % HISTOGRAM_WIDTH:
            raise MalformedReply(f"getHistogram: size {size} is not a multiple of {HISTOGRAM_WIDTH}")
        bins = self._control.read_block(size, HISTOGRAM_WIDTH)
        self._control.expect(RESPONSE_OK, exchange="getHistogram")
        data = HistogramData(bins)
        logger.info(f"Histogram: {data.bin_count} bins, {data.duration_ns:.1f} ns")
        return data

    # ------------------------------------------------------------------
    # Waveform (post mortem)
    # ------------------------------------------------------------------

    def start_waveform(self, config: WaveformConfig) -> None:
        """Send 'procedure setupPostMortem' with the config's positional arguments."""
        self._check("configure waveform", {_S.DEVICE_ACQUIRED, _S.CONFIGURED, _S.STOPPED})
        self._exchange(commands.waveform_setup_command(config), "setupPostMortem")
        self._waveform_config = config
        self._transition(_S.CONFIGURED)

    def arm_waveform_capture(self) -> None:
        """Arm the trigger. Data arrives later on DATA; no reply is read here."""
        self._check("arm waveform capture", {_S.CONFIGURED, _S.ACQUIRING})
        if self._waveform_config is None:
            raise SessionStateError("arm waveform capture without a waveform setup", self._state)
        self._advance_to_acquiring()
        self._control.send(commands.command(commands.GET_POST_MORTEM_DATA))
        logger.info("Waveform capture armed")

    def iter_waveform_blocks(self, on_started: Optional[Callable[[], None]] = None) -> Iterator[WaveformBlock]:
        """
        Read a triggered capture from DATA, one sub-block at a time.

        Blocks until the trigger fires. on_started is called as soon as the
        first size value arrives, before any sample data is read.

        Yields:
            WaveformBlock per sub-block, channels in A, B, C, D order

        Raises:
            ChannelCountMismatch: If the announced layout is inconsistent or
                the stream ends before every enabled channel was delivered
        """
        self._check("fetch waveform", {_S.ACQUIRING})
        config = self._waveform_config
        if config is None:
            raise SessionStateError("fetch waveform without a waveform setup", self._state)

        self._data.expect(RESPONSE_OK, exchange="getPostMortemData")
        buffer_size = self._data.read_int()
        if on_started is not None:
            on_started()
        num_blocks = self._data.read_int()

        if num_blocks < 1:
            raise ChannelCountMismatch(1, num_blocks, f"getPostMortemData: invalid sub-block count {num_blocks}")
        if buffer_size < 0 or buffer_size % num_blocks:
            raise ChannelCountMismatch(
                num_blocks,
                buffer_size,
                f"getPostMortemData: buffer of {buffer_size} bytes does not split into {num_blocks} sub-blocks",
            )
        block_size = buffer_size // num_blocks
        if block_size % WAVEFORM_WIDTH:
            raise MalformedReply(f"getPostMortemData: sub-block size {block_size} is not a multiple of 2")

        channels = config.enabled_channels
        logger.info(
            f"Waveform: {len(channels)} channels x {num_blocks} sub-blocks of {block_size} bytes"
        )
        for k, channel in enumerate(channels):
            for i in range(num_blocks):
                try:
                    samples = self._data.read_block(block_size, WAVEFORM_WIDTH)
                except ConnectionClosed as e:
                    # A clean end at a channel boundary means fewer channels were sent
                    if i == 0 and k > 0 and isinstance(e, ShortRead) and e.received == 0:
                        raise ChannelCountMismatch(len(channels), k) from e
                    raise
                yield WaveformBlock(channel, i, samples)

    def fetch_waveform_blocks(self) -> list[WaveformBlock]:
        return list(self.iter_waveform_blocks())

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close both connections without any protocol traffic."""
        self._control.close()
        self._data.close()

    def __enter__(self) -> "DeviceSession":
        if self._state is _S.DISCONNECTED and not self._control.connected:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def __repr__(self) -> str:
        return f"DeviceSession({self._host}, {self._state.name})"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _exchange(self, lines: list[str], exchange: str) -> None:
        logger.debug(f"{exchange} started")
        self._control.send(lines)
        self._control.expect(RESPONSE_OK, exchange=exchange)
        logger.debug(f"{exchange} completed")

    def _check(self, operation: str, allowed) -> None:
        with self._state_lock:
            if self._state not in allowed:
                raise SessionStateError(operation, self._state)

    def _transition(self, state: SessionState) -> None:
        with self._state_lock:
            logger.debug(f"Session state {self._state.name} -> {state.name}")
            self._state = state

    def _advance_to_acquiring(self) -> None:
        with self._state_lock:
            if self._state is _S.CONFIGURED:
                self._state = _S.ACQUIRING
