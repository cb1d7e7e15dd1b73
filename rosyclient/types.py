"""
Core data types - acquisition configs, session states, sample containers.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional

import numpy as np

# Histogram bin width in nanoseconds
HISTOGRAM_BIN_WIDTH_NS = 1.6

# Channel letters in protocol order
CHANNELS = ("A", "B", "C", "D")


class EndpointRole(Enum):
    """TCP endpoint roles. The value is the default port."""

    CONTROL = 3893
    DATA = 3894

    @property
    def default_port(self) -> int:
        return self.value


class DeviceId(IntEnum):
    """Logical devices inside the instrument.

    The histogram role can be reassigned with swap_device_roles(), which lets
    a waveform capture read out the raw inputs of the time loss device.
    """

    TIME_LOSS = 0
    POST_MORTEM = 1


class VerticalRange(IntEnum):
    """Input voltage range of a waveform channel."""

    RANGE_100_MV = 3
    RANGE_200_MV = 4
    RANGE_500_MV = 5
    RANGE_1_V = 6
    RANGE_2_V = 7
    RANGE_5_V = 8
    RANGE_10_V = 9
    RANGE_20_V = 10
    DISABLED = -1

    @property
    def enabled(self) -> bool:
        return self is not VerticalRange.DISABLED


class TriggerChannel(Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    EXT = "EXT"


class TriggerDirection(Enum):
    RISING = "RISING"
    FALLING = "FALLING"
    RISE_FALL = "RISE_FALL"


class SessionState(Enum):
    """Lifecycle of a DeviceSession. RELEASED is terminal."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    DEVICE_ACQUIRED = "device_acquired"
    CONFIGURED = "configured"
    ACQUIRING = "acquiring"
    STOPPED = "stopped"
    RELEASED = "released"


@dataclass(frozen=True)
class HistogramConfig:
    """Histogram (time loss) acquisition settings.

    Attributes:
        iteration_count: Number of histogram polls; None polls until the
            waveform capture starts (or forever when running alone)
        threshold_mv: Signal threshold in millivolts
    """

    iteration_count: Optional[int] = 10
    threshold_mv: float = 15.0

    def __post_init__(self):
        if self.iteration_count is not None and self.iteration_count < 0:
            raise ValueError(f"iteration_count must be >= 0 or None, got {self.iteration_count}")

    @property
    def continuous(self) -> bool:
        return self.iteration_count is None


@dataclass(frozen=True)
class WaveformConfig:
    """Waveform (post mortem) capture settings.

    Attributes:
        delay_samples: Positive starts acquisition that many samples after the
            trigger, negative captures that many samples before it
        ranges: Voltage range of channels A, B, C, D (DISABLED turns one off)
        trigger_channel: Channel the trigger watches
        trigger_threshold_mv: Trigger threshold, 1..1000 mV
        trigger_direction: Edge that fires the trigger
        sample_count: Samples per channel, -1 for the maximum
        sampling_period: Seconds between samples, -1 for the minimum
            (200 ps for 1 channel, 400 ps for A+C or B+D, 800 ps otherwise)
    """

    delay_samples: float = 0
    ranges: tuple = (
        VerticalRange.RANGE_1_V,
        VerticalRange.DISABLED,
        VerticalRange.DISABLED,
        VerticalRange.DISABLED,
    )
    trigger_channel: TriggerChannel = TriggerChannel.EXT
    trigger_threshold_mv: int = 250
    trigger_direction: TriggerDirection = TriggerDirection.RISING
    sample_count: int = 1_000_000
    sampling_period: float = -1

    def __post_init__(self):
        if len(self.ranges) != len(CHANNELS):
            raise ValueError(f"ranges must have {len(CHANNELS)} entries, got {len(self.ranges)}")
        # Normalize plain ints so equality and the wire format stay stable
        object.__setattr__(self, "ranges", tuple(VerticalRange(r) for r in self.ranges))
        object.__setattr__(self, "trigger_channel", TriggerChannel(self.trigger_channel))
        object.__setattr__(self, "trigger_direction", TriggerDirection(self.trigger_direction))
        if not self.enabled_channels:
            raise ValueError("at least one channel must be enabled")
        if not 1 <= self.trigger_threshold_mv <= 1000:
            raise ValueError(f"trigger_threshold_mv must be between 1 and 1000, got {self.trigger_threshold_mv}")
        if self.sample_count != -1 and self.sample_count <= 0:
            raise ValueError(f"sample_count must be positive or -1, got {self.sample_count}")
        if self.sampling_period != -1 and self.sampling_period <= 0:
            raise ValueError(f"sampling_period must be positive or -1, got {self.sampling_period}")

    @property
    def enabled_channels(self) -> tuple:
        """Letters of enabled channels, in A, B, C, D order."""
        return tuple(ch for ch, r in zip(CHANNELS, self.ranges) if r.enabled)


@dataclass(frozen=True, eq=False)
class HistogramData:
    """One histogram read out of the time loss device."""

    bins: np.ndarray

    @property
    def bin_count(self) -> int:
        return len(self.bins)

    @property
    def time_axis(self) -> np.ndarray:
        """Start time of each bin in ns."""
        return np.arange(len(self.bins)) * HISTOGRAM_BIN_WIDTH_NS

    @property
    def duration_ns(self) -> float:
        return len(self.bins) * HISTOGRAM_BIN_WIDTH_NS


@dataclass(frozen=True, eq=False)
class WaveformBlock:
    """One sub-block of a channel's waveform buffer."""

    channel: str
    index: int
    samples: np.ndarray

    def __len__(self) -> int:
        return len(self.samples)
