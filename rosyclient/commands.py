"""
ROSY control vocabulary and command encoding.

Every command is a verb line followed by positional argument lines, each
terminated by a newline. The instrument has no field names: argument order
is the only thing that identifies a value, so all waveform setups are built
by waveform_setup_lines() and nowhere else.
"""

from typing import Iterable, Sequence

from rosyclient.types import (
    CHANNELS,
    DeviceId,
    TriggerChannel,
    TriggerDirection,
    VerticalRange,
    WaveformConfig,
)

# Handshake
GREETING = "hello"
GREETING_REPLY = "hello"
VERSION = "version 1.0"
VERSION_REPLY = "welcome"

# Reply token for successful completion
RESPONSE_OK = "0"

# Device id line following every verb
DEVICE_LINE = "0"

# Verbs
ACQUIRE_DEVICE = "function acquireDevice"
RELEASE_DEVICE = "procedure releaseDevice"
STOP_ACQUISITION = "procedure stopAcquisition"
SETUP_HISTOGRAM = "procedure setupHistogram"
GET_HISTOGRAM = "function getHistogram"
SETUP_POST_MORTEM = "procedure setupPostMortem"
GET_POST_MORTEM_DATA = "function getPostMortemData"
SET_TIMELOSS_DEVICE = "procedure setTimelossDevice"
BYE = "bye"

# Field order of 'procedure setupPostMortem' arguments
WAVEFORM_FIELDS = (
    "device",
    "delay_samples",
    "range_a",
    "range_b",
    "range_c",
    "range_d",
    "trigger_channel",
    "trigger_threshold_mv",
    "trigger_direction",
    "sample_count",
    "sampling_period",
)


def encode_command(lines: Iterable[str]) -> bytes:
    """Join command lines into wire bytes, each line newline-terminated."""
    out = []
    for line in lines:
        if "\n" in line:
            raise ValueError(f"command line must not contain a newline: {line!r}")
        out.append(line + "\n")
    return "".join(out).encode("ascii")


def format_number(value) -> str:
    """Render a numeric argument the way the instrument parses it.

    Integral floats drop the fractional part ("15", not "15.0").
    """
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def command(verb: str, *args) -> list[str]:
    """Build the lines of a command addressed to device 0."""
    return [verb, DEVICE_LINE, *(format_number(a) for a in args)]


def histogram_setup_lines(threshold_mv: float) -> list[str]:
    return command(SETUP_HISTOGRAM, threshold_mv)


def waveform_setup_lines(config: WaveformConfig, device: str = DEVICE_LINE) -> list[str]:
    """Argument lines of 'procedure setupPostMortem' (verb excluded)."""
    a, b, c, d = (int(r) for r in config.ranges)
    return [
        device,
        format_number(config.delay_samples),
        str(a),
        str(b),
        str(c),
        str(d),
        config.trigger_channel.value,
        format_number(config.trigger_threshold_mv),
        config.trigger_direction.value,
        format_number(config.sample_count),
        format_number(config.sampling_period),
    ]


def parse_waveform_setup_lines(lines: Sequence[str]) -> tuple[str, WaveformConfig]:
    """Inverse of waveform_setup_lines(); returns (device, config)."""
    if len(lines) != len(WAVEFORM_FIELDS):
        raise ValueError(f"expected {len(WAVEFORM_FIELDS)} argument lines, got {len(lines)}")
    fields = dict(zip(WAVEFORM_FIELDS, lines))
    config = WaveformConfig(
        delay_samples=_parse_number(fields["delay_samples"]),
        ranges=tuple(VerticalRange(int(fields[f"range_{ch.lower()}"])) for ch in CHANNELS),
        trigger_channel=TriggerChannel(fields["trigger_channel"]),
        trigger_threshold_mv=int(fields["trigger_threshold_mv"]),
        trigger_direction=TriggerDirection(fields["trigger_direction"]),
        sample_count=int(fields["sample_count"]),
        sampling_period=_parse_number(fields["sampling_period"]),
    )
    return fields["device"], config


def waveform_setup_command(config: WaveformConfig) -> list[str]:
    return [SETUP_POST_MORTEM, *waveform_setup_lines(config)]


def swap_roles_command(device: DeviceId) -> list[str]:
    return command(SET_TIMELOSS_DEVICE, int(device))


def _parse_number(text: str):
    try:
        return int(text)
    except ValueError:
        return float(text)
