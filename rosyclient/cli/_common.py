"""Shared CLI infrastructure: flags, acquisition presets, sinks, exit codes."""

import argparse
import logging

import rosyclient
from rosyclient.coordinator import DEFAULT_POLL_INTERVAL
from rosyclient.sink import ConsolePreviewSink, FileSink, MultiSink, NullSink, SampleSink
from rosyclient.types import (
    HistogramConfig,
    TriggerChannel,
    TriggerDirection,
    VerticalRange,
    WaveformConfig,
)

# Exit codes
EXIT_OK = 0
EXIT_DEVICE_ERROR = 1
EXIT_USAGE_ERROR = 2
EXIT_CONNECTION_ERROR = 3
EXIT_INTERRUPTED = 130

# Presets used when no flag overrides them
DEFAULT_HISTOGRAM = HistogramConfig(iteration_count=10, threshold_mv=15)
DEFAULT_WAVEFORM = WaveformConfig()

# "off", "100mv", ... "20v" -> VerticalRange
RANGE_NAMES = {
    "off": VerticalRange.DISABLED,
    "100mv": VerticalRange.RANGE_100_MV,
    "200mv": VerticalRange.RANGE_200_MV,
    "500mv": VerticalRange.RANGE_500_MV,
    "1v": VerticalRange.RANGE_1_V,
    "2v": VerticalRange.RANGE_2_V,
    "5v": VerticalRange.RANGE_5_V,
    "10v": VerticalRange.RANGE_10_V,
    "20v": VerticalRange.RANGE_20_V,
}
_RANGE_LABELS = {v: k for k, v in RANGE_NAMES.items()}


def parse_range(s: str) -> VerticalRange:
    """Parse a channel range name ("1V", "500mV", "off") or its numeric code."""
    key = s.strip().lower()
    if key in RANGE_NAMES:
        return RANGE_NAMES[key]
    try:
        return VerticalRange(int(key))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid range {s!r}, choose from {', '.join(RANGE_NAMES)}")


def base_parser(description: str) -> argparse.ArgumentParser:
    """Create ArgumentParser with connection, histogram, waveform and output flags."""
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("host", nargs="?", default=None, help="instrument address (default: $ROSY_HOST)")

    conn = parser.add_argument_group("connection")
    conn.add_argument("--control-port", type=int, default=None, help="control port (default: 3893)")
    conn.add_argument("--data-port", type=int, default=None, help="data port (default: 3894)")
    conn.add_argument("--attempts", type=int, default=None, help="connect attempts per endpoint (default: 5)")
    conn.add_argument("--retry-delay", type=float, default=None, help="seconds between attempts (default: 1.0)")
    conn.add_argument("--timeout", type=float, default=None, help="socket timeout in seconds (default: none)")

    hist = parser.add_argument_group("histogram")
    hist.add_argument("--threshold", type=float, default=DEFAULT_HISTOGRAM.threshold_mv, help="signal threshold [mV]")
    hist.add_argument(
        "-n", "--iterations", type=int, default=DEFAULT_HISTOGRAM.iteration_count, help="number of histogram polls"
    )
    hist.add_argument("--continuous", action="store_true", help="poll until the waveform capture starts")
    hist.add_argument(
        "--poll-interval", type=float, default=DEFAULT_POLL_INTERVAL, help="seconds between histogram polls"
    )

    wave = parser.add_argument_group("waveform")
    wave.add_argument("--delay", type=float, default=DEFAULT_WAVEFORM.delay_samples, help="trigger delay [samples]")
    for ch, default in zip("abcd", DEFAULT_WAVEFORM.ranges):
        wave.add_argument(
            f"--range-{ch}",
            type=parse_range,
            default=default,
            help=f"channel {ch.upper()} range (default: {_RANGE_LABELS[default]})",
        )
    wave.add_argument(
        "--trigger-channel",
        choices=[c.value for c in TriggerChannel],
        default=DEFAULT_WAVEFORM.trigger_channel.value,
    )
    wave.add_argument(
        "--trigger-direction",
        choices=[d.value for d in TriggerDirection],
        default=DEFAULT_WAVEFORM.trigger_direction.value,
    )
    wave.add_argument(
        "--trigger-threshold", type=int, default=DEFAULT_WAVEFORM.trigger_threshold_mv, help="[mV], 1..1000"
    )
    wave.add_argument(
        "--samples", type=int, default=DEFAULT_WAVEFORM.sample_count, help="samples per channel (-1: maximum)"
    )
    wave.add_argument(
        "--sampling-period",
        type=float,
        default=DEFAULT_WAVEFORM.sampling_period,
        help="seconds between samples (-1: minimum)",
    )

    out = parser.add_argument_group("output")
    out.add_argument("-o", "--output-dir", default=".", help="directory for saved data files")
    out.add_argument("--no-save", action="store_true", help="do not write data files")
    out.add_argument("-p", "--print", dest="preview", action="store_true", help="print a preview of each block")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose output")
    return parser


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def histogram_config(args) -> HistogramConfig:
    return HistogramConfig(
        iteration_count=None if args.continuous else args.iterations,
        threshold_mv=args.threshold,
    )


def waveform_config(args) -> WaveformConfig:
    return WaveformConfig(
        delay_samples=args.delay,
        ranges=(args.range_a, args.range_b, args.range_c, args.range_d),
        trigger_channel=TriggerChannel(args.trigger_channel),
        trigger_threshold_mv=args.trigger_threshold,
        trigger_direction=TriggerDirection(args.trigger_direction),
        sample_count=args.samples,
        sampling_period=args.sampling_period,
    )


def make_sink(args) -> SampleSink:
    sinks = []
    if not args.no_save:
        sinks.append(FileSink(args.output_dir))
    if args.preview:
        sinks.append(ConsolePreviewSink())
    if not sinks:
        return NullSink()
    if len(sinks) == 1:
        return sinks[0]
    return MultiSink(*sinks)


def make_session(args) -> "rosyclient.DeviceSession":
    """Open a session via rosyclient.open_session() from parsed args."""
    kwargs = {
        "control_port": args.control_port,
        "data_port": args.data_port,
        "timeout": args.timeout,
        "max_attempts": args.attempts,
        "retry_delay": args.retry_delay,
    }
    return rosyclient.open_session(args.host, **kwargs)
