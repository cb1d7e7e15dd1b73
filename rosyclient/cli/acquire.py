"""rosy-acquire -- Run a histogram, waveform or combined acquisition."""

import signal
import sys

from rosyclient.cli._common import (
    EXIT_CONNECTION_ERROR,
    EXIT_DEVICE_ERROR,
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_USAGE_ERROR,
    base_parser,
    histogram_config,
    make_session,
    make_sink,
    setup_logging,
    waveform_config,
)
from rosyclient.coordinator import AcquisitionCoordinator
from rosyclient.errors import FatalConnectError, RosyError

MODES = {
    "TL": "time loss histogram polling",
    "PM": "single triggered post mortem (waveform) capture",
    "BOTH": "histogram polling and waveform capture in parallel",
    "SWAP": "waveform capture of the time loss device inputs",
}


def run_mode(coord: AcquisitionCoordinator, mode: str, args):
    if mode == "TL":
        return coord.run_histogram(histogram_config(args))
    if mode == "PM":
        return coord.run_waveform(waveform_config(args))
    if mode == "BOTH":
        return coord.run_combined(histogram_config(args), waveform_config(args))
    if mode == "SWAP":
        return coord.run_waveform_via_histogram_device(waveform_config(args))
    raise ValueError(f"Unknown mode: {mode!r}")


def main() -> int:
    parser = base_parser("Acquire data from a ROSY instrument")
    parser.add_argument(
        "mode",
        type=str.upper,
        choices=list(MODES),
        help="; ".join(f"{k}: {v}" for k, v in MODES.items()),
    )
    args = parser.parse_args()
    setup_logging(args.verbose)

    # Validate configs before touching the network
    try:
        histogram_config(args)
        waveform_config(args)
        if args.poll_interval < 0:
            raise ValueError(f"--poll-interval must be >= 0, got {args.poll_interval}")
        sink = make_sink(args)
    except (ValueError, OSError) as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    def _sigterm_handler(signum, frame):
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, _sigterm_handler)

    try:
        session = make_session(args)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR
    except FatalConnectError as e:
        print(f"Connection error: {e}", file=sys.stderr)
        return EXIT_CONNECTION_ERROR
    except OSError as e:
        # includes TimeoutError from a --timeout read
        print(f"Connection error: {e}", file=sys.stderr)
        return EXIT_CONNECTION_ERROR
    except RosyError as e:
        print(f"Handshake failed: {e}", file=sys.stderr)
        return EXIT_DEVICE_ERROR

    try:
        session.acquire_device()
        coord = AcquisitionCoordinator(session, sink=sink, poll_interval=args.poll_interval)
        summary = run_mode(coord, args.mode, args)
        session.release_device()
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except (RosyError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_DEVICE_ERROR
    finally:
        session.close()

    print(
        f"--- {summary.histograms} histograms, {summary.waveform_blocks} waveform blocks ---",
        file=sys.stderr,
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
