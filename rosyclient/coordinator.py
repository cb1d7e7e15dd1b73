"""
Acquisition runs: histogram polling, triggered waveform capture, and both at once.

In combined mode the two flows run on their own threads:

    histogram flow: polls getHistogram on CONTROL until its iteration budget
                    is spent or the waveform capture starts
    waveform flow:  waits on DATA for the triggered capture and reads it

They share one threading.Event, created per run. The waveform flow sets it
when the first size value arrives; the histogram flow only checks it between
iterations, so it may finish the fetch already in flight. Neither flow is
interrupted mid-read.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from rosyclient.errors import ConnectionClosed
from rosyclient.session import DeviceSession
from rosyclient.sink import NullSink, SampleSink
from rosyclient.types import DeviceId, HistogramConfig, WaveformConfig

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
_JOIN_POLL = 0.5


@dataclass
class AcquisitionSummary:
    """Counts of what a run delivered to the sink."""

    histograms: int = 0
    waveform_blocks: int = 0
    waveform_started: bool = False


class _FlowResult:
    """Completion record of one flow thread."""

    def __init__(self, name: str):
        self.name = name
        self.error: Optional[BaseException] = None
        self.done = threading.Event()


class AcquisitionCoordinator:
    """
    Runs acquisitions against a DeviceSession whose device is acquired.

    Example:
        coord = AcquisitionCoordinator(session, sink=FileSink("out"))
        summary = coord.run_combined(HistogramConfig(None, 15), WaveformConfig())

    Args:
        session: Connected session, device already acquired
        sink: Receives every histogram and waveform block as soon as it is read
        poll_interval: Seconds between histogram polls
    """

    def __init__(
        self,
        session: DeviceSession,
        sink: Optional[SampleSink] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        if poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {poll_interval}")
        self._session = session
        self._sink = sink or NullSink()
        self._poll_interval = poll_interval

    # ------------------------------------------------------------------
    # Single-mode runs
    # ------------------------------------------------------------------

    def run_histogram(self, config: HistogramConfig) -> AcquisitionSummary:
        """Poll histograms, stop, then read the final histogram."""
        logger.info("Histogram run started")
        summary = AcquisitionSummary()
        self._session.start_histogram(config.threshold_mv)
        self._histogram_flow(config, threading.Event(), summary)
        self._session.stop_acquisition()
        self._fetch_final_histogram(summary)
        logger.info("Histogram run ended")
        return summary

    def run_waveform(self, config: WaveformConfig) -> AcquisitionSummary:
        """Configure, arm and read one triggered capture, then stop."""
        logger.info("Waveform run started")
        summary = AcquisitionSummary()
        self._capture_waveform(config, summary)
        self._session.stop_acquisition()
        logger.info("Waveform run ended")
        return summary

    def run_waveform_via_histogram_device(self, config: WaveformConfig) -> AcquisitionSummary:
        """Capture the raw inputs of the time loss device through the waveform path."""
        logger.info("Waveform run via time loss device started")
        summary = AcquisitionSummary()
        self._session.stop_acquisition()
        self._session.swap_device_roles(DeviceId.POST_MORTEM)
        self._capture_waveform(config, summary)
        self._session.stop_acquisition()
        self._session.swap_device_roles(DeviceId.TIME_LOSS)
        logger.info("Waveform run via time loss device ended")
        return summary

    # ------------------------------------------------------------------
    # Combined run
    # ------------------------------------------------------------------

    def run_combined(
        self,
        histogram: HistogramConfig,
        waveform: WaveformConfig,
        *,
        read_final_histogram: bool = True,
    ) -> AcquisitionSummary:
        """
        Poll histograms while waiting for a triggered waveform capture.

        Both setups are sent, and the capture armed, before any thread starts.
        Blocks until both flows have finished.

        Raises:
            RosyError: The first fatal error of either flow
        """
        logger.info("Combined run started")
        summary = AcquisitionSummary()
        self._session.start_histogram(histogram.threshold_mv)
        self._session.start_waveform(waveform)
        self._session.arm_waveform_capture()

        started = threading.Event()
        self._wait_for_flows(self._spawn_flows(histogram, started, summary), started)

        if read_final_histogram:
            self._session.stop_acquisition()
            self._fetch_final_histogram(summary)
        logger.info("Combined run ended")
        return summary

    def _spawn_flows(self, config: HistogramConfig, started: threading.Event, summary: AcquisitionSummary):
        hist = _FlowResult("histogram")
        wave = _FlowResult("waveform")

        def run(result: _FlowResult, target, *args):
            try:
                target(*args)
            except BaseException as e:  # re-raised by _wait_for_flows
                result.error = e
                logger.error(f"{result.name} flow failed: {e}")
            finally:
                logger.info(f"{result.name} flow ended")
                result.done.set()

        threads = [
            threading.Thread(
                target=run, args=(hist, self._histogram_flow, config, started, summary), name="rosy-histogram"
            ),
            threading.Thread(target=run, args=(wave, self._waveform_flow, started, summary), name="rosy-waveform"),
        ]
        for t in threads:
            t.daemon = True
            t.start()
        return threads, hist, wave

    def _wait_for_flows(self, flows, started: threading.Event) -> None:
        """Join both flow threads; re-raise the first failure."""
        threads, hist, wave = flows
        first: Optional[_FlowResult] = None
        while not (hist.done.is_set() and wave.done.is_set()):
            for result in (hist, wave):
                if first is None and result.done.is_set() and result.error is not None:
                    first = result
                    self._abort_other(result, started)
            wave.done.wait(_JOIN_POLL)
        for t in threads:
            t.join()

        if first is None:
            first = next((r for r in (hist, wave) if r.error is not None), None)
        if first is not None:
            other = wave if first is hist else hist
            if other.error is not None and not isinstance(other.error, ConnectionClosed):
                logger.error(f"{other.name} flow also failed: {other.error}")
            raise first.error

    def _abort_other(self, failed: _FlowResult, started: threading.Event) -> None:
        # Stop the histogram loop at its next boundary
        started.set()
        if failed.name == "histogram":
            # The waveform flow may wait forever for a trigger; closing DATA
            # makes its read fail with ConnectionClosed
            logger.warning("Histogram flow failed, closing data connection")
            self._session.data.close()

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def _histogram_flow(self, config: HistogramConfig, started: threading.Event, summary: AcquisitionSummary) -> None:
        i = 0
        while config.iteration_count is None or i < config.iteration_count:
            # Interruption point: leave once the waveform capture has started
            if started.is_set():
                logger.info("Waveform capture started, histogram polling stopped")
                break
            if self._poll_interval and started.wait(self._poll_interval):
                logger.info("Waveform capture started, histogram polling stopped")
                break
            self._sink.on_histogram(self._session.fetch_histogram())
            summary.histograms += 1
            i += 1

    def _waveform_flow(self, started: threading.Event, summary: AcquisitionSummary) -> None:
        def on_started():
            summary.waveform_started = True
            started.set()

        for block in self._session.iter_waveform_blocks(on_started=on_started):
            self._sink.on_waveform_block(block)
            summary.waveform_blocks += 1

    def _capture_waveform(self, config: WaveformConfig, summary: AcquisitionSummary) -> None:
        self._session.start_waveform(config)
        self._session.arm_waveform_capture()
        self._waveform_flow(threading.Event(), summary)

    def _fetch_final_histogram(self, summary: AcquisitionSummary) -> None:
        self._sink.on_histogram(self._session.fetch_histogram())
        summary.histograms += 1
