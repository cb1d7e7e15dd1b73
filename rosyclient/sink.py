"""
Sample sinks - where parsed histograms and waveform blocks go.

The acquisition code hands every block to a sink as soon as it has been read
and keeps no reference afterwards.
"""

import logging
import sys
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

import numpy as np

from rosyclient.types import HISTOGRAM_BIN_WIDTH_NS, HistogramData, WaveformBlock

logger = logging.getLogger(__name__)

HISTOGRAM_PREVIEW_ROWS = 20
WAVEFORM_PREVIEW_EDGE = 5


class SampleSink(ABC):
    """Receiver of acquisition data."""

    @abstractmethod
    def on_histogram(self, data: HistogramData) -> None: ...

    @abstractmethod
    def on_waveform_block(self, block: WaveformBlock) -> None: ...


class NullSink(SampleSink):
    def on_histogram(self, data: HistogramData) -> None:
        pass

    def on_waveform_block(self, block: WaveformBlock) -> None:
        pass


class MultiSink(SampleSink):
    """Forward everything to several sinks, in order."""

    def __init__(self, *sinks: SampleSink):
        self.sinks = list(sinks)

    def on_histogram(self, data: HistogramData) -> None:
        for sink in self.sinks:
            sink.on_histogram(data)

    def on_waveform_block(self, block: WaveformBlock) -> None:
        for sink in self.sinks:
            sink.on_waveform_block(block)


class ConsolePreviewSink(SampleSink):
    """Print the head of each histogram and the edges of each waveform block."""

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream

    def _print(self, text: str = "") -> None:
        print(text, file=self._stream or sys.stdout)

    def on_histogram(self, data: HistogramData) -> None:
        self._print(f"HISTOGRAM ({data.bin_count} bins, {data.duration_ns:.1f} ns):")
        for j in range(min(HISTOGRAM_PREVIEW_ROWS, data.bin_count)):
            self._print(f"{j * HISTOGRAM_BIN_WIDTH_NS:g} , {data.bins[j]}")
        self._print()

    def on_waveform_block(self, block: WaveformBlock) -> None:
        n = len(block)
        self._print(f"DATA channel {block.channel} block {block.index} ({n} samples):")
        if n <= 2 * WAVEFORM_PREVIEW_EDGE:
            for j in range(n):
                self._print(f"{j} , {block.samples[j]}")
        else:
            for j in range(WAVEFORM_PREVIEW_EDGE):
                self._print(f"{j} , {block.samples[j]}")
            self._print("...")
            for j in range(n - WAVEFORM_PREVIEW_EDGE, n):
                self._print(f"{j} , {block.samples[j]}")
        self._print()


class FileSink(SampleSink):
    """
    Write each histogram and waveform block to its own text file.

    Histograms:      <UTC YYYYmmddHHMMSS>_TL.txt (a -N suffix avoids overwrites)
    Waveform blocks: PM-<n>.txt, n counting from 0 per sink

    Each line is "index , value".
    """

    def __init__(self, directory="."):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._waveform_counter = 0

    def on_histogram(self, data: HistogramData) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        path = self._unique(f"{stamp}_TL", ".txt")
        _write_listing(path, data.bins)
        logger.debug(f"Histogram saved to {path}")

    def on_waveform_block(self, block: WaveformBlock) -> None:
        path = self.directory / f"PM-{self._waveform_counter}.txt"
        self._waveform_counter += 1
        _write_listing(path, block.samples)
        logger.debug(f"Waveform block {block.channel}/{block.index} saved to {path}")

    def _unique(self, stem: str, suffix: str) -> Path:
        path = self.directory / f"{stem}{suffix}"
        n = 1
        while path.exists():
            path = self.directory / f"{stem}-{n}{suffix}"
            n += 1
        return path


def _write_listing(path: Path, values: np.ndarray) -> None:
    rows = np.column_stack((np.arange(len(values), dtype=np.int64), values.astype(np.int64)))
    np.savetxt(path, rows, fmt="%d , %d")
