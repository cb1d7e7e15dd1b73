"""Tests for sample sinks."""

import io
import re
from unittest import mock

import numpy as np

from rosyclient.sink import ConsolePreviewSink, FileSink, MultiSink, NullSink
from rosyclient.types import HistogramData, WaveformBlock


def histogram(n):
    return HistogramData(np.arange(n, dtype=np.int32) * 10)


def block(n, channel="A", index=0):
    return WaveformBlock(channel, index, np.arange(n, dtype=np.int16) - 3)


class TestFileSink:
    def test_creates_directory(self, tmp_path):
        FileSink(tmp_path / "out" / "run1")
        assert (tmp_path / "out" / "run1").is_dir()

    def test_histogram_file(self, tmp_path):
        FileSink(tmp_path).on_histogram(histogram(3))
        (path,) = tmp_path.iterdir()
        assert re.fullmatch(r"\d{14}_TL\.txt", path.name)
        assert path.read_text().splitlines() == ["0 , 0", "1 , 10", "2 , 20"]

    def test_histogram_name_collision(self, tmp_path):
        sink = FileSink(tmp_path)
        with mock.patch("rosyclient.sink.datetime") as mock_dt:
            mock_dt.now.return_value.strftime.return_value = "20260101120000"
            sink.on_histogram(histogram(1))
            sink.on_histogram(histogram(2))
            sink.on_histogram(histogram(3))
        names = sorted(p.name for p in tmp_path.iterdir())
        assert names == ["20260101120000_TL-1.txt", "20260101120000_TL-2.txt", "20260101120000_TL.txt"]

    def test_waveform_files_numbered(self, tmp_path):
        sink = FileSink(tmp_path)
        for i in range(3):
            sink.on_waveform_block(block(4, index=i))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["PM-0.txt", "PM-1.txt", "PM-2.txt"]
        assert (tmp_path / "PM-0.txt").read_text().splitlines() == ["0 , -3", "1 , -2", "2 , -1", "3 , 0"]

    def test_counter_is_per_sink(self, tmp_path):
        FileSink(tmp_path / "a").on_waveform_block(block(2))
        FileSink(tmp_path / "b").on_waveform_block(block(2))
        assert (tmp_path / "a" / "PM-0.txt").exists()
        assert (tmp_path / "b" / "PM-0.txt").exists()

    def test_empty_block(self, tmp_path):
        FileSink(tmp_path).on_waveform_block(block(0))
        assert (tmp_path / "PM-0.txt").read_text() == ""


class TestConsolePreviewSink:
    def test_histogram_preview_first_rows(self):
        out = io.StringIO()
        ConsolePreviewSink(out).on_histogram(histogram(50))
        lines = out.getvalue().splitlines()
        assert lines[0].startswith("HISTOGRAM (50 bins")
        assert lines[1] == "0 , 0"
        assert lines[2] == "1.6 , 10"
        assert lines[20] == "30.4 , 190"
        assert lines[21] == ""

    def test_short_histogram(self):
        out = io.StringIO()
        ConsolePreviewSink(out).on_histogram(histogram(2))
        assert out.getvalue().splitlines()[1:] == ["0 , 0", "1.6 , 10", ""]

    def test_waveform_edges(self):
        out = io.StringIO()
        ConsolePreviewSink(out).on_waveform_block(block(100, channel="C", index=4))
        lines = out.getvalue().splitlines()
        assert lines[0] == "DATA channel C block 4 (100 samples):"
        assert lines[1:6] == [f"{j} , {j - 3}" for j in range(5)]
        assert lines[6] == "..."
        assert lines[7:12] == [f"{j} , {j - 3}" for j in range(95, 100)]

    def test_short_waveform_prints_all(self):
        out = io.StringIO()
        ConsolePreviewSink(out).on_waveform_block(block(4))
        assert "..." not in out.getvalue()
        assert len(out.getvalue().splitlines()) == 6


class TestMultiSink:
    def test_forwards_in_order(self):
        order = []
        first, second = mock.Mock(), mock.Mock()
        first.on_histogram.side_effect = lambda d: order.append("first")
        second.on_histogram.side_effect = lambda d: order.append("second")
        data = histogram(1)
        MultiSink(first, second).on_histogram(data)
        assert order == ["first", "second"]
        second.on_histogram.assert_called_once_with(data)

    def test_forwards_blocks(self):
        target = mock.Mock()
        b = block(2)
        MultiSink(target).on_waveform_block(b)
        target.on_waveform_block.assert_called_once_with(b)


def test_null_sink_accepts_everything():
    sink = NullSink()
    sink.on_histogram(histogram(2))
    sink.on_waveform_block(block(2))
