"""Unit tests for channel histograms and automatic thresholds."""

import logging

import numpy as np
import pytest

from detection_refinery.core.errors import ThresholdNotFound
from detection_refinery.core.histogram import ChannelHistogram, find_peaks, find_threshold, zero_phase_filter
from tests.fixtures import gaussian_counts, write_histogram


class TestFindPeaks:
    """Tests for local maxima detection."""

    def test_constant_signal_has_no_peaks(self):
        assert len(find_peaks(np.ones(10), prominence=0)) == 0

    def test_plateau_peak_is_its_middle(self):
        plateau_sizes = [1, 2, 3, 4, 8, 20, 111]
        xs = [0.0]
        for size in plateau_sizes:
            xs.extend([size] * size)
            xs.append(0.0)
        assert find_peaks(xs, prominence=0).tolist() == [1, 3, 7, 11, 18, 33, 100]

    @pytest.mark.parametrize("prominence", range(11))
    def test_prominence_condition(self, prominence):
        xs = np.linspace(0, 10, 100)
        all_peaks = np.arange(1, 99, 2)
        xs[all_peaks] += np.linspace(1, 10, len(all_peaks))
        expected = all_peaks[xs[all_peaks] - xs[all_peaks + 1] >= prominence]

        assert find_peaks(xs, prominence).tolist() == expected.tolist()
        # the same peaks are found on the mirrored signal
        mirrored = (len(xs) - 1 - expected)[::-1]
        assert find_peaks(xs[::-1], prominence).tolist() == mirrored.tolist()

    def test_borders_are_not_peaks(self):
        assert find_peaks([5, 1, 2, 1, 5], prominence=0).tolist() == [2]


class TestZeroPhaseFilter:
    """Tests for forward-backward filtering."""

    @pytest.mark.parametrize("kernel", [[0, 0, 1, 0, 0], [0, 1, 0], [1]])
    def test_identity_kernel(self, kernel):
        xs = np.arange(12, dtype=float)
        np.testing.assert_array_equal(zero_phase_filter(kernel, xs), xs)

    def test_moving_average_removes_spikes(self):
        n_samples, frequency, sampling_rate = 10000, 2, 2000
        noise_level, window_size = 2, 15
        t = np.arange(n_samples) / sampling_rate
        clean = np.sin(2 * np.pi * frequency * t)
        noisy = clean.copy()
        for i in range(window_size, n_samples - window_size + 1):
            if i % (window_size // 2) == 0:
                noisy[i] += noise_level * (-1) ** i

        cleaned = zero_phase_filter(np.full(window_size, 1 / window_size), noisy)

        assert np.abs(noisy - clean).max() == noise_level
        np.testing.assert_allclose(cleaned, clean, atol=0.1)

    def test_keeps_signal_length(self):
        counts = gaussian_counts()
        assert len(zero_phase_filter(np.full(15, 1 / 15), counts)) == len(counts)


class TestChannelHistogram:
    """Tests for ChannelHistogram."""

    def test_padded_to_bit_depth(self):
        histogram = ChannelHistogram("AF568", [1, 2, 3], bit_depth=8)
        assert histogram.max_value == 256
        assert histogram.values[:4].tolist() == [1, 2, 3, 0]

    def test_unsupported_bit_depth(self):
        with pytest.raises(ValueError, match="bit depth"):
            ChannelHistogram("AF568", [1, 2, 3], bit_depth=12)

    def test_too_many_values(self):
        with pytest.raises(ValueError):
            ChannelHistogram("AF568", np.ones(300), bit_depth=8)

    def test_from_file(self, tmp_path):
        path = write_histogram(tmp_path / "AF568_level4.txt", gaussian_counts())
        histogram = ChannelHistogram.from_file(path)
        assert histogram.channel == "AF568_level4"
        assert histogram.bit_depth == 8
        assert histogram.values.tolist() == gaussian_counts().tolist()

    def test_from_file_16_bit(self, tmp_path):
        path = write_histogram(tmp_path / "hist.txt", np.ones(1000, dtype=int))
        histogram = ChannelHistogram.from_file(path, channel="AF647")
        assert histogram.channel == "AF647"
        assert histogram.bit_depth == 16
        assert histogram.values.sum() == 1000

    def test_from_file_bad_line(self, tmp_path):
        path = tmp_path / "hist.txt"
        path.write_text("10\n12\nabc\n")
        with pytest.raises(ValueError, match="hist.txt:3"):
            ChannelHistogram.from_file(path)

    def test_from_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ChannelHistogram.from_file(tmp_path / "missing.txt")

    def test_smoothed_length(self):
        histogram = ChannelHistogram("AF568", gaussian_counts(), bit_depth=8)
        assert len(histogram.smoothed(15)) == 256

    def test_even_window_warns(self, caplog):
        histogram = ChannelHistogram("AF568", gaussian_counts(), bit_depth=8)
        with caplog.at_level(logging.WARNING):
            histogram.smoothed(14)
        assert "even window" in caplog.text

    def test_find_peaks(self):
        histogram = ChannelHistogram("AF568", gaussian_counts((40, 120)), bit_depth=8)
        assert histogram.find_peaks(15, 100).tolist() == [40, 120]


class TestFindThreshold:
    """Tests for the automatic threshold."""

    @pytest.fixture
    def histogram(self):
        return ChannelHistogram("AF568", gaussian_counts((40, 120)), bit_depth=8)

    def test_second_peak(self, histogram):
        assert find_threshold(histogram, n_peak=2) == 120

    def test_first_peak(self, histogram):
        assert find_threshold(histogram, n_peak=1) == 40

    def test_not_enough_peaks(self, histogram):
        with pytest.raises(ThresholdNotFound) as exc_info:
            find_threshold(histogram, n_peak=3)
        assert exc_info.value.error_code == "E107_THRESHOLD_NOT_FOUND"
        assert exc_info.value.channel == "AF568"

    def test_peaks_at_the_borders_are_not_trusted(self):
        # the peak at 5 is closer to the border than the smoothing window
        histogram = ChannelHistogram("AF568", gaussian_counts((5, 80, 160)), bit_depth=8)
        assert histogram.find_peaks(15, 100)[0] < 15
        assert find_threshold(histogram, n_peak=1) == 80
        assert find_threshold(histogram, n_peak=2) == 160

    def test_last_peak_too_close_to_the_end(self):
        histogram = ChannelHistogram("AF568", gaussian_counts((40, 248)), bit_depth=8)
        with pytest.raises(ThresholdNotFound):
            find_threshold(histogram, n_peak=2)

    def test_no_peak(self):
        histogram = ChannelHistogram("AF568", np.zeros(256, dtype=int), bit_depth=8)
        with pytest.raises(ThresholdNotFound, match="trustworthy"):
            find_threshold(histogram)

    def test_invalid_n_peak(self, histogram):
        with pytest.raises(ValueError):
            find_threshold(histogram, n_peak=0)
