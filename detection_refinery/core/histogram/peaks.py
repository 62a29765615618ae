"""Automatic detection thresholds from channel histograms.

A fluorescence channel histogram usually shows a background peak followed
by one or more signal peaks. The histogram is smoothed with a zero-phase
moving average, its prominent peaks are found and the n-th peak lying away
from the histogram borders becomes the cell detection threshold.

Example
-------
>>> histogram = ChannelHistogram.from_file("AF568_level4.txt", channel="AF568")
>>> histogram.find_peaks(window_size=15, prominence=100)
array([ 31, 118])
>>> find_threshold(histogram, n_peak=2)
118
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
from scipy.signal import find_peaks as _find_peaks

from ..errors import ThresholdNotFound

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 15
DEFAULT_PROMINENCE = 100.0
BIT_DEPTHS = (8, 16)


def _convolve(kernel: np.ndarray, signal: np.ndarray) -> np.ndarray:
    full = np.convolve(signal, kernel, mode="full")
    start = len(kernel) // 2
    return full[start:start + len(signal)]


def zero_phase_filter(kernel: Sequence[float], xs: Sequence[float]) -> np.ndarray:
    """Apply a linear filter forward, then backward.

    The combined filter has zero phase and twice the order of ``kernel``.
    The signal is padded with zeros, so the output has the length of ``xs``.

    Parameters
    ----------
    kernel : Sequence[float]
        Filter coefficients
    xs : Sequence[float]
        Signal to filter

    Returns
    -------
    np.ndarray
        Filtered signal
    """
    kernel = np.asarray(kernel, dtype=float)
    xs = np.asarray(xs, dtype=float)
    forward = _convolve(kernel, xs)
    return _convolve(kernel, forward[::-1])[::-1]


def find_peaks(x: Sequence[float], prominence: float) -> np.ndarray:
    """Positions of the local maxima standing at least ``prominence`` above the nearby data.

    A plateau counts as one maximum, placed at its middle (rounded down).
    The first and last samples are never peaks.
    """
    peaks, _ = _find_peaks(np.asarray(x, dtype=float), prominence=prominence)
    return peaks


class ChannelHistogram:
    """Pixel intensity histogram of one image channel.

    Parameters
    ----------
    channel : str
        Channel name
    counts : Sequence[int]
        Number of pixels per intensity value, starting from 0. Shorter
        histograms are padded with zeros up to the bit depth.
    bit_depth : int
        8 or 16

    Raises
    ------
    ValueError
        If the bit depth is not supported or the counts do not fit in it
    """

    def __init__(self, channel: str, counts: Sequence[int], bit_depth: int = 16):
        if bit_depth not in BIT_DEPTHS:
            raise ValueError(f"Unsupported bit depth {bit_depth}: expected one of {BIT_DEPTHS}")
        counts = np.asarray(counts, dtype=np.int64)
        size = 2 ** bit_depth
        if counts.ndim != 1 or len(counts) > size:
            raise ValueError(f"A {bit_depth}-bit histogram has at most {size} values, got {counts.shape}")
        self.channel = channel
        self.bit_depth = bit_depth
        self.values = np.zeros(size, dtype=np.int64)
        self.values[:len(counts)] = counts

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        channel: Optional[str] = None,
        bit_depth: Optional[int] = None,
    ) -> "ChannelHistogram":
        """Read a histogram written as one count per line.

        The bit depth defaults to the smallest one holding every value.

        Raises
        ------
        FileNotFoundError
            If the file does not exist
        ValueError
            If a line is not an integer
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Histogram file not found: {path}")
        counts = []
        with open(path) as f:
            for number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    counts.append(int(line))
                except ValueError as e:
                    raise ValueError(f"{path}:{number}: '{line}' is not a pixel count") from e
        if bit_depth is None:
            bit_depth = 8 if len(counts) <= 2 ** 8 else 16
        return cls(channel or path.stem, counts, bit_depth)

    @property
    def max_value(self) -> int:
        return len(self.values)

    def smoothed(self, window_size: int = DEFAULT_WINDOW_SIZE) -> np.ndarray:
        if window_size % 2 == 0:
            logger.warning(f"Smoothing '{self.channel}' histogram with an even window ({window_size}): choose an odd size")
        moving_average = np.full(window_size, 1.0 / window_size)
        return zero_phase_filter(moving_average, self.values)

    def find_peaks(
        self,
        window_size: int = DEFAULT_WINDOW_SIZE,
        prominence: float = DEFAULT_PROMINENCE,
    ) -> np.ndarray:
        """Intensity values appearing the most, after smoothing."""
        return find_peaks(self.smoothed(window_size), prominence)

    def __repr__(self) -> str:
        return f"ChannelHistogram('{self.channel}', {self.bit_depth}-bit, {int(self.values.sum())} pixels)"


def find_threshold(
    histogram: ChannelHistogram,
    n_peak: int = 1,
    window_size: int = DEFAULT_WINDOW_SIZE,
    prominence: float = DEFAULT_PROMINENCE,
) -> int:
    """Intensity of the n-th histogram peak, counted from the first trustworthy one.

    Peaks closer than ``window_size`` to either end of the histogram come
    from the zero padding of the smoothing and are not trusted.

    Parameters
    ----------
    histogram : ChannelHistogram
        Channel histogram
    n_peak : int
        Which peak to use, starting from 1
    window_size : int
        Width of the moving average smoothing the histogram
    prominence : float
        Minimum prominence of a peak

    Returns
    -------
    int
        Detection threshold

    Raises
    ------
    ThresholdNotFound
        If there are not enough trustworthy peaks
    """
    if n_peak < 1:
        raise ValueError(f"n_peak starts from 1, got {n_peak}")
    peaks = histogram.find_peaks(window_size, prominence)
    logger.debug(f"'{histogram.channel}' histogram peaks (untrusted included): {peaks.tolist()}")

    upper = histogram.max_value - window_size
    trusted = np.flatnonzero((peaks >= window_size) & (peaks < upper))
    if len(trusted) == 0:
        raise ThresholdNotFound(histogram.channel, "no peak was found within the trustworthy interval", peaks)
    nth = int(trusted[0]) + n_peak - 1
    if nth >= len(peaks):
        raise ThresholdNotFound(histogram.channel, f"the histogram has fewer than {n_peak} peaks", peaks)
    if peaks[nth] >= upper:
        raise ThresholdNotFound(histogram.channel, f"there are fewer than {n_peak} trustworthy peaks", peaks)

    threshold = int(peaks[nth])
    logger.info(f"'{histogram.channel}' automatic threshold: {threshold}")
    return threshold
