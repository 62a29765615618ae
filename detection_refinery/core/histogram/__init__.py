"""Channel histograms and automatic detection thresholds."""

from .peaks import (
    DEFAULT_PROMINENCE,
    DEFAULT_WINDOW_SIZE,
    ChannelHistogram,
    find_peaks,
    find_threshold,
    zero_phase_filter,
)

__all__ = [
    "DEFAULT_PROMINENCE",
    "DEFAULT_WINDOW_SIZE",
    "ChannelHistogram",
    "find_peaks",
    "find_threshold",
    "zero_phase_filter",
]
