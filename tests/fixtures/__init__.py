"""Test fixtures for Detection-Refinery.

Provides mock hierarchy builders, stub cell detectors and synthetic
channel histograms.
"""

from .histograms import gaussian_counts, write_histogram
from .mock_hierarchy import (
    InterruptingDetector,
    StubDetector,
    add_annotation,
    add_container,
    create_channel_hierarchy,
    create_grid_regions,
    make_cell,
)

__all__ = [
    "InterruptingDetector",
    "StubDetector",
    "add_annotation",
    "add_container",
    "create_channel_hierarchy",
    "create_grid_regions",
    "gaussian_counts",
    "make_cell",
    "write_histogram",
]
