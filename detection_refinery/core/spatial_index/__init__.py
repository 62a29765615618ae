"""Spatial index for centroid-in-shape look-ups.

Example Usage
-------------
    >>> from detection_refinery.core.spatial_index import SpatialIndex
    >>> index = SpatialIndex(detections, max_depth=6)
    >>> index.overlapping(other_cell)     # closest detection inside other_cell, or None
    >>> list(index)                       # every stored detection
"""

from .bvh import (
    DEFAULT_MAX_DEPTH,
    EMPTY,
    Internal,
    Leaf,
    Node,
    SpatialIndex,
    node_depth,
)

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "EMPTY",
    "Internal",
    "Leaf",
    "Node",
    "SpatialIndex",
    "node_depth",
]
