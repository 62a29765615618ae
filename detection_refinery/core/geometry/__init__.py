"""Geometry adapter used by the hierarchy, the spatial index and the detections.

    >>> from detection_refinery.core.geometry import Region
    >>> square = Region.rectangle(0, 0, 10, 10)
    >>> square.contains_point(*Region.rectangle(2, 2, 1, 1).centroid)
    True
"""

from .region import Bounds, Coordinate, Region

__all__ = [
    "Bounds",
    "Coordinate",
    "Region",
]
