"""Detection-Refinery: cell detection bookkeeping for annotated images.

This package provides tools for:
- Grouping cell detections inside named container annotations
- Reconciling overlapping containers when detections are recomputed
- Classifying detections with sequences of region-scoped classifiers
- Finding double/multiple positive cells across channels
- Counting detections per annotation

Example usage:
    >>> from detection_refinery.io import read_geojson
    >>> from detection_refinery.core.detections import ChannelDetections
    >>>
    >>> hierarchy = read_geojson("objects.geojson")
    >>> af568 = ChannelDetections("AF568", hierarchy)
    >>> len(af568)
"""

__version__ = "0.1.0"
