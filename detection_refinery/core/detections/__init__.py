"""Detection groups: channel detections, overlaps and their classification.

Example Usage
-------------
Group pre-computed detections and classify them:

    >>> from detection_refinery.core.detections import ChannelDetections, PartialClassifier, SingleClassifier
    >>> af568 = ChannelDetections("AF568", hierarchy)
    >>> outcome = af568.apply_classifiers([PartialClassifier(SingleClassifier("AF568"))])

Find double positive cells:

    >>> from detection_refinery.core.detections import OverlappingDetections
    >>> overlaps = OverlappingDetections(af568, [af647], hierarchy, compute=True)
"""

from .classifiers import (
    ClassificationOutcome,
    ObjectClassifier,
    PartialClassifier,
    SingleClassifier,
    ThresholdClassifier,
    drop_overridden_classifiers,
)
from .group import DetectionGroup, create_container, discarded_class_for
from .channel import CellDetector, ChannelDetections, cells_container_name
from .candidates import CandidateCellDetector
from .overlap import (
    OVERLAP_DELIMITER,
    OverlappingDetections,
    create_all_overlapping_class_names,
    overlaps_container_name,
)
from .export import count_detections, export_counts, summarize_groups

__all__ = [
    # Classifiers
    "ClassificationOutcome",
    "ObjectClassifier",
    "PartialClassifier",
    "SingleClassifier",
    "ThresholdClassifier",
    "drop_overridden_classifiers",
    # Groups
    "DetectionGroup",
    "create_container",
    "discarded_class_for",
    "CandidateCellDetector",
    "CellDetector",
    "ChannelDetections",
    "cells_container_name",
    "OVERLAP_DELIMITER",
    "OverlappingDetections",
    "create_all_overlapping_class_names",
    "overlaps_container_name",
    # Export
    "count_detections",
    "export_counts",
    "summarize_groups",
]
