"""Host object hierarchy: annotations, detections and the tree holding them.

    >>> from detection_refinery.core.hierarchy import ObjectHierarchy, Annotation
    >>> from detection_refinery.core.geometry import Region
    >>> hierarchy = ObjectHierarchy(width=1000, height=1000)
    >>> hierarchy.add_object(Annotation(Region.rectangle(0, 0, 500, 500), name="Cortex"))
"""

from .objects import Annotation, Detection, HierarchyObject
from .hierarchy import (
    FULL_IMAGE_ANNOTATION_NAME,
    HierarchyEvent,
    HierarchyListener,
    ObjectHierarchy,
)

__all__ = [
    "Annotation",
    "Detection",
    "HierarchyObject",
    "FULL_IMAGE_ANNOTATION_NAME",
    "HierarchyEvent",
    "HierarchyListener",
    "ObjectHierarchy",
]
