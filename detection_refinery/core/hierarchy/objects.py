"""Objects stored in an ObjectHierarchy.

Annotations are user-drawn (or duplicated) regions that may own other
objects; detections are the cells found inside them. Objects compare by
identity: two detections with the same shape are still two cells.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..geometry import Coordinate, Region


@dataclass(eq=False)
class HierarchyObject:
    """Base class for anything that can live in an ObjectHierarchy.

    Attributes
    ----------
    region : Region
        Shape of the object
    name : str, optional
        Free-text name; containers are recognised by it
    classification : str, optional
        Classification label (e.g. "AF568" or "Other: AF568")
    locked : bool
        Whether the object should be protected from manual edits
    measurements : Dict[str, float]
        Numeric features, used by measurement-based classifiers
    """

    region: Region
    name: Optional[str] = None
    classification: Optional[str] = None
    locked: bool = False
    measurements: Dict[str, float] = field(default_factory=dict)
    parent: Optional["HierarchyObject"] = field(default=None, repr=False)
    children: List["HierarchyObject"] = field(default_factory=list, repr=False)

    object_type = "object"

    @property
    def is_detection(self) -> bool:
        return False

    @property
    def is_annotation(self) -> bool:
        return False

    @property
    def centroid(self) -> Coordinate:
        return self.region.centroid

    def detection_children(self) -> List["Detection"]:
        """Direct children that are detections, in insertion order."""
        return [child for child in self.children if child.is_detection]

    def descendants(self) -> List["HierarchyObject"]:
        """All objects below this one, depth-first."""
        found = []
        for child in self.children:
            found.append(child)
            found.extend(child.descendants())
        return found

    def __repr__(self) -> str:
        label = f" '{self.name}'" if self.name else ""
        cls = f" [{self.classification}]" if self.classification else ""
        x, y, w, h = self.region.bounds
        return f"{type(self).__name__}{label}{cls} ({x:g}, {y:g}, {w:g}, {h:g})"


@dataclass(eq=False, repr=False)
class Annotation(HierarchyObject):
    """A region that can own detections and other annotations."""

    object_type = "annotation"

    @property
    def is_annotation(self) -> bool:
        return True

    def duplicate(self) -> "Annotation":
        """Copy of this annotation without children and parent."""
        return Annotation(
            region=self.region,
            name=self.name,
            classification=self.classification,
            locked=self.locked,
            measurements=dict(self.measurements),
        )


@dataclass(eq=False, repr=False)
class Detection(HierarchyObject):
    """A detected object, typically one cell."""

    object_type = "detection"

    @property
    def is_detection(self) -> bool:
        return True

    def copy(self, classification: Optional[str] = None) -> "Detection":
        """Copy of this detection's shape and measurements, optionally relabelled."""
        return Detection(
            region=self.region,
            classification=classification if classification is not None else self.classification,
            measurements=dict(self.measurements),
        )
