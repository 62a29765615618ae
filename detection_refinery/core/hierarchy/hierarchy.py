"""In-memory object hierarchy.

The hierarchy is the shared, mutable state that detection groups work on:
annotations own containers, containers own detections. It is passed
explicitly to every group instead of being looked up globally, so several
images (or test fixtures) can coexist in one process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Literal, Optional, Type

from ..geometry import Region
from .objects import Annotation, Detection, HierarchyObject

logger = logging.getLogger(__name__)

FULL_IMAGE_ANNOTATION_NAME = "AllDetections"


@dataclass
class HierarchyEvent:
    """Notification sent to hierarchy listeners.

    Attributes
    ----------
    source : Any
        Who changed the hierarchy
    kind : str
        "structure" when objects were added, moved or removed;
        "classification" when only labels changed
    objects : List[HierarchyObject]
        Objects involved, if known
    """

    source: Any
    kind: Literal["structure", "classification"]
    objects: List[HierarchyObject] = field(default_factory=list)


HierarchyListener = Callable[[HierarchyEvent], None]


class ObjectHierarchy:
    """Tree of annotations and detections for one image.

    Parameters
    ----------
    width : float, optional
        Image width, needed only to create a full-image annotation
    height : float, optional
        Image height, needed only to create a full-image annotation

    Example
    -------
    >>> hierarchy = ObjectHierarchy(width=100, height=100)
    >>> region = Annotation(Region.rectangle(0, 0, 50, 50), name="Cortex")
    >>> hierarchy.add_object(region)
    >>> cell = Detection(Region.rectangle(10, 10, 2, 2))
    >>> hierarchy.add_object(cell)
    >>> cell.parent is region
    True
    """

    def __init__(self, width: Optional[float] = None, height: Optional[float] = None):
        self.width = width
        self.height = height
        self.root = HierarchyObject(region=self._image_region(), name="Image")
        self._listeners: List[HierarchyListener] = []

    def _image_region(self) -> Region:
        if self.width is None or self.height is None:
            return Region.empty()
        return Region.rectangle(0, 0, self.width, self.height)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def all_objects(self) -> List[HierarchyObject]:
        return self.root.descendants()

    def annotations(self) -> List[Annotation]:
        return [o for o in self.all_objects() if o.is_annotation]

    def detections(self) -> List[Detection]:
        return [o for o in self.all_objects() if o.is_detection]

    def contains(self, obj: HierarchyObject) -> bool:
        """Whether the object is currently attached to this hierarchy."""
        node, seen = obj, set()
        while node is not None and id(node) not in seen:
            if node is self.root:
                return True
            seen.add(id(node))
            node = node.parent
        return False

    def objects_for_region(
        self,
        region: Region,
        kind: Type[HierarchyObject] = Detection,
    ) -> List[HierarchyObject]:
        """Objects of a kind lying inside a region.

        Detections are selected by centroid; annotations must be fully
        covered by the region.
        """
        if region.is_empty:
            return []
        x, y, w, h = region.bounds
        found = []
        for obj in self.all_objects():
            if not isinstance(obj, kind):
                continue
            if obj.is_detection:
                cx, cy = obj.centroid
                if not (x <= cx <= x + w and y <= cy <= y + h):
                    continue
                if region.contains_point(cx, cy):
                    found.append(obj)
            elif region.covers(obj.region):
                found.append(obj)
        return found

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_object_below_parent(
        self,
        parent: Optional[HierarchyObject],
        obj: HierarchyObject,
        fire: bool = True,
    ) -> None:
        """Attach an object under a parent, moving it if it already had one."""
        parent = parent if parent is not None else self.root
        if obj is parent:
            raise ValueError(f"Cannot add {obj} below itself")
        if obj.parent is not None:
            obj.parent.children.remove(obj)
        parent.children.append(obj)
        obj.parent = parent
        if fire:
            self.fire_hierarchy_changed(self, [obj])

    def add_object(self, obj: HierarchyObject, fire: bool = True) -> None:
        """Attach an object below the smallest annotation enclosing it."""
        self.add_object_below_parent(self._resolve_parent(obj), obj, fire=fire)

    def add_objects(self, objects: Iterable[HierarchyObject]) -> None:
        objects = list(objects)
        for obj in objects:
            self.add_object(obj, fire=False)
        self.fire_hierarchy_changed(self, objects)

    def _resolve_parent(self, obj: HierarchyObject) -> HierarchyObject:
        excluded = {id(obj)} | {id(o) for o in obj.descendants()}
        best = None
        for annotation in self.annotations():
            if id(annotation) in excluded or annotation.region.is_empty:
                continue
            if obj.is_detection:
                inside = annotation.region.contains_point(*obj.centroid)
            else:
                inside = annotation.region.covers(obj.region)
            if inside and (best is None or annotation.region.area < best.region.area):
                best = annotation
        return best if best is not None else self.root

    def remove_object(self, obj: HierarchyObject, keep_children: bool = False, fire: bool = True) -> None:
        """Detach an object; its children follow it unless keep_children is set."""
        parent = obj.parent
        if parent is None:
            return
        parent.children.remove(obj)
        obj.parent = None
        if keep_children:
            for child in list(obj.children):
                child.parent = parent
                parent.children.append(child)
            obj.children.clear()
        if fire:
            self.fire_hierarchy_changed(self, [obj])

    def remove_objects(
        self,
        objects: Iterable[HierarchyObject],
        keep_children: bool = False,
        fire: bool = True,
    ) -> None:
        objects = list(objects)
        for obj in objects:
            self.remove_object(obj, keep_children=keep_children, fire=False)
        if fire and objects:
            self.fire_hierarchy_changed(self, objects)

    def full_image_annotation(self, name: str = FULL_IMAGE_ANNOTATION_NAME) -> Annotation:
        """Return the annotation with the given name, creating one over the whole image.

        Raises
        ------
        ValueError
            If several annotations share the name, or the image size is unknown
        """
        matches = [a for a in self.annotations() if a.name == name]
        if len(matches) > 1:
            raise ValueError(f"There are multiple annotations called '{name}'. Delete them!")
        if matches:
            return matches[0]
        if self.width is None or self.height is None:
            raise ValueError("Image size is unknown: cannot create a full-image annotation")
        annotation = Annotation(region=self._image_region(), name=name, locked=True)
        self.add_object_below_parent(self.root, annotation)
        logger.info(f"Created full-image annotation '{name}'")
        return annotation

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: HierarchyListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: HierarchyListener) -> None:
        self._listeners.remove(listener)

    def fire_hierarchy_changed(self, source: Any, objects: Optional[List[HierarchyObject]] = None) -> None:
        self._notify(HierarchyEvent(source=source, kind="structure", objects=list(objects or [])))

    def fire_classifications_changed(self, source: Any, objects: Iterable[HierarchyObject]) -> None:
        self._notify(HierarchyEvent(source=source, kind="classification", objects=list(objects)))

    def _notify(self, event: HierarchyEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def __len__(self) -> int:
        return len(self.all_objects())

    def __repr__(self) -> str:
        return f"ObjectHierarchy({len(self.annotations())} annotations, {len(self.detections())} detections)"
