"""Groups of detections kept inside named container annotations.

A detection group finds its containers by name, indexes the detections
they own and keeps both consistent while containers are added, recomputed,
shrunk or merged. Newer containers never overlap older ones: whatever part
of a new container falls inside an old one is handed over to the old
container, and the stale detections found there are replaced by the new
ones.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, List, Optional, Sequence

from ..errors import IncompatibleClassifier, IncompatibleDetections, NoContainersFound
from ..geometry import Region
from ..hierarchy import Annotation, Detection, HierarchyObject, ObjectHierarchy
from ..spatial_index import DEFAULT_MAX_DEPTH, SpatialIndex
from .classifiers import (
    ClassificationOutcome,
    ObjectClassifier,
    PartialClassifier,
    SingleClassifier,
    drop_overridden_classifiers,
)

logger = logging.getLogger(__name__)

DISCARDED_PREFIX = "Other"


def discarded_class_for(group_id: str) -> str:
    """Classification given to detections a classifier rejected."""
    return f"{DISCARDED_PREFIX}: {group_id}"


def _is_derived_container(obj: HierarchyObject, parent: Annotation, classification: str, name: str) -> bool:
    return (
        obj.is_annotation
        and obj.classification == classification
        and obj.name == name
        and obj.region == parent.region
    )


def create_container(
    hierarchy: ObjectHierarchy,
    parent: Annotation,
    name: str,
    classification: str,
    overwrite: bool = False,
) -> Annotation:
    """Create a locked duplicate of an annotation, as its child, to hold detections.

    Parameters
    ----------
    hierarchy : ObjectHierarchy
        Hierarchy the parent belongs to
    parent : Annotation
        Annotation whose shape the container copies
    name : str
        Container name, the one detection groups search for
    classification : str
        Container classification
    overwrite : bool
        If True and the parent already has a container derived from it,
        that container is emptied and returned instead of creating a new one

    Returns
    -------
    Annotation
        The container, child of ``parent``
    """
    if overwrite:
        for child in parent.children:
            if _is_derived_container(child, parent, classification, name):
                hierarchy.remove_objects(list(child.children), fire=False)
                logger.debug(f"Reusing container '{name}' below {parent}")
                return child
    container = parent.duplicate()
    container.name = name
    container.classification = classification
    hierarchy.add_object_below_parent(parent, container)
    container.locked = True
    return container


class DetectionGroup(ABC):
    """Detections of one kind, grouped in container annotations.

    Subclasses define the naming convention of their containers.

    Parameters
    ----------
    group_id : str
        Identifier of the group; also the containers' classification
    detection_classes : Iterable[str]
        Classifications identifying the group's detections
    hierarchy : ObjectHierarchy
        Where containers and detections live
    max_depth : int
        Maximum depth of the spatial index (default: 6)

    Raises
    ------
    NoContainersFound
        If the hierarchy has no container for this group
    """

    def __init__(
        self,
        group_id: str,
        detection_classes: Iterable[str],
        hierarchy: ObjectHierarchy,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self._id = group_id
        self._hierarchy = hierarchy
        self._detection_classes = list(detection_classes)
        self.max_depth = max_depth
        self._containers: List[Annotation] = []
        self._index: SpatialIndex[Detection] = SpatialIndex([], max_depth)
        self.refresh()

    # ------------------------------------------------------------------
    # Identity and labels
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def containers_name(self) -> str:
        """Name shared by all containers of this kind of detections."""

    @property
    def id(self) -> str:
        return self._id

    @property
    def hierarchy(self) -> ObjectHierarchy:
        return self._hierarchy

    @property
    def containers(self) -> List[Annotation]:
        return list(self._containers)

    @property
    def index(self) -> SpatialIndex[Detection]:
        return self._index

    @property
    def container_class(self) -> str:
        return self._id

    @property
    def detection_classes(self) -> List[str]:
        return list(self._detection_classes)

    @property
    def discarded_class(self) -> str:
        return discarded_class_for(self._id)

    def is_container(self, obj: HierarchyObject) -> bool:
        return obj.is_annotation and obj.name == self.containers_name

    def _has_detection_class(self, obj: HierarchyObject, include_discarded: bool) -> bool:
        return obj.classification in self._detection_classes or (
            include_discarded and obj.classification == self.discarded_class
        )

    def is_channel_detection(self, obj: HierarchyObject, include_discarded: bool = False) -> bool:
        """Whether an object is a detection of this group.

        Parameters
        ----------
        obj : HierarchyObject
            Object to test
        include_discarded : bool
            Also accept detections a classifier discarded
        """
        return obj.is_detection and self._has_detection_class(obj, include_discarded)

    def search_containers(self) -> List[Annotation]:
        return [a for a in self._hierarchy.annotations() if self.is_container(a)]

    def create_container(self, parent: Annotation, overwrite: bool = False) -> Annotation:
        return create_container(self._hierarchy, parent, self.containers_name, self.container_class, overwrite)

    def _containers_detections(self, containers: Sequence[Annotation], include_discarded: bool) -> List[Detection]:
        if not containers:
            raise NoContainersFound(self.containers_name, type(self).__name__)
        return [
            child
            for container in containers
            for child in container.detection_children()
            if self._has_detection_class(child, include_discarded)
        ]

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """Bring the group up to date with the hierarchy.

        Containers that appeared since the last refresh are reconciled
        against the known ones they overlap, empty containers are removed,
        and the spatial index is rebuilt. Call it whenever containers or
        detections were changed from outside the group.

        Raises
        ------
        NoContainersFound
            If no container is left. The group keeps its previous
            containers and index, but the hierarchy changes already made
            (reconciled regions, removed empty containers) are not undone.
        """
        all_containers = self.search_containers()
        known_ids = {id(c) for c in self._containers}
        known = [c for c in all_containers if id(c) in known_ids]
        new = [c for c in all_containers if id(c) not in known_ids]

        for old_container in known:
            for new_container in new:
                if old_container.region.intersects(new_container.region):
                    self.reconcile_pair(old_container, new_container)

        containers = self._remove_empty_containers(all_containers)
        detections = self._containers_detections(containers, include_discarded=False)
        index = SpatialIndex(detections, self.max_depth)

        self._containers = containers
        self._index = index
        logger.debug(
            f"{self}: {len(containers)} containers ({len(new)} new), "
            f"{len(detections)} detections indexed"
        )

    def reconcile_pair(self, old_container: Annotation, new_container: Annotation) -> None:
        """Resolve the overlap between a known container and a new one.

        The new container's detections lying inside the old container are
        moved under it, the stale detections of the overlap are deleted and
        the new container is shrunk to the part outside the old one.
        """
        overlap = old_container.region.intersection(new_container.region)
        new_detections = new_container.detection_children()
        removed = self._remove_stale_detections(overlap, new_detections)
        moved = self._adopt_detections(old_container, new_detections)
        new_container.region = new_container.region.difference(old_container.region)
        logger.debug(
            f"Reconciled {new_container} with {old_container}: "
            f"{removed} stale detections removed, {moved} detections moved"
        )

    def _remove_stale_detections(self, area: Region, new_detections: Sequence[Detection]) -> int:
        replacing = {id(d) for d in new_detections}
        stale = [
            d
            for d in self._hierarchy.objects_for_region(area, Detection)
            if self.is_channel_detection(d, include_discarded=True) and id(d) not in replacing
        ]
        self._hierarchy.remove_objects(stale, fire=False)
        return len(stale)

    def _adopt_detections(self, container: Annotation, new_detections: Sequence[Detection]) -> int:
        moved = 0
        for detection in new_detections:
            if container.region.contains_point(*detection.centroid):
                self._hierarchy.add_object_below_parent(container, detection, fire=False)
                moved += 1
        return moved

    def _remove_empty_containers(self, containers: Sequence[Annotation]) -> List[Annotation]:
        kept = []
        for container in containers:
            if container.region.is_empty or not container.children:
                logger.info(f"Removing empty container {container}")
                self._hierarchy.remove_object(container, fire=False)
            else:
                kept.append(container)
        self._hierarchy.fire_hierarchy_changed(self)
        return kept

    def merge(self, other: "DetectionGroup") -> None:
        """Absorb the detections of a compatible group.

        Detections of ``other`` falling inside one of this group's containers
        are moved there; stale detections inside containers only ``other``
        knows are deleted; containers of ``other`` left without children are
        removed, the others are shrunk to the part outside this group's
        containers and adopted by both groups. Both groups are then
        refreshed and become equal.

        Raises
        ------
        IncompatibleDetections
            If the groups differ in id, containers, hierarchy or classes
        """
        if not self.is_compatible_with(other):
            raise IncompatibleDetections(self, other)
        if self is other or self == other:
            return

        known_ids = {id(c) for c in self._containers}
        for container in other._containers:
            if id(container) in known_ids:
                continue
            stale = [
                d
                for d in self._hierarchy.objects_for_region(container.region, Detection)
                if self.is_channel_detection(d) and d not in other._index
            ]
            self._hierarchy.remove_objects(stale, fire=False)

        incoming = list(other._index)
        for container in self._containers:
            self._adopt_detections(container, incoming)

        surviving = []
        for container in other._containers:
            if id(container) in known_ids:
                continue
            if not container.children:
                self._hierarchy.remove_object(container, fire=False)
                continue
            for own in self._containers:
                if own.region.intersects(container.region):
                    container.region = container.region.difference(own.region)
            surviving.append(container)
        self._hierarchy.fire_hierarchy_changed(self)

        # surviving containers are already disjoint from ours: refresh must not reconcile them again
        merged = self._containers + surviving
        self._containers = list(merged)
        other._containers = list(merged)
        self.refresh()
        other.refresh()

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def is_compatible_classifier(self, classifier: ObjectClassifier) -> bool:
        outputs = set(classifier.classes)
        if isinstance(classifier, SingleClassifier):
            return len(outputs) == 1 and classifier.label in self._detection_classes
        if len(outputs) != 2:
            return False
        return set(self._detection_classes) <= outputs and self.discarded_class in outputs

    def apply_classifiers(self, classifiers: Iterable[PartialClassifier]) -> ClassificationOutcome:
        """Apply classifiers in sequence to the group's detections.

        Where two steps cover the same detections, the later one wins. Steps
        before the last whole-image classifier are dropped since it would
        overwrite them. An incompatible classifier stops the sequence: the
        steps already applied are kept and the index reflects them.

        Parameters
        ----------
        classifiers : Iterable[PartialClassifier]
            Classifiers paired with the annotations they apply to

        Returns
        -------
        ClassificationOutcome
            Detections accepted, steps applied and skipped, and the error if any
        """
        requested = list(classifiers)
        sequence = drop_overridden_classifiers(requested)
        outcome = ClassificationOutcome(skipped=requested[: len(requested) - len(sequence)])

        accumulated: List[Detection] = []
        for position, step in enumerate(sequence):
            try:
                accumulated.extend(self._classify_inside(step))
            except IncompatibleClassifier as e:
                logger.warning("Skipping %s...\n\t%s", step.classifier, str(e).replace("\n", "\n\t"))
                outcome.error = e
                outcome.skipped.extend(sequence[position:])
                break
            outcome.applied.append(step)

        if not outcome.applied:
            return outcome

        seen = set()
        accepted = []
        for detection in accumulated:
            if id(detection) in seen or not self._has_detection_class(detection, False):
                continue
            seen.add(id(detection))
            accepted.append(detection)
        self._index = SpatialIndex(accepted, self.max_depth)
        outcome.detections = accepted
        logger.info(f"{self}: {len(accepted)} detections accepted by {len(outcome.applied)} classifiers")
        return outcome

    def _classify_inside(self, step: PartialClassifier) -> List[Detection]:
        classifier = step.classifier
        if not self.is_compatible_classifier(classifier):
            raise IncompatibleClassifier(classifier.classes, self._detection_classes, self.discarded_class)

        if step.covers_full_image:
            # every detection, even previously discarded ones
            cells = self._containers_detections(self._containers, include_discarded=True)
        else:
            container_ids = {id(c) for c in self._containers}
            cells, seen = [], set()
            for annotation in step.annotations:
                for d in self._hierarchy.objects_for_region(annotation.region, Detection):
                    if id(d) in seen or id(d.parent) not in container_ids:
                        continue
                    if self._has_detection_class(d, include_discarded=True):
                        seen.add(id(d))
                        cells.append(d)

        if classifier.classify_objects(cells, reset_existing=True) > 0:
            self._hierarchy.fire_classifications_changed(classifier, cells)
        return [d for d in cells if self._has_detection_class(d, include_discarded=False)]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def overlap_query(self, obj: HierarchyObject) -> Optional[Detection]:
        """Detection of this group whose centroid lies inside the object, if any.

        See SpatialIndex.overlapping.
        """
        return self._index.overlapping(obj)

    def is_empty(self) -> bool:
        """Whether the group currently holds no detections."""
        if not self._containers:
            return True
        return not self._containers_detections(self._containers, include_discarded=False)

    def is_compatible_with(self, other: Optional["DetectionGroup"]) -> bool:
        """Same id, container naming, hierarchy and detection classes."""
        return (
            isinstance(other, DetectionGroup)
            and self._id == other._id
            and self.containers_name == other.containers_name
            and self._hierarchy is other._hierarchy
            and set(self._detection_classes) == set(other._detection_classes)
        )

    def __eq__(self, other: object) -> bool:
        if other is None or type(self) is not type(other):
            return False
        return self.is_compatible_with(other) and {id(c) for c in self._containers} == {
            id(c) for c in other._containers
        }

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._id, self.containers_name, id(self._hierarchy)))

    def __iter__(self) -> Iterator[Detection]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self._id}', containers='{self.containers_name}')"
