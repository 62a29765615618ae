"""Double, triple and multiple positive detections.

A control detection is positive for another group when that group's
``overlap_query`` finds one of its detections with the centroid inside it.
Each positive control detection is copied, labelled with the ids of all the
groups it overlaps (``"AF568~AF647~CFP"``), and stored in an overlap
container created beside the control container.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from ..hierarchy import Annotation, Detection, ObjectHierarchy
from ..spatial_index import DEFAULT_MAX_DEPTH
from .group import DetectionGroup, create_container

logger = logging.getLogger(__name__)

OVERLAP_DELIMITER = "~"


def overlaps_container_name(control_id: str) -> str:
    return f"{control_id} overlaps"


def create_all_overlapping_class_names(classes: Sequence[str]) -> List[str]:
    """All the combinations of the given class names, joined by "~".

    The order follows the input: ``["A", "B"]`` gives ``["A", "B", "A~B"]``.

    Examples
    --------
    >>> create_all_overlapping_class_names(["A", "B", "C"])
    ['A', 'B', 'C', 'B~C', 'A~B', 'A~C', 'A~B~C']
    """
    if not classes:
        return []
    first, others = classes[0], list(classes[1:])
    rest = create_all_overlapping_class_names(others)
    return [first] + rest + [f"{first}{OVERLAP_DELIMITER}{name}" for name in rest]


def _overlap_class_name(control_id: str, overlapping_ids: Sequence[str]) -> str:
    return OVERLAP_DELIMITER.join([control_id, *overlapping_ids])


def _possible_overlap_classes(control: DetectionGroup, others: Sequence[DetectionGroup]) -> List[str]:
    if not others:
        raise ValueError("You have to overlap at least two detections; 'others' cannot be empty")
    return [
        _overlap_class_name(control.id, [name])
        for name in create_all_overlapping_class_names([other.id for other in others])
    ]


class OverlappingDetections(DetectionGroup):
    """Control detections that are also positive for other groups.

    Parameters
    ----------
    control : DetectionGroup
        Detections checked against the others
    others : Sequence[DetectionGroup]
        Groups the control detections may overlap
    hierarchy : ObjectHierarchy
        Where overlap containers are created or searched
    compute : bool
        If True, previous overlaps are cleared and computed again; otherwise
        pre-computed overlap containers are used
    max_depth : int
        Maximum depth of the spatial index

    Raises
    ------
    ValueError
        If ``others`` is empty
    NoContainersFound
        If no overlap container exists (after computing, if requested)
    """

    def __init__(
        self,
        control: DetectionGroup,
        others: Sequence[DetectionGroup],
        hierarchy: ObjectHierarchy,
        compute: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        others = list(others)
        classes = _possible_overlap_classes(control, others)
        self.control_id = control.id
        self.other_ids = [other.id for other in others]
        if compute:
            _compute_overlaps(control, others, hierarchy)
        super().__init__(control.id, classes, hierarchy, max_depth)

    @property
    def containers_name(self) -> str:
        return overlaps_container_name(self.id)


def _copy_if_overlapping(cell: Detection, control: DetectionGroup, others: Sequence[DetectionGroup]) -> Optional[Detection]:
    overlapping = [other.id for other in others if other.overlap_query(cell) is not None]
    if not overlapping:
        return None
    return cell.copy(classification=_overlap_class_name(control.id, overlapping))


def _compute_overlaps(control: DetectionGroup, others: Sequence[DetectionGroup], hierarchy: ObjectHierarchy) -> None:
    overlaps = [copy for cell in control for copy in [_copy_if_overlapping(cell, control, others)] if copy is not None]

    parents: List[Annotation] = []
    for container in control.containers:
        parent = container.parent
        if parent is None or not parent.is_annotation:
            logger.warning(f"Skipping overlaps of {container}: it has no parent annotation")
            continue
        if all(parent is not p for p in parents):
            parents.append(parent)

    placed = 0
    name = overlaps_container_name(control.id)
    for parent in parents:
        overlaps_container = create_container(hierarchy, parent, name, control.container_class, overwrite=True)
        region = overlaps_container.region
        for overlap in overlaps:
            if overlap.parent is None and region.contains_point(*overlap.centroid):
                hierarchy.add_object_below_parent(overlaps_container, overlap, fire=False)
                placed += 1
    hierarchy.fire_hierarchy_changed(control, overlaps)
    logger.info(f"{control.id}: {placed} overlapping detections with {[o.id for o in others]}")
