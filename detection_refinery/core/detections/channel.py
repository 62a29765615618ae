"""Detections computed on a single image channel.

Containers are named ``"<channel> cells"`` and both containers and
detections are classified with the channel name.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

from ..errors import DetectionInterrupted
from ..geometry import Region
from ..hierarchy import FULL_IMAGE_ANNOTATION_NAME, Annotation, Detection, ObjectHierarchy
from ..spatial_index import DEFAULT_MAX_DEPTH
from .group import DetectionGroup, create_container

logger = logging.getLogger(__name__)


def cells_container_name(channel: str) -> str:
    return f"{channel} cells"


class CellDetector(Protocol):
    """Anything able to find cells inside an annotation.

    ``detect`` may yield shapes or ready-made detections and may raise
    DetectionInterrupted part way through; whatever was yielded before is kept.
    """

    def detect(self, container: Annotation, params: Dict[str, Any]) -> Iterable[Union[Region, Detection]]:
        ...


def _compute_inside(
    channel: str,
    detector: CellDetector,
    annotation: Annotation,
    params: Dict[str, Any],
    hierarchy: ObjectHierarchy,
) -> Annotation:
    annotation.locked = True
    container = create_container(hierarchy, annotation, cells_container_name(channel), channel, overwrite=True)
    produced = []
    try:
        for found in detector.detect(container, params):
            detection = found if isinstance(found, Detection) else Detection(region=found)
            detection.classification = channel
            hierarchy.add_object_below_parent(container, detection, fire=False)
            produced.append(detection)
    except DetectionInterrupted as e:
        logger.warning(
            f"Cell detection interrupted in {annotation}: keeping {len(produced)} detections. {e.message}"
        )
    hierarchy.fire_hierarchy_changed(detector, produced)
    logger.info(f"{channel}: {len(produced)} detections in {annotation}")
    return container


class ChannelDetections(DetectionGroup):
    """Detections of one image channel.

    Parameters
    ----------
    channel : str
        Channel name, used as group id and classification
    hierarchy : ObjectHierarchy
        Where the ``"<channel> cells"`` containers are searched
    max_depth : int
        Maximum depth of the spatial index

    Raises
    ------
    NoContainersFound
        If the channel has no detections container yet; use ``compute``
    """

    def __init__(self, channel: str, hierarchy: ObjectHierarchy, max_depth: int = DEFAULT_MAX_DEPTH):
        super().__init__(channel, [channel], hierarchy, max_depth)

    @property
    def containers_name(self) -> str:
        return cells_container_name(self.id)

    @classmethod
    def compute(
        cls,
        channel: str,
        detector: CellDetector,
        hierarchy: ObjectHierarchy,
        annotations: Optional[Sequence[Annotation]] = None,
        params: Optional[Dict[str, Any]] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> "ChannelDetections":
        """Run a cell detector inside annotations and group the results.

        Each annotation gets a container child (an existing one is emptied
        and reused) where the new detections are placed. Without annotations,
        detection runs on a full-image annotation named "AllDetections".

        Parameters
        ----------
        channel : str
            Channel name
        detector : CellDetector
            Detection algorithm
        hierarchy : ObjectHierarchy
            Hierarchy to populate
        annotations : Sequence[Annotation], optional
            Where to detect cells
        params : dict, optional
            Parameters passed to the detector as they are

        Returns
        -------
        ChannelDetections
            Group over the channel's containers, new and pre-existing
        """
        params = dict(params or {})
        if not annotations:
            annotations = [hierarchy.full_image_annotation(FULL_IMAGE_ANNOTATION_NAME)]
        for annotation in annotations:
            _compute_inside(channel, detector, annotation, params, hierarchy)
        return cls(channel, hierarchy, max_depth)

    def recompute(
        self,
        detector: CellDetector,
        annotations: Sequence[Annotation],
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Annotation]:
        """Detect cells again inside some annotations and reconcile them with the known ones.

        Returns the containers that received the new detections.
        """
        params = dict(params or {})
        containers = [_compute_inside(self.id, detector, a, params, self.hierarchy) for a in annotations]
        self.refresh()
        return containers
