"""Cell detection by selecting pre-segmented candidate cells.

Segmentation runs once, outside this package, and its cells are exported
with per-channel intensity measurements. Detecting a channel then means
keeping, inside each container, the candidates that are bright enough in
that channel and whose area is within the configured limits.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, Iterator

from ..hierarchy import Annotation, Detection

logger = logging.getLogger(__name__)

DEFAULT_MEASUREMENT = "Nucleus: {channel} mean"


class CandidateCellDetector:
    """CellDetector picking segmented candidates by intensity and area.

    Reads the ``detection_image``, ``threshold``, ``min_area_microns`` and
    ``max_area_microns`` detection parameters.

    Parameters
    ----------
    candidates : Iterable[Detection]
        Segmented cells with intensity measurements. They are copied, never moved.
    pixel_size_microns : float
        Image calibration, converting areas to square microns
    measurement : str
        Name of the intensity measurement compared to the threshold;
        ``{channel}`` is replaced by the detection image

    Example
    -------
    >>> detector = CandidateCellDetector(read_geojson("cells.geojson").detections(), pixel_size_microns=0.5)
    >>> group = ChannelDetections.compute("AF568", detector, hierarchy, params={"threshold": 120})
    """

    def __init__(
        self,
        candidates: Iterable[Detection],
        pixel_size_microns: float = 1.0,
        measurement: str = DEFAULT_MEASUREMENT,
    ):
        if pixel_size_microns <= 0:
            raise ValueError(f"Pixel size must be positive, got {pixel_size_microns}")
        self.candidates = list(candidates)
        self.pixel_size_microns = pixel_size_microns
        self.measurement = measurement

    def detect(self, container: Annotation, params: Dict[str, Any]) -> Iterator[Detection]:
        channel = params.get("detection_image")
        measurement = self.measurement.format(channel=channel)
        threshold = params.get("threshold", -math.inf)
        min_area = params.get("min_area_microns", 0.0)
        max_area = params.get("max_area_microns", math.inf)
        pixel_area = self.pixel_size_microns ** 2

        missing = 0
        for candidate in self.candidates:
            if not container.region.contains_point(*candidate.centroid):
                continue
            if not min_area <= candidate.region.area * pixel_area <= max_area:
                continue
            value = candidate.measurements.get(measurement)
            if value is None:
                missing += 1
                continue
            # NaN never passes
            if value >= threshold:
                yield candidate.copy(classification=channel)
        if missing:
            logger.warning(f"{missing} candidates in {container} have no '{measurement}' measurement")
