"""Project configuration.

A single YAML file describes, for every image of a project, where to detect
cells, which channels to detect them on, how to classify them and which
channel to use as control when looking for multiple positive cells.

Example
-------
>>> from detection_refinery.config import ProjectConfig
>>> config = ProjectConfig.from_yaml("detections.yml")
>>> [c.name for c in config.channel_detections]
['AF568', 'AF647']
>>> config.control_channel()
'AF568'
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from ..core.detections import ObjectClassifier, PartialClassifier, SingleClassifier, ThresholdClassifier
from ..core.errors import IllegalConfiguration
from ..core.hierarchy import Annotation, ObjectHierarchy
from ..core.histogram import DEFAULT_PROMINENCE, DEFAULT_WINDOW_SIZE, ChannelHistogram, find_threshold
from ..core.spatial_index import DEFAULT_MAX_DEPTH

logger = logging.getLogger(__name__)

ALL_CLASSIFIER_NAME = "all"
CLASSIFIER_SUFFIXES = (".yaml", ".yml", ".json")


@dataclass
class AutoThresholdParameters:
    """Settings to take the detection threshold from the channel histogram.

    Attributes
    ----------
    resolution_level : int
        Image pyramid level the histogram was computed at, 0 being full resolution
    smooth_window_size : int
        Width of the moving average smoothing the histogram; odd sizes work best
    peak_prominence : float
        How far a local maximum must stand above the nearby values to be a peak
    n_peak : int
        Which trustworthy peak becomes the threshold, starting from 1.
        The first one is usually the background.
    """

    resolution_level: int = 4
    smooth_window_size: int = DEFAULT_WINDOW_SIZE
    peak_prominence: float = DEFAULT_PROMINENCE
    n_peak: int = 2

    def __post_init__(self):
        checks = [
            ("resolution_level", self.resolution_level >= 0, "integer >= 0"),
            ("smooth_window_size", self.smooth_window_size > 0, "integer > 0"),
            ("peak_prominence", self.peak_prominence > 0, "number > 0"),
            ("n_peak", self.n_peak > 0, "integer > 0"),
        ]
        for name, valid, expected in checks:
            if not valid:
                raise IllegalConfiguration(
                    f"Invalid histogram_threshold.{name}",
                    expected=expected,
                    found=getattr(self, name),
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutoThresholdParameters":
        """Create AutoThresholdParameters from dictionary."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise IllegalConfiguration(
                "Unknown histogram_threshold parameters",
                expected=sorted(known),
                found=unknown,
            )
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def histogram_path(self, directory: Path, channel: str) -> Path:
        """Where the channel histogram at the configured resolution level is expected."""
        return Path(directory) / f"{channel}_level{self.resolution_level}.txt"

    def find_threshold(self, histogram: ChannelHistogram) -> int:
        return find_threshold(
            histogram,
            n_peak=self.n_peak,
            window_size=self.smooth_window_size,
            prominence=self.peak_prominence,
        )


@dataclass
class DetectionParameters:
    """Watershed cell detection parameters, passed to the cell detector as they are.

    Attributes
    ----------
    requested_pixel_size_microns : float
        Resolution at which detection runs
    background_radius_microns : float
        Radius for background estimation (0 disables it)
    background_by_reconstruction : bool
        Use opening-by-reconstruction for background estimation
    median_radius_microns : float
        Median filter radius
    sigma_microns : float
        Gaussian filter sigma
    min_area_microns : float
        Smallest accepted nucleus area
    max_area_microns : float
        Largest accepted nucleus area
    threshold : float
        Intensity threshold
    watershed_post_process : bool
        Split merged nuclei
    cell_expansion_microns : float
        Distance by which nuclei are expanded into cells
    include_nuclei : bool
        Keep nuclei shapes inside the cells
    smooth_boundaries : bool
        Smooth detected boundaries
    make_measurements : bool
        Add intensity and shape measurements to detections
    histogram_threshold : AutoThresholdParameters, optional
        If set, ``threshold`` is replaced by one found on the channel histogram
    """

    requested_pixel_size_microns: float = 0.5
    background_radius_microns: float = 8.0
    background_by_reconstruction: bool = True
    median_radius_microns: float = 0.0
    sigma_microns: float = 1.5
    min_area_microns: float = 10.0
    max_area_microns: float = 400.0
    threshold: float = 100.0
    histogram_threshold: Optional[AutoThresholdParameters] = None
    watershed_post_process: bool = True
    cell_expansion_microns: float = 5.0
    include_nuclei: bool = False
    smooth_boundaries: bool = True
    make_measurements: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectionParameters":
        """Create DetectionParameters from dictionary."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise IllegalConfiguration(
                "Unknown cell detection parameters",
                expected=sorted(known),
                found=unknown,
            )
        data = dict(data)
        auto = data.pop("histogram_threshold", None)
        if auto is not None:
            data["histogram_threshold"] = AutoThresholdParameters.from_dict(auto)
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        record = {f.name: getattr(self, f.name) for f in fields(self)}
        if self.histogram_threshold is not None:
            record["histogram_threshold"] = self.histogram_threshold.to_dict()
        return record

    def to_parameters(self, channel: str, histogram: Optional[ChannelHistogram] = None) -> Dict[str, Any]:
        """Parameters for the cell detector, detecting on the given channel.

        Parameters
        ----------
        channel : str
            Channel to detect cells on
        histogram : ChannelHistogram, optional
            Channel histogram, required when ``histogram_threshold`` is set

        Raises
        ------
        ValueError
            If an automatic threshold is configured but no histogram is given
        ThresholdNotFound
            If the histogram has no usable peak
        """
        params = self.to_dict()
        params.pop("histogram_threshold")
        params["detection_image"] = channel
        if self.histogram_threshold is not None:
            if histogram is None:
                raise ValueError(f"Channel '{channel}' uses an automatic threshold, but no histogram was given")
            params["threshold"] = self.histogram_threshold.find_threshold(histogram)
        return params


@dataclass
class ChannelClassifierConfig:
    """A classifier to apply to one channel's detections.

    Attributes
    ----------
    channel : str
        Channel whose detections are classified
    name : str
        "ALL" to accept every detection, otherwise the stem of a classifier file
    annotations_to_classify : List[str], optional
        Names of the annotations to classify. None means the whole image.
    """

    channel: str
    name: str
    annotations_to_classify: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], channel: str) -> "ChannelClassifierConfig":
        """Create ChannelClassifierConfig from dictionary."""
        if not data.get("name"):
            raise IllegalConfiguration(f"Classifier of channel '{channel}' has no name")
        annotations = data.get("annotations_to_classify")
        return cls(
            channel=channel,
            name=str(data["name"]),
            annotations_to_classify=list(annotations) if annotations is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"name": self.name}
        if self.annotations_to_classify is not None:
            record["annotations_to_classify"] = list(self.annotations_to_classify)
        return record

    @property
    def accepts_all(self) -> bool:
        return self.name.lower() == ALL_CLASSIFIER_NAME

    def classifier_path(self, search_dirs: Sequence[Path]) -> Path:
        """Find the classifier file, searching the directories in order.

        Raises
        ------
        FileNotFoundError
            If no ``<name>.yaml``, ``<name>.yml`` or ``<name>.json`` exists
        """
        for directory in search_dirs:
            for suffix in CLASSIFIER_SUFFIXES:
                candidate = Path(directory) / f"{self.name}{suffix}"
                if candidate.exists():
                    return candidate
        raise FileNotFoundError(
            f"Unable to find object classifier '{self.name}' in {[str(d) for d in search_dirs]}"
        )

    def load_classifier(self, search_dirs: Sequence[Path] = ()) -> ObjectClassifier:
        """Load the classifier; "ALL" gives a classifier accepting every detection."""
        if self.accepts_all:
            return SingleClassifier(self.channel)
        path = self.classifier_path(search_dirs)
        logger.info(f"Loading classifier '{self.name}' from {path}")
        return ThresholdClassifier.from_file(path)

    def annotations_for(self, hierarchy: ObjectHierarchy) -> Optional[List[Annotation]]:
        """Annotations to classify; names matching nothing are skipped."""
        if self.annotations_to_classify is None:
            return None
        wanted = set(self.annotations_to_classify)
        return [a for a in hierarchy.annotations() if a.name in wanted]

    def to_partial_classifier(
        self,
        hierarchy: ObjectHierarchy,
        search_dirs: Sequence[Path] = (),
    ) -> PartialClassifier:
        return PartialClassifier(self.load_classifier(search_dirs), self.annotations_for(hierarchy))


@dataclass
class ChannelDetectionsConfig:
    """Detection and classification settings of one channel."""

    name: str
    parameters: DetectionParameters = field(default_factory=DetectionParameters)
    classifiers: List[ChannelClassifierConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelDetectionsConfig":
        """Create ChannelDetectionsConfig from dictionary."""
        name = data.get("name")
        if not name:
            raise IllegalConfiguration("Every channel_detections entry needs a 'name'")
        name = str(name)
        return cls(
            name=name,
            parameters=DetectionParameters.from_dict(data.get("parameters") or {}),
            classifiers=[ChannelClassifierConfig.from_dict(c, name) for c in data.get("classifiers") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "parameters": self.parameters.to_dict(),
            "classifiers": [c.to_dict() for c in self.classifiers],
        }

    def partial_classifiers(
        self,
        hierarchy: ObjectHierarchy,
        search_dirs: Sequence[Path] = (),
    ) -> List[PartialClassifier]:
        return [c.to_partial_classifier(hierarchy, search_dirs) for c in self.classifiers]


@dataclass
class DetectionsCheckConfig:
    """Whether to look for multiple positive cells, and against which channel."""

    apply: bool = False
    control_channel: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectionsCheckConfig":
        """Create DetectionsCheckConfig from dictionary."""
        return cls(
            apply=bool(data.get("apply", False)),
            control_channel=data.get("control_channel"),
        )


@dataclass
class SpatialIndexConfig:
    """Spatial index settings."""

    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self):
        if not isinstance(self.max_depth, int) or isinstance(self.max_depth, bool) or self.max_depth < 1:
            raise IllegalConfiguration(
                "Spatial index maximum depth must be at least 1",
                expected="integer >= 1",
                found=self.max_depth,
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpatialIndexConfig":
        """Create SpatialIndexConfig from dictionary."""
        return cls(max_depth=data.get("max_depth", DEFAULT_MAX_DEPTH))


@dataclass
class ProjectConfig:
    """Main configuration for detecting, classifying and overlapping cells.

    Attributes
    ----------
    class_for_detections : str, optional
        Classification of the annotations to detect cells in.
        None means the whole image.
    detections_check : DetectionsCheckConfig
        Multiple positive cells settings
    channel_detections : List[ChannelDetectionsConfig]
        Per-channel settings, in order
    spatial_index : SpatialIndexConfig
        Spatial index settings
    """

    class_for_detections: Optional[str] = None
    detections_check: DetectionsCheckConfig = field(default_factory=DetectionsCheckConfig)
    channel_detections: List[ChannelDetectionsConfig] = field(default_factory=list)
    spatial_index: SpatialIndexConfig = field(default_factory=SpatialIndexConfig)

    def __post_init__(self):
        names = [c.name for c in self.channel_detections]
        duplicated = sorted({n for n in names if names.count(n) > 1})
        if duplicated:
            raise IllegalConfiguration("Channels configured more than once", found=duplicated)
        control = self.detections_check.control_channel
        if self.detections_check.apply and control is not None and control not in names:
            raise IllegalConfiguration(
                "The control channel has no detections configured",
                expected=names,
                found=control,
            )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProjectConfig":
        """Create ProjectConfig from dictionary."""
        data = data or {}
        if not isinstance(data, dict):
            raise IllegalConfiguration("Configuration must be a mapping", found=type(data).__name__)
        return cls(
            class_for_detections=data.get("class_for_detections"),
            detections_check=DetectionsCheckConfig.from_dict(data.get("detections_check") or {}),
            channel_detections=[ChannelDetectionsConfig.from_dict(c) for c in data.get("channel_detections") or []],
            spatial_index=SpatialIndexConfig.from_dict(data.get("spatial_index") or {}),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "ProjectConfig":
        """Load configuration from YAML file.

        Raises
        ------
        FileNotFoundError
            If the file does not exist
        ValueError
            If the file is not valid YAML or holds invalid settings
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                logger.error(f"Could not interpret '{path}'. Please check that it is correctly formatted!")
                raise ValueError(f"Invalid YAML in {path}: {e}") from e

        config = cls.from_dict(data)
        logger.info(f"Loaded config from {path}")
        return config

    @classmethod
    def default(cls) -> "ProjectConfig":
        """Return default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "class_for_detections": self.class_for_detections,
            "detections_check": {
                "apply": self.detections_check.apply,
                "control_channel": self.detections_check.control_channel,
            },
            "spatial_index": {"max_depth": self.spatial_index.max_depth},
            "channel_detections": [c.to_dict() for c in self.channel_detections],
        }

    def channel(self, name: str) -> ChannelDetectionsConfig:
        for config in self.channel_detections:
            if config.name == name:
                return config
        raise KeyError(f"Channel '{name}' is not configured")

    def control_channel(self) -> Optional[str]:
        """Channel used as control for multiple positive cells.

        None if the check is disabled or fewer than two channels are configured.
        Defaults to the first configured channel.
        """
        if not self.detections_check.apply or len(self.channel_detections) < 2:
            return None
        return self.detections_check.control_channel or self.channel_detections[0].name

    def annotations_for_detections(self, hierarchy: ObjectHierarchy) -> Optional[List[Annotation]]:
        """Annotations classified as ``class_for_detections``; None for the whole image."""
        if self.class_for_detections is None:
            return None
        return [a for a in hierarchy.annotations() if a.classification == self.class_for_detections]
