"""Object classifiers and the sequences in which they are applied.

A detection group accepts classifiers with exactly two outputs: its own
detection class and its discarded class ("Other: <id>"). The one
exception is SingleClassifier, which labels every object with one of the
group's own classes and is used to accept all detections as they are.
"""

from __future__ import annotations

import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import yaml

from ..errors import IncompatibleClassifier
from ..hierarchy import Annotation, Detection, HierarchyObject

logger = logging.getLogger(__name__)


class ObjectClassifier(ABC):
    """Assigns a classification label to objects, in place."""

    name: str = "classifier"

    @property
    @abstractmethod
    def classes(self) -> List[str]:
        """Labels this classifier can assign."""

    @abstractmethod
    def classify_objects(self, objects: Sequence[HierarchyObject], reset_existing: bool = True) -> int:
        """Classify objects in place.

        Returns
        -------
        int
            Number of objects whose classification changed
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self.name}', classes={self.classes})"


class SingleClassifier(ObjectClassifier):
    """Labels every object with the same class."""

    def __init__(self, label: str, name: Optional[str] = None):
        self.label = label
        self.name = name or f"all:{label}"

    @property
    def classes(self) -> List[str]:
        return [self.label]

    def classify_objects(self, objects: Sequence[HierarchyObject], reset_existing: bool = True) -> int:
        changed = 0
        for obj in objects:
            previous = obj.classification
            if reset_existing or obj.classification is None:
                obj.classification = self.label
            if obj.classification != previous:
                changed += 1
        return changed


class ThresholdClassifier(ObjectClassifier):
    """Single-measurement gate: values at or above a threshold are positive.

    Objects lacking the measurement (or with NaN) are negative.

    Parameters
    ----------
    measurement : str
        Name of the measurement to gate on
    threshold : float
        Gate value
    positive : str
        Label for objects passing the gate
    negative : str
        Label for the others
    """

    def __init__(
        self,
        measurement: str,
        threshold: float,
        positive: str,
        negative: str,
        name: Optional[str] = None,
    ):
        self.measurement = measurement
        self.threshold = float(threshold)
        self.positive = positive
        self.negative = negative
        self.name = name or f"{measurement}>={threshold:g}"

    @property
    def classes(self) -> List[str]:
        return [self.positive, self.negative]

    def classify_objects(self, objects: Sequence[HierarchyObject], reset_existing: bool = True) -> int:
        objects = list(objects)
        if not objects:
            return 0
        values = np.array(
            [obj.measurements.get(self.measurement, math.nan) for obj in objects],
            dtype=float,
        )
        with np.errstate(invalid="ignore"):
            passing = np.nan_to_num(values, nan=-np.inf) >= self.threshold
        changed = 0
        for obj, is_positive in zip(objects, passing):
            if not reset_existing and obj.classification is not None:
                continue
            label = self.positive if is_positive else self.negative
            if obj.classification != label:
                obj.classification = label
                changed += 1
        return changed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "threshold",
            "name": self.name,
            "measurement": self.measurement,
            "threshold": self.threshold,
            "positive": self.positive,
            "negative": self.negative,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThresholdClassifier":
        """Create ThresholdClassifier from dictionary."""
        missing = [k for k in ("measurement", "threshold", "positive", "negative") if k not in data]
        if missing:
            raise ValueError(f"Threshold classifier missing fields: {missing}")
        return cls(
            measurement=data["measurement"],
            threshold=data["threshold"],
            positive=data["positive"],
            negative=data["negative"],
            name=data.get("name"),
        )

    @classmethod
    def from_file(cls, path: Path) -> "ThresholdClassifier":
        """Load a classifier from a YAML or JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Classifier file not found: {path}")
        with open(path) as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Classifier file {path} does not contain a mapping")
        data.setdefault("name", path.stem)
        return cls.from_dict(data)


@dataclass(frozen=True)
class PartialClassifier:
    """A classifier restricted to the detections inside some annotations.

    Attributes
    ----------
    classifier : ObjectClassifier
        The classifier to apply
    annotations : Tuple[Annotation, ...], optional
        Annotations whose detections are classified. None means the whole image.
    """

    classifier: ObjectClassifier
    annotations: Optional[Tuple[Annotation, ...]] = None

    def __post_init__(self):
        if self.annotations is not None:
            object.__setattr__(self, "annotations", tuple(self.annotations))

    @property
    def covers_full_image(self) -> bool:
        return self.annotations is None

    def __repr__(self) -> str:
        scope = "whole image" if self.covers_full_image else f"{len(self.annotations)} annotations"
        return f"PartialClassifier({self.classifier!r}, {scope})"


@dataclass
class ClassificationOutcome:
    """Result of applying a classifier sequence to a detection group.

    Attributes
    ----------
    detections : List[Detection]
        Detections that ended with one of the group's classes
    applied : List[PartialClassifier]
        Steps that ran, in order
    skipped : List[PartialClassifier]
        Steps that did not run: overridden by a later whole-image step,
        or left over after an incompatible classifier
    error : IncompatibleClassifier, optional
        The error that stopped the sequence early
    """

    detections: List[Detection] = field(default_factory=list)
    applied: List[PartialClassifier] = field(default_factory=list)
    skipped: List[PartialClassifier] = field(default_factory=list)
    error: Optional[IncompatibleClassifier] = None

    @property
    def completed(self) -> bool:
        return self.error is None

    def summary_dict(self) -> Dict[str, Any]:
        """Return summary dictionary for JSON export."""
        return {
            "completed": self.completed,
            "n_detections": len(self.detections),
            "applied": [p.classifier.name for p in self.applied],
            "skipped": [p.classifier.name for p in self.skipped],
            "error": self.error.to_dict() if self.error else None,
        }


def drop_overridden_classifiers(classifiers: Iterable[PartialClassifier]) -> List[PartialClassifier]:
    """Drop every step before the last whole-image classifier.

    A whole-image step reclassifies every detection, so anything an earlier
    step did is overwritten. Without a whole-image step the sequence is
    returned unchanged.
    """
    classifiers = list(classifiers)
    for i in range(len(classifiers) - 1, -1, -1):
        if classifiers[i].covers_full_image:
            return classifiers[i:]
    return classifiers
