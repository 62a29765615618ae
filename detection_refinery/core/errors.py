"""
Errors raised while indexing, reconciling and classifying detections.

Every error carries a machine-readable code and, where useful, what was
expected versus what was found.

Error Codes:
    E101_NO_CONTAINERS: No container annotation matches the group's naming convention
    E102_INCOMPATIBLE_CLASSIFIER: Classifier outputs do not match the group's labels
    E103_INCOMPATIBLE_DETECTIONS: Two detection groups cannot be merged
    E104_ILLEGAL_CONFIGURATION: Invalid parameter (e.g. spatial index depth)
    E105_UNSUPPORTED_SHAPE: Object shape the spatial index cannot store
    E106_DETECTION_INTERRUPTED: External cell detection stopped before completion
    E107_THRESHOLD_NOT_FOUND: No usable histogram peak for an automatic threshold
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


class DetectionError(Exception):
    """Base class for all errors of this package.

    Attributes
    ----------
    message : str
        Human-readable error description
    error_code : str
        Machine-readable error code
    expected : Any
        What was expected, if relevant
    found : Any
        What was actually found, if relevant
    """

    error_code: str = "E100_DETECTION_ERROR"

    def __init__(self, message: str, expected: Any = None, found: Any = None):
        super().__init__(message)
        self.message = message
        self.expected = expected
        self.found = found

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.expected is not None:
            parts.append(f"  Expected: {self.expected}")
        if self.found is not None:
            parts.append(f"  Found: {self.found}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "expected": str(self.expected) if self.expected is not None else None,
            "found": str(self.found) if self.found is not None else None,
        }


class NoContainersFound(DetectionError):
    """No container of the given kind exists in the hierarchy."""

    error_code = "E101_NO_CONTAINERS"

    def __init__(self, containers_name: str, group_type: Optional[str] = None):
        kind = f"{group_type} " if group_type else ""
        super().__init__(
            f"No {kind}containers named '{containers_name}' were pre-computed in the given image",
        )
        self.containers_name = containers_name


class IncompatibleClassifier(DetectionError):
    """The output classes of a classifier do not fit a detection group."""

    error_code = "E102_INCOMPATIBLE_CLASSIFIER"

    def __init__(
        self,
        classifier_outputs: Iterable[str],
        detection_classes: Iterable[str],
        discarded_class: str,
    ):
        expected = sorted(set(detection_classes)) + [discarded_class]
        found = sorted(set(classifier_outputs))
        super().__init__(
            "The provided classifier is incompatible",
            expected=expected,
            found=found,
        )


class IncompatibleDetections(DetectionError):
    """Two detection groups do not share id, containers, hierarchy and classes."""

    error_code = "E103_INCOMPATIBLE_DETECTIONS"

    def __init__(self, first: Any, second: Any):
        super().__init__(f"The provided detections are incompatible: {first} and {second}")


class IllegalConfiguration(DetectionError, ValueError):
    """An argument or configuration value is outside its legal range."""

    error_code = "E104_ILLEGAL_CONFIGURATION"


class UnsupportedObjectShape(IllegalConfiguration):
    """An object's shape cannot be stored in a spatial index."""

    error_code = "E105_UNSUPPORTED_SHAPE"


class DetectionInterrupted(DetectionError):
    """Raised by cell detectors that were stopped before finishing a region."""

    error_code = "E106_DETECTION_INTERRUPTED"


class ThresholdNotFound(DetectionError):
    """The channel histogram has no usable peak to take the threshold from."""

    error_code = "E107_THRESHOLD_NOT_FOUND"

    def __init__(self, channel: str, reason: str, peaks: Optional[Iterable[int]] = None):
        super().__init__(
            f"Could not automatically determine the threshold of '{channel}' from its histogram: {reason}",
            found=list(peaks) if peaks is not None else None,
        )
        self.channel = channel
