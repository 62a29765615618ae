"""Project configuration for Detection-Refinery.

Example
-------
>>> from detection_refinery.config import ProjectConfig
>>>
>>> config = ProjectConfig.from_yaml("detections.yml")
>>> config.channel("AF568").parameters.threshold
100.0
>>> config.control_channel()
'AF568'
"""

from .project import (
    ALL_CLASSIFIER_NAME,
    AutoThresholdParameters,
    ChannelClassifierConfig,
    ChannelDetectionsConfig,
    DetectionParameters,
    DetectionsCheckConfig,
    ProjectConfig,
    SpatialIndexConfig,
)

__all__ = [
    "ALL_CLASSIFIER_NAME",
    "AutoThresholdParameters",
    "ChannelClassifierConfig",
    "ChannelDetectionsConfig",
    "DetectionParameters",
    "DetectionsCheckConfig",
    "ProjectConfig",
    "SpatialIndexConfig",
]
