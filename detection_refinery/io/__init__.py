"""I/O utilities for Detection-Refinery.

Provides logging and GeoJSON reading/writing of object hierarchies.
"""

from .logging import get_logger, get_timestamped_log_path, log_json, log_yaml
from .geojson import (
    feature_to_object,
    hierarchy_from_features,
    hierarchy_to_features,
    object_to_feature,
    read_geojson,
    write_geojson,
)

__all__ = [
    # Logging
    "get_logger",
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    # GeoJSON
    "feature_to_object",
    "hierarchy_from_features",
    "hierarchy_to_features",
    "object_to_feature",
    "read_geojson",
    "write_geojson",
]
