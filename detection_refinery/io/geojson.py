"""Read and write object hierarchies as GeoJSON FeatureCollections.

The layout follows QuPath's export: each feature carries ``objectType``
("annotation", "detection" or "cell"), ``name``, ``classification``,
``isLocked`` and ``measurements`` in its properties. Features written here
also record their parent's id so that containers sharing the same shape as
their parent annotation are read back below the right object.
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.geometry import Region
from ..core.hierarchy import Annotation, Detection, HierarchyObject, ObjectHierarchy

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DETECTION_TYPES = ("detection", "cell", "tile")


def _parse_measurements(raw: Any) -> Dict[str, float]:
    if not raw:
        return {}
    if isinstance(raw, list):
        # older exports: [{"name": ..., "value": ...}]
        return {m["name"]: float(m["value"]) for m in raw if m.get("value") is not None}
    return {str(k): float(v) for k, v in raw.items() if v is not None}


def _parse_classification(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, dict):
        return raw.get("name")
    return str(raw)


def feature_to_object(feature: Dict[str, Any]) -> HierarchyObject:
    """Create an annotation or detection from a GeoJSON feature."""
    properties = feature.get("properties") or {}
    object_type = properties.get("objectType", "annotation")
    cls = Detection if object_type in DETECTION_TYPES else Annotation
    return cls(
        region=Region.from_geojson(feature["geometry"]),
        name=properties.get("name"),
        classification=_parse_classification(properties.get("classification")),
        locked=bool(properties.get("isLocked", False)),
        measurements=_parse_measurements(properties.get("measurements")),
    )


def object_to_feature(obj: HierarchyObject, feature_id: str, parent_id: Optional[str]) -> Dict[str, Any]:
    """GeoJSON feature of an annotation or detection."""
    properties: Dict[str, Any] = {"objectType": obj.object_type}
    if obj.name is not None:
        properties["name"] = obj.name
    if obj.classification is not None:
        properties["classification"] = {"name": obj.classification}
    if obj.locked:
        properties["isLocked"] = True
    if obj.measurements:
        properties["measurements"] = dict(obj.measurements)
    if parent_id is not None:
        properties["parentId"] = parent_id
    return {
        "type": "Feature",
        "id": feature_id,
        "geometry": obj.region.to_geojson(),
        "properties": properties,
    }


def hierarchy_from_features(
    features: List[Dict[str, Any]],
    width: Optional[float] = None,
    height: Optional[float] = None,
) -> ObjectHierarchy:
    """Build a hierarchy from GeoJSON features.

    Features with a known ``parentId`` are placed below that parent. The
    others are placed below the smallest annotation enclosing them, adding
    annotations from the largest to the smallest and detections last.
    """
    hierarchy = ObjectHierarchy(width=width, height=height)
    by_id: Dict[str, HierarchyObject] = {}
    parent_ids: Dict[int, Optional[str]] = {}
    objects = []
    for feature in features:
        if not feature.get("geometry"):
            logger.warning(f"Skipping feature without geometry: {feature.get('id')}")
            continue
        obj = feature_to_object(feature)
        if feature.get("id") is not None:
            by_id[str(feature["id"])] = obj
        parent_ids[id(obj)] = (feature.get("properties") or {}).get("parentId")
        objects.append(obj)

    linked = [o for o in objects if parent_ids[id(o)] in by_id]
    loose = [o for o in objects if parent_ids[id(o)] not in by_id]
    for obj in linked:
        obj.parent = by_id[parent_ids[id(obj)]]
        obj.parent.children.append(obj)

    # only the top of each linked subtree needs placing
    annotations = sorted((o for o in loose if o.is_annotation), key=lambda o: o.region.area, reverse=True)
    detections = [o for o in loose if o.is_detection]
    for obj in annotations + detections:
        hierarchy.add_object(obj, fire=False)

    orphans = [o for o in objects if not hierarchy.contains(o)]
    if orphans:
        raise ValueError(f"{len(orphans)} features have circular parent references")
    logger.info(f"Read {len(annotations)} annotations and {len(detections)} detections ({len(linked)} linked)")
    return hierarchy


def read_geojson(
    path: PathLike,
    width: Optional[float] = None,
    height: Optional[float] = None,
) -> ObjectHierarchy:
    """Load a hierarchy from a GeoJSON file.

    Parameters
    ----------
    path : PathLike
        FeatureCollection, a single Feature or a list of features
    width, height : float, optional
        Image size, needed only to create a full-image annotation

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ValueError
        If the file holds neither features nor a FeatureCollection
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"GeoJSON file not found: {path}")
    with open(path) as f:
        data = json.load(f)

    if isinstance(data, list):
        features = data
    elif data.get("type") == "FeatureCollection":
        features = data.get("features", [])
    elif data.get("type") == "Feature":
        features = [data]
    else:
        raise ValueError(f"{path} is not a GeoJSON FeatureCollection")
    return hierarchy_from_features(features, width=width, height=height)


def hierarchy_to_features(hierarchy: ObjectHierarchy) -> List[Dict[str, Any]]:
    ids = {id(hierarchy.root): None}
    features = []
    for obj in hierarchy.all_objects():
        feature_id = str(uuid.uuid4())
        ids[id(obj)] = feature_id
        features.append(object_to_feature(obj, feature_id, ids.get(id(obj.parent))))
    return features


def write_geojson(hierarchy: ObjectHierarchy, path: PathLike) -> Path:
    """Write every object of a hierarchy to a GeoJSON FeatureCollection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    collection = {"type": "FeatureCollection", "features": hierarchy_to_features(hierarchy)}
    with open(path, "w") as f:
        json.dump(collection, f)
    logger.info(f"Wrote {len(collection['features'])} objects to {path}")
    return path
