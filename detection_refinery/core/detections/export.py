"""Per-annotation detection counts."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from ..hierarchy import HierarchyObject, ObjectHierarchy
from .group import DetectionGroup

logger = logging.getLogger(__name__)

COUNTS_FILENAME = "detection_counts.csv"
SUMMARY_FILENAME = "detection_summary.json"


def _annotation_label(annotation: HierarchyObject) -> str:
    return annotation.name or annotation.classification or "Unnamed"


def count_detections(groups: Sequence[DetectionGroup], hierarchy: ObjectHierarchy) -> pd.DataFrame:
    """Count each group's detections below the annotations holding its containers.

    Parameters
    ----------
    groups : Sequence[DetectionGroup]
        Groups to count. Each gets a column named after its containers
        (e.g. "AF568 cells", "AF568 overlaps").
    hierarchy : ObjectHierarchy
        Hierarchy the groups belong to

    Returns
    -------
    pd.DataFrame
        One row per annotation parenting at least one container, with
        columns annotation, classification, area, then one count per group
    """
    rows: Dict[int, Dict[str, Any]] = {}
    columns = [group.containers_name for group in groups]
    for group in groups:
        for container in group.containers:
            parent = container.parent
            if parent is None:
                continue
            key = id(parent)
            if key not in rows:
                rows[key] = {
                    "annotation": _annotation_label(parent) if parent is not hierarchy.root else "Image",
                    "classification": parent.classification,
                    "area": parent.region.area,
                    **{column: 0 for column in columns},
                }
            n = sum(1 for d in container.detection_children() if d in group.index)
            rows[key][group.containers_name] += n

    df = pd.DataFrame.from_records(
        list(rows.values()),
        columns=["annotation", "classification", "area", *columns],
    )
    if not df.empty:
        df = df.sort_values("annotation", kind="stable").reset_index(drop=True)
    return df


def summarize_groups(groups: Sequence[DetectionGroup]) -> Dict[str, Any]:
    """Return summary dictionary for JSON export."""
    return {
        group.containers_name: {
            "id": group.id,
            "type": type(group).__name__,
            "n_containers": len(group.containers),
            "n_detections": len(group),
            "detection_classes": group.detection_classes,
        }
        for group in groups
    }


def export_counts(
    df: pd.DataFrame,
    output_dir: Path,
    summary: Optional[Dict[str, Any]] = None,
) -> Dict[str, Path]:
    """Write detection counts and an optional summary.

    Parameters
    ----------
    df : pd.DataFrame
        Output of count_detections
    output_dir : Path
        Output directory, created if missing
    summary : dict, optional
        Extra information written as JSON beside the counts

    Returns
    -------
    Dict[str, Path]
        Mapping from export type to output path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_paths = {}

    counts_path = output_dir / COUNTS_FILENAME
    df.to_csv(counts_path, index=False)
    output_paths["counts"] = counts_path
    logger.info(f"Wrote {COUNTS_FILENAME} ({len(df)} annotations)")

    count_columns: List[str] = [c for c in df.columns if c not in ("annotation", "classification", "area")]
    record = {
        "n_annotations": int(len(df)),
        "totals": {c: int(df[c].sum()) for c in count_columns},
    }
    if summary:
        record.update(summary)
    summary_path = output_dir / SUMMARY_FILENAME
    with open(summary_path, "w") as f:
        json.dump(record, f, indent=2, default=str)
    output_paths["summary"] = summary_path
    logger.info(f"Wrote {SUMMARY_FILENAME}")
    return output_paths
