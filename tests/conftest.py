"""Pytest configuration and shared fixtures for Detection-Refinery tests."""

import sys
from pathlib import Path

import pytest

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from detection_refinery.core.hierarchy import ObjectHierarchy

# Import mock hierarchy builders
from tests.fixtures import (
    add_container,
    create_channel_hierarchy,
    create_grid_regions,
)


# ============================================================================
# Hierarchy Fixtures
# ============================================================================


@pytest.fixture
def empty_hierarchy() -> ObjectHierarchy:
    """20x20 image without objects."""
    return ObjectHierarchy(width=20, height=20)


@pytest.fixture
def channel_hierarchy():
    """Hierarchy with one "AF568 cells" container of 3 detections."""
    return create_channel_hierarchy("AF568")


@pytest.fixture
def two_channel_hierarchy():
    """One annotation with AF568 and AF647 containers.

    AF568 detections at (2, 2), (5, 5), (8, 8); AF647 at (2, 2) and (8.2, 8.2),
    so two AF568 cells are double positive.
    """
    hierarchy, annotation, _ = create_channel_hierarchy("AF568")
    add_container(hierarchy, annotation, "AF647", [(2, 2), (8.2, 8.2)])
    return hierarchy, annotation


@pytest.fixture
def grid_regions():
    """4x4 grid of unit squares."""
    return create_grid_regions(4)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def sample_project_config(tmp_path) -> Path:
    """Project configuration with two channels and a threshold classifier file."""
    import yaml

    classifier = {
        "measurement": "Cell: Mean",
        "threshold": 50,
        "positive": "AF647",
        "negative": "Other: AF647",
    }
    (tmp_path / "af647_gate.yaml").write_text(yaml.safe_dump(classifier))

    config = {
        "class_for_detections": "Region",
        "detections_check": {"apply": True, "control_channel": "AF568"},
        "spatial_index": {"max_depth": 4},
        "channel_detections": [
            {
                "name": "AF568",
                "parameters": {"threshold": 120.0},
                "classifiers": [{"name": "ALL"}],
            },
            {
                "name": "AF647",
                "classifiers": [{"name": "af647_gate", "annotations_to_classify": ["Cortex"]}],
            },
        ],
    }
    config_path = tmp_path / "detections.yml"
    config_path.write_text(yaml.safe_dump(config, sort_keys=False))
    return config_path


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir
