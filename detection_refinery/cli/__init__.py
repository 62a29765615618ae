"""Command-line interface for Detection-Refinery.

Example Usage
-------------
    # From command line:
    detection-refinery --help
    detection-refinery quantify --input objects.geojson --out results/ --config detections.yml
    detection-refinery check-config --config detections.yml
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
