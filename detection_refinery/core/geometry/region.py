"""Region: immutable planar shapes backed by shapely.

Every object stored in the hierarchy carries a Region. The detection and
spatial-index code only talk to shapes through this class, so the rules
for insideness, overlap and degenerate shapes live in one place.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Sequence, Tuple

import shapely
from shapely.geometry import MultiPoint, Point, Polygon, box, mapping, shape
from shapely.geometry.base import BaseGeometry

Bounds = Tuple[float, float, float, float]
Coordinate = Tuple[float, float]

_POINT_TYPES = ("Point", "MultiPoint")


class Region:
    """A shape in image coordinates.

    Parameters
    ----------
    geometry : BaseGeometry
        Any shapely geometry. Empty geometries are allowed and represent
        regions that were consumed by a difference operation.
    """

    __slots__ = ("_geometry",)

    def __init__(self, geometry: BaseGeometry):
        if not isinstance(geometry, BaseGeometry):
            raise TypeError(f"Expected a shapely geometry, got {type(geometry).__name__}")
        self._geometry = geometry

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def rectangle(cls, x: float, y: float, width: float, height: float) -> "Region":
        """Axis-aligned rectangle with its minimum corner at (x, y)."""
        return cls(box(x, y, x + width, y + height))

    @classmethod
    def point(cls, x: float, y: float) -> "Region":
        return cls(Point(x, y))

    @classmethod
    def points(cls, coordinates: Iterable[Coordinate]) -> "Region":
        return cls(MultiPoint(list(coordinates)))

    @classmethod
    def polygon(cls, shell: Sequence[Coordinate], holes: Sequence[Sequence[Coordinate]] = ()) -> "Region":
        return cls(Polygon(shell, holes))

    @classmethod
    def empty(cls) -> "Region":
        return cls(Polygon())

    @classmethod
    def from_geojson(cls, geometry: Dict[str, Any]) -> "Region":
        """Create a region from a GeoJSON geometry mapping."""
        return cls(shape(geometry))

    def to_geojson(self) -> Dict[str, Any]:
        return mapping(self._geometry)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def geometry(self) -> BaseGeometry:
        return self._geometry

    @property
    def is_empty(self) -> bool:
        return self._geometry.is_empty

    @property
    def is_point(self) -> bool:
        """True for point and multi-point shapes."""
        return self._geometry.geom_type in _POINT_TYPES

    @property
    def n_points(self) -> int:
        """Number of vertices describing the shape."""
        if self._geometry.geom_type == "MultiPoint":
            return len(self._geometry.geoms)
        return int(shapely.get_num_coordinates(self._geometry))

    @property
    def area(self) -> float:
        return float(self._geometry.area)

    @property
    def bounds(self) -> Bounds:
        """Bounding box as (x, y, width, height).

        An empty region reports a zero-size box at the origin.
        """
        if self.is_empty:
            return (0.0, 0.0, 0.0, 0.0)
        min_x, min_y, max_x, max_y = self._geometry.bounds
        return (min_x, min_y, max_x - min_x, max_y - min_y)

    @property
    def centroid(self) -> Coordinate:
        """Centroid as (x, y); NaN coordinates for empty regions."""
        if self.is_empty:
            return (math.nan, math.nan)
        c = self._geometry.centroid
        return (c.x, c.y)

    # ------------------------------------------------------------------
    # Predicates and set operations
    # ------------------------------------------------------------------

    def contains_point(self, x: float, y: float) -> bool:
        """Interior containment of a coordinate.

        Points lying exactly on the boundary are not contained, and shapes
        without an area (points, lines) never contain anything.
        """
        if self.is_empty or self.area == 0:
            return False
        return self._geometry.contains(Point(x, y))

    def intersects(self, other: "Region") -> bool:
        return self._geometry.intersects(other._geometry)

    def covers(self, other: "Region") -> bool:
        return self._geometry.covers(other._geometry)

    def intersection(self, other: "Region") -> "Region":
        return Region(self._geometry.intersection(other._geometry))

    def difference(self, other: "Region") -> "Region":
        return Region(self._geometry.difference(other._geometry))

    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Region):
            return NotImplemented
        if self.is_empty or other.is_empty:
            return self.is_empty and other.is_empty
        return self._geometry.equals(other._geometry)

    def __hash__(self) -> int:
        return hash(self.bounds)

    def __repr__(self) -> str:
        return f"Region({self._geometry.wkt})"
