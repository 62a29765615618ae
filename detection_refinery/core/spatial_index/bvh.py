"""Bounding volume hierarchy over objects with a shape.

The index answers one question quickly: which stored object has its
centroid inside a query shape, and, if several do, which one is the
closest to the query's centroid. It is built top-down once, by splitting
the enclosing box into four equal squares and distributing objects by
centroid, and is never updated in place; owners rebuild it wholesale.

Nodes form a small tagged union:

- ``Leaf``: exactly one stored object
- ``Internal``: a bounding box and up to four sub-nodes (more only when
  the maximum depth is reached and the remaining objects are listed flat)
- ``EMPTY``: the index over zero objects

See https://en.wikipedia.org/wiki/Bounding_volume_hierarchy
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Generic, Iterable, Iterator, List, Optional, Tuple, TypeVar, Union

import numpy as np

from ..errors import IllegalConfiguration, UnsupportedObjectShape
from ..geometry import Bounds, Coordinate, Region

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 6

T = TypeVar("T")


@dataclass(frozen=True)
class Leaf:
    """Node holding a single object, with its centroid and box cached."""

    obj: Any
    centroid: Coordinate
    bbox: Bounds


@dataclass(frozen=True)
class Internal:
    """Node holding the box enclosing all of its descendants."""

    bbox: Bounds
    children: Tuple["Node", ...]


class _Empty:
    """Root of an index storing nothing."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EMPTY"


EMPTY = _Empty()

Node = Union[Leaf, Internal, _Empty]


def _region_of(obj: Any) -> Region:
    return obj if isinstance(obj, Region) else obj.region


def _is_degenerate(bbox: Bounds) -> bool:
    return bbox[2] <= 0 or bbox[3] <= 0


def _boxes_intersect(a: Bounds, b: Bounds) -> bool:
    """Strict box overlap; boxes that only touch do not intersect."""
    ax, ay, aw, ah = a
    bx, by, bw, bh = b
    return bx + bw > ax and by + bh > ay and bx < ax + aw and by < ay + ah


def node_depth(node: Node) -> int:
    """Maximum depth below a node: 0 for a leaf, -1 for EMPTY."""
    if isinstance(node, Leaf):
        return 0
    if isinstance(node, Internal):
        return max((node_depth(child) for child in node.children), default=-2) + 1
    return -1


class _Query:
    """Pre-computed facts about a query shape."""

    __slots__ = ("region", "bbox", "centroid", "point_like")

    def __init__(self, region: Region):
        self.region = region
        self.bbox = region.bounds
        self.centroid = region.centroid
        self.point_like = region.is_point

    def skips(self, bbox: Bounds) -> bool:
        """Whether a node with this box can be pruned."""
        if self.point_like or _is_degenerate(bbox) or _is_degenerate(self.bbox):
            return False
        return not _boxes_intersect(bbox, self.bbox)

    def matches(self, leaf: Leaf) -> bool:
        if self.point_like:
            return self.bbox[0] == leaf.centroid[0] and self.bbox[1] == leaf.centroid[1]
        if self.skips(leaf.bbox):
            return False
        return self.region.contains_point(*leaf.centroid)


class SpatialIndex(Generic[T]):
    """Immutable BVH over objects exposing a ``region`` (or bare Regions).

    Parameters
    ----------
    objects : Iterable
        Objects to store. Each must have a non-empty region; multi-point
        shapes are not supported.
    max_depth : int
        Maximum number of levels below the root (default: 6). Beyond it the
        remaining objects are listed flat.

    Raises
    ------
    IllegalConfiguration
        If max_depth < 1
    UnsupportedObjectShape
        If an object is empty or is a point shape with several vertices

    Example
    -------
    >>> cells = [Region.rectangle(x, y, 1, 1) for x in range(4) for y in range(4)]
    >>> index = SpatialIndex(cells, max_depth=2)
    >>> index.depth()
    2
    >>> index.overlapping(Region.rectangle(0, 0, 1, 1)).centroid
    (0.5, 0.5)
    """

    def __init__(self, objects: Iterable[T] = (), max_depth: int = DEFAULT_MAX_DEPTH):
        if not isinstance(max_depth, (int, np.integer)) or max_depth < 1:
            raise IllegalConfiguration(
                "Spatial index maximum depth must be at least 1",
                expected="max_depth >= 1",
                found=max_depth,
            )
        self.max_depth = int(max_depth)
        objects = list(objects)
        self._size = len(objects)
        self._ids = frozenset(id(obj) for obj in objects)
        self.root: Node = self._build_root(objects) if objects else EMPTY

    @classmethod
    def build(cls, objects: Iterable[T], max_depth: int = DEFAULT_MAX_DEPTH) -> "SpatialIndex[T]":
        return cls(objects, max_depth)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _build_root(self, objects: List[T]) -> Node:
        leaves = []
        for obj in objects:
            region = _region_of(obj)
            if region.is_empty:
                raise UnsupportedObjectShape(f"Cannot index an object with an empty shape: {obj}")
            if region.is_point and region.n_points > 1:
                raise UnsupportedObjectShape(
                    "Cannot index point objects with multiple points",
                    expected="1 point",
                    found=f"{region.n_points} points",
                )
            leaves.append(Leaf(obj=obj, centroid=region.centroid, bbox=region.bounds))

        centroids = np.array([leaf.centroid for leaf in leaves], dtype=float)
        boxes = np.array([leaf.bbox for leaf in leaves], dtype=float)
        lower = boxes[:, :2]
        upper = boxes[:, :2] + boxes[:, 2:]

        def build(idx: np.ndarray, levels: int) -> Node:
            if idx.size == 1:
                return leaves[idx[0]]
            min_x, min_y = lower[idx].min(axis=0)
            max_x, max_y = upper[idx].max(axis=0)
            bbox = (float(min_x), float(min_y), float(max_x - min_x), float(max_y - min_y))
            if levels == 1 or _is_degenerate(bbox):
                return Internal(bbox, tuple(leaves[i] for i in idx))

            # four equal squares anchored at the minimum corner; a centroid on
            # the far edge of the box belongs to the far square
            length = max(bbox[2], bbox[3]) / 2
            far_x = centroids[idx, 0] >= min_x + length
            far_y = centroids[idx, 1] >= min_y + length
            quadrant = far_x.astype(int) + 2 * far_y.astype(int)

            children = []
            for q in range(4):
                members = idx[quadrant == q]
                if members.size:
                    children.append(build(members, levels - 1))
            return Internal(bbox, tuple(children))

        root = build(np.arange(len(leaves)), self.max_depth)
        logger.debug(f"Built spatial index over {len(leaves)} objects (depth {node_depth(root)})")
        return root

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def overlapping(self, obj: Any) -> Optional[T]:
        """Stored object whose centroid lies inside the given object's shape.

        Follows Region.contains_point for insideness. If several stored
        centroids are inside, the one closest to the query's centroid is
        returned.

        Parameters
        ----------
        obj : object with a ``region``, or a Region
            The shape to search an overlap for

        Returns
        -------
        object or None
            The closest overlapping object, or None if there is no overlap
        """
        if self.root is EMPTY:
            return None
        region = _region_of(obj)
        if region.is_empty:
            return None
        query = _Query(region)

        matches: List[Leaf] = []
        stack: List[Node] = [self.root]
        while stack:
            node = stack.pop()
            if isinstance(node, Leaf):
                if query.matches(node):
                    matches.append(node)
            elif not query.skips(node.bbox):
                stack.extend(reversed(node.children))

        if not matches:
            return None
        if len(matches) == 1:
            return matches[0].obj
        centroids = np.array([leaf.centroid for leaf in matches], dtype=float)
        distances = np.hypot(centroids[:, 0] - query.centroid[0], centroids[:, 1] - query.centroid[1])
        return matches[int(np.argmin(distances))].obj

    def enumerate(self) -> Iterator[T]:
        """Lazily visit every stored object, in no particular order."""
        stack: List[Node] = [self.root]
        while stack:
            node = stack.pop()
            if isinstance(node, Leaf):
                yield node.obj
            elif isinstance(node, Internal):
                stack.extend(reversed(node.children))

    def depth(self) -> int:
        """Maximum depth of the hierarchy; -1 when the index is empty."""
        return node_depth(self.root)

    @property
    def bbox(self) -> Bounds:
        """Box enclosing all stored objects."""
        if isinstance(self.root, (Leaf, Internal)):
            return self.root.bbox
        return (0.0, 0.0, 0.0, 0.0)

    def is_empty(self) -> bool:
        return self.root is EMPTY

    def __iter__(self) -> Iterator[T]:
        return self.enumerate()

    def __len__(self) -> int:
        return self._size

    def __contains__(self, obj: Any) -> bool:
        return id(obj) in self._ids

    def __repr__(self) -> str:
        return f"SpatialIndex(n={self._size}, depth={self.depth()}, max_depth={self.max_depth})"
