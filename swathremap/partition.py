"""
Spatial partitioning of data space by physical size.

An EarthPartition recursively bisects a box of data coordinates until every
leaf is no larger than a maximum physical size along each axis, as measured
by an earth transform. Each leaf carries an arbitrary payload, for example
the polynomials of a location estimator.

Nodes are stored in an arena of parallel lists indexed by integer node id,
with the root at id 0. The tree is immutable after construction apart from
the leaf payloads. Lookups may use a caller-owned PartitionCache holding the
last leaf found, which speeds up the row-major scans typical of resampling.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from swathremap.exceptions import PartitionError, ValidationError
from swathremap.location import DataLocation
from swathremap.transforms import EarthTransform

logger = logging.getLogger(__name__)

ENCODING_VERSION = 1

# Root boxes longer than this many pixels along an axis are measured through
# intermediate points, so that a swath wrapping the earth is not seen as small
ROOT_SAMPLING_EXTENT = 10


@dataclass(frozen=True)
class PartitionEncoding:
    """
    A compact, versioned encoding of a partition tree.

    The nodes are listed in preorder. ``bits`` holds one flag per node, True
    for a leaf and False for a node whose left and right subtrees follow.
    ``coords`` holds a ``(min, max)`` pair of coordinate lists per node and
    ``data`` the payload per node.
    """

    version: int
    bits: Tuple[bool, ...]
    coords: Tuple[Tuple[Tuple[float, ...], Tuple[float, ...]], ...]
    data: Tuple[Any, ...] = field(default=())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to plain lists and numbers suitable for JSON."""
        return {
            "version": self.version,
            "bits": [bool(b) for b in self.bits],
            "coords": [[list(lo), list(hi)] for lo, hi in self.coords],
            "data": list(self.data),
        }

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "PartitionEncoding":
        version = obj.get("version")
        if version != ENCODING_VERSION:
            raise ValidationError(
                f"Unsupported partition encoding version {version}, expected {ENCODING_VERSION}"
            )
        bits = tuple(bool(b) for b in obj["bits"])
        coords = tuple((tuple(float(v) for v in lo), tuple(float(v) for v in hi))
                       for lo, hi in obj["coords"])
        data = tuple(obj.get("data", ()))
        if len(coords) != len(bits) or (data and len(data) != len(bits)):
            raise ValidationError("Partition encoding lists differ in length")
        return cls(version, bits, coords, data)


class PartitionCache:
    """Remembers the last leaf found by a partition lookup."""

    __slots__ = ("last",)

    def __init__(self):
        self.last: Optional[int] = None

    def clear(self) -> None:
        self.last = None


class EarthPartition:
    """
    A binary partition of a box of data coordinates.

    Parameters
    ----------
    trans : EarthTransform or None
        The transform used to measure physical size. Without a transform
        boxes are split by pixel extent only, using max_dims.
    min_loc, max_loc : DataLocation
        The inclusive corners of the box to partition.
    max_size : float
        The maximum leaf size in kilometers along any axis.
    max_dims : sequence of int, optional
        The maximum leaf extent in pixels along each axis. Boxes longer
        than this are split regardless of their physical size.

    Raises
    ------
    PartitionError
        If a box narrower than one pixel would be needed, or the size of a
        box cannot be determined because neither corner has a valid earth
        location.

    Notes
    -----
    Axes are split in order: a node is split along axis 0 while that is too
    large, and only nodes that are small enough along axis 0 consider axis 1.
    This gives trees that are not balanced in the k-d tree sense.
    """

    def __init__(self,
                 trans: Optional[EarthTransform],
                 min_loc: DataLocation,
                 max_loc: DataLocation,
                 max_size: float,
                 max_dims: Optional[Sequence[int]] = None):
        if min_loc.rank != max_loc.rank:
            raise ValidationError(f"Corner ranks differ: {min_loc.rank} and {max_loc.rank}")
        if max_dims is not None and len(max_dims) != min_loc.rank:
            raise ValidationError(f"Expected {min_loc.rank} maximum dimensions, got {len(max_dims)}")
        if trans is None and max_dims is None:
            raise ValidationError("A partition needs a transform or maximum dimensions")
        self._init_arena(trans, max_size, max_dims)
        self._add_node(min_loc.coords, max_loc.coords)
        self._split(0, is_root=True)
        self._finalize()
        logger.info("Created partition with %d leaves from %s to %s",
                    self.partitions(), min_loc, max_loc)

    def _init_arena(self, trans, max_size, max_dims) -> None:
        self.trans = trans
        self.max_size = max_size
        self.max_dims = None if max_dims is None else tuple(max_dims)
        self._mins: List[np.ndarray] = []
        self._maxs: List[np.ndarray] = []
        self._children: List[Optional[Tuple[int, int]]] = []
        self._data: List[Any] = []

    def _add_node(self, lo: np.ndarray, hi: np.ndarray) -> int:
        self._mins.append(np.array(lo, dtype=float))
        self._maxs.append(np.array(hi, dtype=float))
        self._children.append(None)
        self._data.append(None)
        return len(self._mins) - 1

    def _split(self, root: int, is_root: bool) -> None:
        stack = [(root, is_root)]
        while stack:
            node, node_is_root = stack.pop()
            lo, hi = self._mins[node], self._maxs[node]
            for axis in range(lo.size):
                extent = hi[axis] - lo[axis]
                if abs(extent) < 1:
                    raise PartitionError(
                        f"Degenerate partition detected between {DataLocation(lo)} and {DataLocation(hi)}"
                    )
                size = self._partition_size(lo, hi, axis, node_is_root)
                if np.isnan(size):
                    raise PartitionError(
                        f"Cannot determine partition size between {DataLocation(lo)} and {DataLocation(hi)}"
                    )
                too_long = self.max_dims is not None and extent > self.max_dims[axis]
                if size > self.max_size or too_long:
                    centre = (lo[axis] + hi[axis]) / 2
                    left_hi = hi.copy()
                    left_hi[axis] = centre
                    right_lo = lo.copy()
                    right_lo[axis] = centre
                    left = self._add_node(lo, left_hi)
                    right = self._add_node(right_lo, hi)
                    self._children[node] = (left, right)
                    stack.append((right, False))
                    stack.append((left, False))
                    break

    def _partition_size(self, lo: np.ndarray, hi: np.ndarray, axis: int, is_root: bool) -> float:
        """Physical size of a box along one axis in kilometers, NaN if unknown."""
        extent = hi[axis] - lo[axis]
        if self.trans is None:
            return 0.0
        if is_root and extent > ROOT_SAMPLING_EXTENT:
            points = np.tile(lo, (5, 1))
            points[:, axis] = lo[axis] + extent * np.array([0.0, 0.25, 0.5, 0.75, 1.0])
            points[4] = hi
            dist = self.trans.distances(points[:-1, 0], points[:-1, 1],
                                        points[1:, 0], points[1:, 1])
            size = float(np.sum(dist))
        else:
            axis_max = lo.copy()
            axis_max[axis] = hi[axis]
            size = self.trans.distance(DataLocation(lo), DataLocation(axis_max))
        if not np.isnan(size):
            return size

        # Fall back to the pixel resolution at a corner with a valid location
        for corner in (lo, hi):
            loc = DataLocation(corner)
            if self.trans.data_to_earth(loc).is_valid():
                return float(self.trans.get_resolution(loc)[axis] * extent)
        return np.nan

    def _finalize(self) -> None:
        """Build the numpy arrays used by vectorised lookups."""
        self._min_array = np.array(self._mins)
        self._max_array = np.array(self._maxs)
        self._left = np.array([c[0] if c else -1 for c in self._children], dtype=np.intp)
        self._right = np.array([c[1] if c else -1 for c in self._children], dtype=np.intp)

    @property
    def rank(self) -> int:
        return self._mins[0].size

    def size(self) -> int:
        """The total number of nodes."""
        return len(self._mins)

    def partitions(self) -> int:
        """The number of leaves."""
        return sum(1 for c in self._children if c is None)

    def is_leaf(self, node: int) -> bool:
        return self._children[node] is None

    def get_children(self, node: int) -> Optional[Tuple[int, int]]:
        return self._children[node]

    def get_min(self, node: int = 0) -> DataLocation:
        return DataLocation(self._mins[node])

    def get_max(self, node: int = 0) -> DataLocation:
        return DataLocation(self._maxs[node])

    def get_data(self, node: int) -> Any:
        return self._data[node]

    def set_data(self, node: int, data: Any) -> None:
        self._data[node] = data

    def leaves(self) -> List[int]:
        """The leaf node ids in preorder."""
        return [n for n in self.preorder() if self._children[n] is None]

    def preorder(self) -> List[int]:
        order = []
        stack = [0]
        while stack:
            node = stack.pop()
            order.append(node)
            children = self._children[node]
            if children is not None:
                stack.append(children[1])
                stack.append(children[0])
        return order

    def _contains(self, node: int, coords: np.ndarray) -> bool:
        return bool(np.all(coords >= self._mins[node]) and np.all(coords <= self._maxs[node]))

    def _owns(self, node: int, coords: np.ndarray) -> bool:
        """
        True if the leaf is the one a full descent would find for the point.

        A point on a split plane belongs to the lower side, so a leaf owns the
        points on its minimum faces only where those are faces of the root.
        """
        lo = self._mins[node]
        on_face = (coords == lo) & (lo != self._mins[0])
        return self._contains(node, coords) and not np.any(on_face)

    def find_partition(self, loc: DataLocation,
                       cache: Optional[PartitionCache] = None) -> Optional[int]:
        """
        Find the leaf containing a data location.

        Parameters
        ----------
        loc : DataLocation
            The location to find.
        cache : PartitionCache, optional
            Caller-owned cache of the last leaf found, checked first.

        Returns
        -------
        int or None
            The leaf node id, or None if the location is outside the tree.
        """
        coords = loc.coords
        if coords.size != self.rank or not self._contains(0, coords):
            return None
        if cache is not None and cache.last is not None and self._owns(cache.last, coords):
            return cache.last

        node = 0
        while self._children[node] is not None:
            left, right = self._children[node]
            node = left if self._contains(left, coords) else right
        if cache is not None:
            cache.last = node
        return node

    def find_partitions(self, coords: np.ndarray) -> np.ndarray:
        """
        Find the leaves containing many data locations.

        Parameters
        ----------
        coords : np.ndarray
            Array of shape (N, rank).

        Returns
        -------
        np.ndarray
            Leaf node ids, -1 for locations outside the tree.
        """
        coords = np.asarray(coords, dtype=float).reshape(-1, self.rank)
        inside = (np.all(coords >= self._min_array[0], axis=1) &
                  np.all(coords <= self._max_array[0], axis=1))
        ids = np.where(inside, 0, -1)
        active = inside & (self._left[np.maximum(ids, 0)] >= 0)
        while np.any(active):
            nodes = ids[active]
            left = self._left[nodes]
            pts = coords[active]
            in_left = (np.all(pts >= self._min_array[left], axis=1) &
                       np.all(pts <= self._max_array[left], axis=1))
            ids[active] = np.where(in_left, left, self._right[nodes])
            active = (ids >= 0) & (self._left[np.maximum(ids, 0)] >= 0)
        return ids

    def get_encoding(self) -> PartitionEncoding:
        """Encode the tree structure, corners and payloads in preorder."""
        order = self.preorder()
        bits = tuple(self._children[n] is None for n in order)
        coords = tuple((tuple(self._mins[n].tolist()), tuple(self._maxs[n].tolist()))
                       for n in order)
        data = tuple(self._data[n] for n in order)
        return PartitionEncoding(ENCODING_VERSION, bits, coords, data)

    @classmethod
    def from_encoding(cls, encoding: PartitionEncoding,
                      trans: Optional[EarthTransform] = None) -> "EarthPartition":
        """
        Rebuild a partition from its encoding without measuring any sizes.
        """
        if encoding.version != ENCODING_VERSION:
            raise ValidationError(
                f"Unsupported partition encoding version {encoding.version}, "
                f"expected {ENCODING_VERSION}"
            )
        if not encoding.bits:
            raise ValidationError("Empty partition encoding")
        part = cls.__new__(cls)
        part._init_arena(trans, np.nan, None)
        data = encoding.data if encoding.data else (None,) * len(encoding.bits)

        for lo, hi in encoding.coords:
            part._add_node(lo, hi)
        # Rebuild child links: every internal node is followed by its left
        # subtree, then its right subtree
        pending: List[int] = []
        for node, is_leaf in enumerate(encoding.bits):
            part._data[node] = data[node]
            if node > 0 and not pending:
                raise ValidationError("Partition encoding has nodes after the last leaf")
            if pending:
                parent = pending[-1]
                children = part._children[parent]
                if children is None:
                    part._children[parent] = (node, -1)
                else:
                    part._children[parent] = (children[0], node)
                    pending.pop()
            if not is_leaf:
                pending.append(node)
        if pending:
            raise ValidationError("Partition encoding ends inside an internal node")
        part._finalize()
        return part
