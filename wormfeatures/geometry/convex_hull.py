"""
Local convex hulls over sparse, noisy centroid clouds.

A *local* convex hull only looks at the neighbors of a point within
``max_d``: a point is enclosed iff it lies inside the convex hull of those
neighbors. Applied to every density-qualifying centroid, this traces the
body boundary while ignoring isolated outlier centroids that a global hull
would latch onto.

Hull approximations come in nested families ordered by *generosity*: a
level with a larger density divisor (lower required neighbor count) and/or
a larger ``max_d`` admits more points. ``HullSchedule`` enforces that the
levels it holds strictly increase in generosity.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.spatial import Delaunay, QhullError

from wormfeatures.errors import DimensionMismatchError, HullOrderError, PreconditionViolation
from wormfeatures.geometry.spatial_index import SpatialIndex, as_point_cloud
from wormfeatures.utils.logging import get_logger

logger = get_logger(__name__)


def _encloses(neighbors: np.ndarray, point: np.ndarray) -> bool:
    """True if ``point`` is inside (or on) the convex hull of ``neighbors``."""
    if len(neighbors) < point.shape[0] + 1:
        return False
    try:
        tri = Delaunay(neighbors)
    except QhullError:
        # Collinear (2D) or coplanar (3D) neighbors enclose nothing
        return False
    return bool(tri.find_simplex(point) >= 0)


def in_local_convex_hull(point, centroids, max_d: float,
                         index: Optional[SpatialIndex] = None) -> bool:
    """
    Whether ``point`` lies in the local convex hull of ``centroids``.

    Only centroids within ``max_d`` of ``point`` form the hull; centroids
    coinciding with ``point`` are ignored. Fewer than 3 (2D) or 4 (3D)
    neighbors, or a degenerate neighbor set, means "not enclosed".

    Args:
        point: A 2D or 3D point
        centroids: ``(N, D)`` cloud of the same dimensionality
        max_d: Farthest a centroid can be from ``point`` and still count
        index: Optional prebuilt ``SpatialIndex`` over ``centroids``

    Returns:
        bool
    """
    point = np.asarray(point, dtype=np.float64)
    if index is None:
        index = SpatialIndex(centroids)
    if len(index) and point.shape != (index.ndim,):
        raise DimensionMismatchError(
            f"Point has shape {point.shape}, centroids are {index.ndim}D"
        )
    neighbors = index.points_within(point, max_d) if len(index) else index.points
    neighbors = neighbors[np.any(neighbors != point, axis=1)]
    return _encloses(neighbors, point)


@dataclass(frozen=True)
class HullLevel:
    """
    One sensitivity level of the hull family.

    Attributes:
        density_divisor: ``tf``; a centroid qualifies if it has at least
            ``N / density_divisor`` centroids (itself included) within
            ``max_distance``.
        max_distance: ``max_d``; neighborhood radius in pixels.
    """
    density_divisor: float
    max_distance: float

    def __post_init__(self):
        if self.density_divisor <= 0 or self.max_distance <= 0:
            raise PreconditionViolation(
                f"Hull level parameters must be positive, got "
                f"tf={self.density_divisor}, max_d={self.max_distance}"
            )

    def min_neighbors(self, n_points: int) -> float:
        return n_points / self.density_divisor

    def is_more_generous_than(self, other: "HullLevel") -> bool:
        return (
            self.density_divisor >= other.density_divisor
            and self.max_distance >= other.max_distance
            and (self.density_divisor, self.max_distance)
            != (other.density_divisor, other.max_distance)
        )


class HullSchedule(Sequence):
    """
    Hull levels in strictly increasing generosity (level 1 strictest).

    Raises:
        HullOrderError: If any level is not strictly more generous than
            the one before it.
    """

    def __init__(self, levels: Iterable[Union[HullLevel, Tuple[float, float]]]):
        levels = tuple(
            lvl if isinstance(lvl, HullLevel) else HullLevel(*lvl) for lvl in levels
        )
        if not levels:
            raise PreconditionViolation("A hull schedule needs at least one level")
        for i in range(1, len(levels)):
            if not levels[i].is_more_generous_than(levels[i - 1]):
                raise HullOrderError(
                    f"Hull level {i + 1} (tf={levels[i].density_divisor}, "
                    f"max_d={levels[i].max_distance}) is not more generous than "
                    f"level {i} (tf={levels[i - 1].density_divisor}, "
                    f"max_d={levels[i - 1].max_distance})"
                )
        self._levels = levels

    @classmethod
    def from_lists(cls, tf: Sequence[float], max_d: Sequence[float]) -> "HullSchedule":
        """Build from parallel ``tf`` / ``max_d`` lists."""
        if len(tf) != len(max_d):
            raise PreconditionViolation(
                f"tf and max_d must have equal length, got {len(tf)} and {len(max_d)}"
            )
        return cls(zip(tf, max_d))

    def __getitem__(self, i):
        return self._levels[i]

    def __len__(self) -> int:
        return len(self._levels)

    def __repr__(self) -> str:
        body = ", ".join(f"({l.density_divisor}, {l.max_distance})" for l in self._levels)
        return f"HullSchedule([{body}])"


@dataclass(frozen=True, eq=False)
class ConvexHullApproximation:
    """
    A local-hull approximation of a point cloud at one sensitivity level.

    ``member_indices`` index the cloud passed to ``compute_local_hull``;
    members are the density-qualifying points, the boundary is the subset
    of members that no local hull of the other members encloses.
    """
    level: int
    density_divisor: float
    max_distance: float
    points: np.ndarray
    member_indices: np.ndarray
    boundary_indices: np.ndarray

    @property
    def members(self) -> np.ndarray:
        return self.points[self.member_indices]

    @property
    def boundary(self) -> np.ndarray:
        return self.points[self.boundary_indices]

    @property
    def is_empty(self) -> bool:
        return len(self.member_indices) == 0

    def centroid(self) -> Optional[np.ndarray]:
        """Mean of the member points, or None if there are none."""
        if self.is_empty:
            return None
        return self.members.mean(axis=0)

    def extremum_index(self, direction) -> Optional[int]:
        """Index (into the cloud) of the boundary point farthest along ``direction``."""
        candidates = self.boundary_indices if len(self.boundary_indices) else self.member_indices
        if len(candidates) == 0:
            return None
        proj = self.points[candidates] @ np.asarray(direction, dtype=np.float64)
        return int(candidates[int(np.argmax(proj))])


def compute_local_hull(centroids, density_threshold: float, max_d: float,
                       level: int = 0) -> ConvexHullApproximation:
    """
    Filter ``centroids`` down to a local-hull approximation.

    A centroid is a member if at least ``len(centroids) / density_threshold``
    centroids (itself included) lie within ``max_d`` of it, so sparse
    stretches of noise never contribute boundary points. The boundary is the
    set of members that are not enclosed by the local convex hull of the
    other members.

    Args:
        centroids: ``(N, D)`` point cloud
        density_threshold: Density divisor ``tf``
        max_d: Neighborhood radius
        level: Sensitivity level recorded on the result

    Returns:
        ConvexHullApproximation
    """
    cloud = as_point_cloud(centroids)
    n = len(cloud)
    empty = np.empty(0, dtype=np.intp)
    if n == 0:
        return ConvexHullApproximation(level, density_threshold, max_d, cloud, empty, empty)

    counts = SpatialIndex(cloud).count_within_each(max_d)
    member_idx = np.flatnonzero(counts >= n / density_threshold)
    members = cloud[member_idx]

    member_index = SpatialIndex(members)
    boundary_idx = np.array(
        [i for i, p in zip(member_idx, members)
         if not in_local_convex_hull(p, members, max_d, index=member_index)],
        dtype=np.intp,
    )

    logger.debug(
        "Hull level %d (tf=%s, max_d=%s): %d/%d members, %d boundary",
        level, density_threshold, max_d, len(member_idx), n, len(boundary_idx),
    )
    return ConvexHullApproximation(level, density_threshold, max_d, cloud, member_idx, boundary_idx)
