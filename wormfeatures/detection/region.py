"""
Selecting one landmark location from a set of surviving points.

Two selection policies are available and can be swapped per detector:

- ``NeighborCountPolicy``: the point with the most other points within
  ``radius`` of it. This is the classic HSN / nerve-ring rule.
- ``LargestRegionPolicy``: points are linked when closer than
  ``radius``; the largest connected group wins and its centroid is the
  location.

``RegionSelector`` implements the grouping. Ties between equally sized
groups go to the group whose centroid is closest to a reference point
(the centroid of all points unless one is given), so the result does not
depend on iteration order.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Type

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import cKDTree

from wormfeatures.errors import PreconditionViolation
from wormfeatures.geometry.spatial_index import SpatialIndex, as_point_cloud
from wormfeatures.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class Region:
    """A connected group of points (``indices`` refer to the input cloud)."""
    points: np.ndarray
    indices: np.ndarray

    @property
    def size(self) -> int:
        return len(self.indices)

    @property
    def centroid(self) -> np.ndarray:
        return self.points.mean(axis=0)


class RegionSelector:
    """
    Radius-linked grouping of a point set.

    Example:
        selector = RegionSelector(link_radius=1.5)
        region = selector.select(np.argwhere(mask))
        if region is not None:
            location = region.centroid
    """

    def __init__(self, link_radius: float):
        if link_radius < 0:
            raise PreconditionViolation(f"link_radius must be >= 0, got {link_radius}")
        self.link_radius = link_radius

    def partition(self, points) -> List[Region]:
        """Split ``points`` into linked groups, largest first."""
        cloud = as_point_cloud(points)
        n = len(cloud)
        if n == 0:
            return []

        pairs = np.asarray(
            cKDTree(cloud).query_pairs(self.link_radius, output_type='ndarray'),
            dtype=np.intp,
        ).reshape(-1, 2)
        graph = coo_matrix(
            (np.ones(len(pairs), dtype=np.int8), (pairs[:, 0], pairs[:, 1])),
            shape=(n, n),
        )
        n_groups, labels = connected_components(graph, directed=False)

        regions = []
        for label in range(n_groups):
            idx = np.flatnonzero(labels == label)
            regions.append(Region(points=cloud[idx], indices=idx))
        regions.sort(key=lambda r: -r.size)
        return regions

    def select(self, points, reference=None) -> Optional[Region]:
        """
        Largest group, ties broken by distance to ``reference``.

        Args:
            points: ``(N, D)`` points
            reference: Tie-break anchor; defaults to the centroid of ``points``

        Returns:
            Region, or None if ``points`` is empty
        """
        regions = self.partition(points)
        if not regions:
            return None
        largest = regions[0].size
        tied = [r for r in regions if r.size == largest]
        if len(tied) > 1:
            if reference is None:
                reference = as_point_cloud(points).mean(axis=0)
            reference = np.asarray(reference, dtype=np.float64)
            tied.sort(key=lambda r: (float(np.linalg.norm(r.centroid - reference)),
                                     int(r.indices[0])))
            logger.debug("%d regions tied at size %d; picked nearest to %s",
                         len(tied), largest, reference)
        return tied[0]


class SelectionPolicy(ABC):
    """Chooses a single location from the points surviving density filtering."""

    def __init__(self, radius: float):
        if radius < 0:
            raise PreconditionViolation(f"radius must be >= 0, got {radius}")
        self.radius = radius

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def select(self, points) -> Optional[np.ndarray]:
        """Return the chosen location, or None if ``points`` is empty."""
        pass


class NeighborCountPolicy(SelectionPolicy):
    """The point with the most other points within ``radius``."""

    @property
    def name(self) -> str:
        return "count"

    def select(self, points) -> Optional[np.ndarray]:
        cloud = as_point_cloud(points)
        if len(cloud) == 0:
            return None
        counts = SpatialIndex(cloud).count_within_each(self.radius)
        best = np.flatnonzero(counts == counts.max())
        if len(best) > 1:
            # Deterministic tie-break: nearest to the centroid of all points
            center = cloud.mean(axis=0)
            dist = np.linalg.norm(cloud[best] - center, axis=1)
            best = best[np.argsort(dist, kind='stable')]
        return cloud[best[0]]


class LargestRegionPolicy(SelectionPolicy):
    """Centroid of the largest radius-linked group."""

    @property
    def name(self) -> str:
        return "largest_region"

    def select(self, points) -> Optional[np.ndarray]:
        region = RegionSelector(self.radius).select(points)
        return None if region is None else region.centroid


_POLICIES: Dict[str, Type[SelectionPolicy]] = {
    "count": NeighborCountPolicy,
    "largest_region": LargestRegionPolicy,
}


def create_policy(name: str, radius: float) -> SelectionPolicy:
    """
    Instantiate a selection policy by name.

    Raises:
        PreconditionViolation: If ``name`` is not a known policy
    """
    if name not in _POLICIES:
        raise PreconditionViolation(
            f"Unknown selection policy {name!r}; available: {sorted(_POLICIES)}"
        )
    return _POLICIES[name](radius)
