"""
Radius queries over 2D/3D point clouds.

A thin wrapper over ``scipy.spatial.cKDTree`` so every detector shares the
same conventions: point clouds are ``(N, D)`` float arrays with ``D`` in
``{2, 3}``, coordinates are ``[x, y(, z)]`` and radius tests are
inclusive (``distance <= radius``). Instances are built once per frame
and never mutated.
"""

from typing import Optional, Sequence, Union

import numpy as np
from scipy.spatial import cKDTree

from wormfeatures.errors import DimensionMismatchError

PointLike = Union[Sequence[float], np.ndarray]


def as_point_cloud(points, ndim: Optional[int] = None) -> np.ndarray:
    """
    Coerce ``points`` to an ``(N, D)`` float64 array.

    Args:
        points: Sequence of points or array-like
        ndim: Expected dimensionality. Used for the shape of empty clouds
            and checked for non-empty ones.

    Returns:
        ``(N, D)`` float64 array (a new array, never a view of the input)

    Raises:
        DimensionMismatchError: If the input is not a 2D/3D point list
    """
    arr = np.array(points, dtype=np.float64)
    if arr.size == 0:
        return np.empty((0, ndim if ndim is not None else 2), dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] not in (2, 3):
        raise DimensionMismatchError(
            f"Expected an (N, 2) or (N, 3) point cloud, got shape {arr.shape}"
        )
    if ndim is not None and arr.shape[1] != ndim:
        raise DimensionMismatchError(
            f"Expected {ndim}D points, got {arr.shape[1]}D"
        )
    return arr


class SpatialIndex:
    """
    Immutable radius-query index over a point cloud.

    Example:
        index = SpatialIndex(centroids)
        index.count_within([120.0, 80.0], radius=30)
        counts = index.count_within_each(radius=30)  # one per point
    """

    def __init__(self, points, ndim: Optional[int] = None):
        self.points = as_point_cloud(points, ndim)
        self.points.setflags(write=False)
        self.ndim = self.points.shape[1]
        self._tree = cKDTree(self.points) if len(self.points) else None

    def __len__(self) -> int:
        return len(self.points)

    def _check_center(self, center: PointLike) -> np.ndarray:
        center = np.asarray(center, dtype=np.float64)
        if center.shape != (self.ndim,):
            raise DimensionMismatchError(
                f"Query point has shape {center.shape}, index holds {self.ndim}D points"
            )
        return center

    def indices_within(self, center: PointLike, radius: float) -> np.ndarray:
        """Sorted indices of points within ``radius`` of ``center``."""
        center = self._check_center(center)
        if self._tree is None:
            return np.empty(0, dtype=np.intp)
        idx = self._tree.query_ball_point(center, radius)
        return np.array(sorted(idx), dtype=np.intp)

    def points_within(self, center: PointLike, radius: float) -> np.ndarray:
        """Points within ``radius`` of ``center`` as an ``(M, D)`` array."""
        return self.points[self.indices_within(center, radius)]

    def count_within(self, center: PointLike, radius: float) -> int:
        """Number of points within ``radius`` of ``center``."""
        center = self._check_center(center)
        if self._tree is None:
            return 0
        return int(self._tree.query_ball_point(center, radius, return_length=True))

    def count_within_each(self, radius: float, centers=None) -> np.ndarray:
        """
        Vectorized ``count_within`` for many centers.

        Args:
            radius: Query radius
            centers: ``(M, D)`` query points. Defaults to the indexed points
                themselves, in which case each count includes the point.

        Returns:
            ``(M,)`` int array of counts
        """
        centers = self.points if centers is None else as_point_cloud(centers, self.ndim)
        if self._tree is None or len(centers) == 0:
            return np.zeros(len(centers), dtype=np.intp)
        counts = self._tree.query_ball_point(centers, radius, return_length=True)
        return np.asarray(counts, dtype=np.intp)

    def nearest(self, center: PointLike):
        """Return ``(distance, index)`` of the nearest point, or ``(inf, -1)`` if empty."""
        center = self._check_center(center)
        if self._tree is None:
            return float('inf'), -1
        dist, idx = self._tree.query(center)
        return float(dist), int(idx)
