"""
Tests for point-cloud geometry.

Tests wormfeatures/geometry/spatial_index.py and
wormfeatures/geometry/convex_hull.py.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from wormfeatures.errors import DimensionMismatchError, HullOrderError, PreconditionViolation
from wormfeatures.geometry import (
    HullLevel,
    HullSchedule,
    SpatialIndex,
    as_point_cloud,
    compute_local_hull,
    in_local_convex_hull,
)


def grid_2d(n=5, spacing=1.0):
    xs, ys = np.meshgrid(np.arange(n) * spacing, np.arange(n) * spacing)
    return np.column_stack([xs.ravel(), ys.ravel()])


class TestAsPointCloud:
    """Tests for as_point_cloud."""

    def test_list_of_points(self):
        """Test conversion of nested lists to a float array."""
        cloud = as_point_cloud([[1, 2], [3, 4]])
        assert cloud.shape == (2, 2)
        assert cloud.dtype == np.float64

    def test_empty_uses_requested_dimension(self):
        """Test that an empty input gets the requested number of columns."""
        assert as_point_cloud([], ndim=3).shape == (0, 3)
        assert as_point_cloud([]).shape == (0, 2)

    def test_returns_copy(self):
        """Test that the source array is not aliased."""
        src = np.zeros((3, 2))
        cloud = as_point_cloud(src)
        cloud[0, 0] = 5
        assert src[0, 0] == 0

    def test_rejects_1d_points(self):
        """Test that one-dimensional points are rejected."""
        with pytest.raises(DimensionMismatchError):
            as_point_cloud([[1], [2]])

    def test_rejects_wrong_dimension(self):
        """Test that points of the wrong dimension are rejected."""
        with pytest.raises(DimensionMismatchError):
            as_point_cloud([[1, 2]], ndim=3)


class TestSpatialIndex:
    """Tests for SpatialIndex radius queries."""

    def test_radius_is_inclusive(self):
        """Test that points exactly at the radius are counted."""
        index = SpatialIndex([[0, 0], [1, 0], [2, 0]])
        assert index.count_within([0, 0], 1.0) == 2
        assert list(index.indices_within([0, 0], 1.0)) == [0, 1]

    def test_points_within(self):
        """Test that points_within returns the coordinates in range."""
        index = SpatialIndex([[0, 0], [5, 5], [0.5, 0.5]])
        pts = index.points_within([0, 0], 1.0)
        assert pts.shape == (2, 2)

    def test_count_within_each_includes_self(self):
        """Test that per-point counts include the point itself."""
        index = SpatialIndex([[0, 0], [10, 10]])
        assert list(index.count_within_each(1.0)) == [1, 1]

    def test_count_within_each_other_centers(self):
        """Test counting around centers that are not indexed points."""
        index = SpatialIndex(grid_2d(3))
        counts = index.count_within_each(0.5, centers=[[0, 0], [100, 100]])
        assert list(counts) == [1, 0]

    def test_empty_index(self):
        """Test an index built from no points."""
        index = SpatialIndex(np.empty((0, 3)))
        assert len(index) == 0
        assert index.ndim == 3
        assert index.count_within([0, 0, 0], 10) == 0
        assert len(index.indices_within([0, 0, 0], 10)) == 0
        assert index.nearest([0, 0, 0]) == (float('inf'), -1)

    def test_nearest(self):
        """Test the nearest-neighbor query."""
        index = SpatialIndex([[0, 0, 0], [3, 4, 0]])
        dist, idx = index.nearest([3, 4, 1])
        assert idx == 1
        assert dist == pytest.approx(1.0)

    def test_query_dimension_mismatch(self):
        """Test that a 2D query against a 3D index is rejected."""
        index = SpatialIndex([[0, 0, 0], [1, 1, 1]])
        with pytest.raises(DimensionMismatchError):
            index.count_within([0, 0], 1.0)

    def test_points_are_read_only(self):
        """Test that indexed points cannot be modified."""
        index = SpatialIndex([[0, 0], [1, 1]])
        with pytest.raises(ValueError):
            index.points[0, 0] = 3


class TestInLocalConvexHull:
    """Tests for in_local_convex_hull."""

    def test_center_of_grid_is_enclosed(self):
        """Test that an interior grid point is inside its local hull."""
        assert in_local_convex_hull([2, 2], grid_2d(5), max_d=1.5)

    def test_corner_of_grid_is_not_enclosed(self):
        """Test that a grid corner is on the boundary."""
        assert not in_local_convex_hull([0, 0], grid_2d(5), max_d=1.5)

    def test_far_point_is_not_enclosed(self):
        """Test that a point far from the cloud is not enclosed."""
        assert not in_local_convex_hull([50, 50], grid_2d(5), max_d=10)

    def test_too_few_neighbors(self):
        """Test that two neighbors cannot enclose a 2D point."""
        # Only two neighbors within max_d
        pts = np.array([[0, 0], [1, 0], [-1, 0], [10, 10]])
        assert not in_local_convex_hull([0, 0], pts, max_d=1.5)

    def test_collinear_neighbors(self):
        """Test that collinear neighbors do not enclose a point."""
        pts = np.array([[-2, 0], [-1, 0], [1, 0], [2, 0]])
        assert not in_local_convex_hull([0, 0], pts, max_d=3)

    def test_point_on_hull_edge_counts_as_enclosed(self):
        """Test that a point on a hull edge is enclosed."""
        pts = np.array([[0, 0], [2, 0], [2, 2], [0, 2]])
        assert in_local_convex_hull([1, 0], pts, max_d=5)

    def test_3d_cube(self):
        """Test the hull check in 3D."""
        corners = np.array([[x, y, z] for x in (0, 2) for y in (0, 2) for z in (0, 2)], dtype=float)
        assert in_local_convex_hull([1, 1, 1], corners, max_d=2)
        assert not in_local_convex_hull([3, 1, 1], corners, max_d=5)

    def test_3d_coplanar_neighbors(self):
        """Test that coplanar neighbors do not enclose a 3D point."""
        square = np.array([[0, 0, 0], [2, 0, 0], [2, 2, 0], [0, 2, 0], [1, 1, 0]])
        assert not in_local_convex_hull([1, 1, 0], square, max_d=3)

    def test_dimension_mismatch(self):
        """Test that point and cloud dimensions must match."""
        with pytest.raises(DimensionMismatchError):
            in_local_convex_hull([1, 1], np.zeros((4, 3)), max_d=1)

    def test_reuses_prebuilt_index(self):
        """Test that a prebuilt SpatialIndex can be passed in."""
        pts = grid_2d(5)
        index = SpatialIndex(pts)
        assert in_local_convex_hull([2, 2], pts, 1.5, index=index)


class TestHullSchedule:
    """Tests for HullLevel / HullSchedule ordering."""

    def test_increasing_generosity_accepted(self):
        """Test a correctly ordered schedule."""
        schedule = HullSchedule.from_lists([10, 10, 30], [30, 50, 50])
        assert len(schedule) == 3
        assert schedule[0] == HullLevel(10, 30)
        assert schedule[2].min_neighbors(150) == pytest.approx(5.0)

    def test_decreasing_rejected(self):
        """Test that a reversed schedule is rejected."""
        with pytest.raises(HullOrderError):
            HullSchedule.from_lists([30, 10, 10], [50, 50, 30])

    def test_equal_levels_rejected(self):
        """Test that repeated levels are rejected."""
        with pytest.raises(HullOrderError):
            HullSchedule([(10, 30), (10, 30)])

    def test_mixed_direction_rejected(self):
        """Test that a level trading tf for max_d is rejected."""
        # Higher tf but smaller max_d is not unambiguously more generous
        with pytest.raises(HullOrderError):
            HullSchedule([(10, 50), (30, 30)])

    def test_hull_order_error_is_precondition_violation(self):
        """Test that HullOrderError is a PreconditionViolation."""
        with pytest.raises(PreconditionViolation):
            HullSchedule([(10, 50), (10, 30)])

    def test_non_positive_level(self):
        """Test that a zero density divisor is rejected."""
        with pytest.raises(PreconditionViolation):
            HullLevel(0, 30)

    def test_length_mismatch(self):
        """Test that tf and max_d lists must have the same length."""
        with pytest.raises(PreconditionViolation):
            HullSchedule.from_lists([10, 10], [30])

    def test_empty_schedule(self):
        """Test that a schedule needs at least one level."""
        with pytest.raises(PreconditionViolation):
            HullSchedule([])


class TestComputeLocalHull:
    """Tests for compute_local_hull."""

    def test_grid_boundary(self):
        """Test that a grid's local hull boundary contains its corners."""
        pts = grid_2d(5)
        hull = compute_local_hull(pts, density_threshold=1e6, max_d=1.5)
        assert len(hull.member_indices) == 25
        boundary = {tuple(p) for p in hull.boundary}
        corners = {(0.0, 0.0), (0.0, 4.0), (4.0, 0.0), (4.0, 4.0)}
        assert corners <= boundary
        assert (2.0, 2.0) not in boundary

    def test_sparse_outlier_excluded(self):
        """Test that an isolated point is not a hull member."""
        pts = np.vstack([grid_2d(5), [[40, 40]]])
        # 26 points / tf 5 -> at least 5.2 neighbors within 1.5
        hull = compute_local_hull(pts, density_threshold=5, max_d=1.5)
        assert 25 not in set(hull.member_indices)

    def test_empty_cloud(self):
        """Test that an empty cloud gives an empty hull at the requested level."""
        hull = compute_local_hull(np.empty((0, 2)), 10, 30, level=2)
        assert hull.is_empty
        assert hull.level == 2
        assert hull.centroid() is None
        assert hull.extremum_index([1, 0]) is None

    def test_extremum_index(self):
        """Test picking the boundary point furthest along a direction."""
        pts = grid_2d(5)
        hull = compute_local_hull(pts, 1e6, 1.5)
        idx = hull.extremum_index([1.0, 0.01])
        assert tuple(pts[idx]) == (4.0, 4.0)

    def test_centroid(self):
        """Test the hull member centroid."""
        hull = compute_local_hull(grid_2d(5), 1e6, 1.5)
        assert np.allclose(hull.centroid(), [2.0, 2.0])

    def test_more_generous_level_has_more_members(self, worm_centroids):
        """Test that a more generous level keeps every stricter member."""
        strict = compute_local_hull(worm_centroids, 10, 30)
        generous = compute_local_hull(worm_centroids, 30, 50)
        assert set(strict.member_indices) <= set(generous.member_indices)
        assert len(generous.member_indices) > len(strict.member_indices)
