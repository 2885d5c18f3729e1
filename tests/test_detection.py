"""
Tests for density-based landmark detection.

Tests wormfeatures/detection/density.py, landmarks.py and region.py.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from wormfeatures.errors import DimensionMismatchError, PreconditionViolation
from wormfeatures.detection.density import DensityVolume, dense_mask, neighbor_fraction
from wormfeatures.detection.landmarks import (
    find_gut_granules,
    find_gut_granules_with_config,
    find_hsn,
    find_nerve_ring,
    find_nerve_ring_with_config,
    hsn_candidates,
)
from wormfeatures.detection.region import (
    LargestRegionPolicy,
    NeighborCountPolicy,
    RegionSelector,
    create_policy,
)
from wormfeatures.utils.config import DensityParams, GutConfig, HsnConfig, NerveRingConfig


def hsn_config(selection="count"):
    return HsnConfig(
        outer=DensityParams(threshold=50, density=0.3, radius=(5, 5, 3)),
        inner=DensityParams(threshold=80, density=0.5, radius=(1, 1, 1)),
        radius_detection=3,
        selection=selection,
    )


class TestDenseMask:
    """Tests for dense_mask."""

    @pytest.mark.parametrize("threshold,density", [(500, 1.0), (100, 0.5), (500, 0.0)])
    def test_uniform_volume_all_dense(self, threshold, density):
        """Test that a uniform volume at or above threshold is dense everywhere."""
        vol = np.full((12, 10, 6), 500.0)
        assert dense_mask(vol, threshold, density, (2, 2, 1)).all()

    def test_uniform_volume_above_threshold(self):
        """Test that nothing is dense when the threshold exceeds the intensity."""
        vol = np.full((12, 10, 6), 500.0)
        assert not dense_mask(vol, 501, 0.1, (2, 2, 1)).any()

    def test_fraction_uses_in_bounds_voxels(self):
        """Test that border boxes are normalized by in-bounds voxels only."""
        above = np.ones((5, 5, 5), dtype=bool)
        frac = neighbor_fraction(above, (2, 2, 2))
        assert np.allclose(frac, 1.0)

    def test_isolated_voxel_not_dense(self):
        """Test that a single bright voxel is not locally dense."""
        vol = np.zeros((9, 9, 9))
        vol[4, 4, 4] = 10
        mask = dense_mask(vol, 5, 0.5, (1, 1, 1))
        assert not mask.any()
        # Any density is met at radius 0
        assert dense_mask(vol, 5, 1.0, (0, 0, 0))[4, 4, 4]

    def test_block_interior_dense(self):
        """Test that the interior of a bright block is dense and its outside is not."""
        vol = np.zeros((20, 20, 10))
        vol[5:15, 5:15, 2:8] = 10
        mask = dense_mask(vol, 5, 0.9, (1, 1, 1))
        assert mask[10, 10, 5]
        # A corner voxel only sees 8 of 27
        assert not mask[5, 5, 2]
        assert not mask[0, 0, 0]

    def test_2d_volume(self):
        """Test dense_mask on a 2D image."""
        img = np.zeros((10, 10))
        img[2:8, 2:8] = 1
        assert dense_mask(img, 1, 1.0, (1, 1))[4, 4]

    def test_radius_dimension_mismatch(self):
        """Test that radius must have one component per volume axis."""
        with pytest.raises(DimensionMismatchError):
            dense_mask(np.zeros((5, 5, 5)), 1, 0.5, (1, 1))

    def test_density_out_of_range(self):
        """Test that density outside [0, 1] is rejected."""
        with pytest.raises(PreconditionViolation):
            dense_mask(np.zeros((5, 5, 5)), 1, 1.5, (1, 1, 1))

    def test_negative_radius(self):
        """Test that negative radius components are rejected."""
        with pytest.raises(PreconditionViolation):
            dense_mask(np.zeros((5, 5, 5)), 1, 0.5, (1, -1, 1))


class TestDensityVolume:
    """Tests for DensityVolume."""

    def test_mask_is_frozen(self):
        """Test that a DensityVolume mask is read-only."""
        dv = DensityVolume.from_volume(np.full((4, 4, 4), 3.0), 1, 0.5, (1, 1, 1))
        assert dv.n_dense == 64
        with pytest.raises(ValueError):
            dv.mask[0, 0, 0] = False

    def test_dense_points(self):
        """Test that dense_points lists the coordinates of dense voxels."""
        vol = np.zeros((4, 4, 4))
        vol[1, 2, 3] = 1
        dv = DensityVolume.from_volume(vol, 1, 0.0, (0, 0, 0))
        assert dv.dense_points().tolist() == [[1.0, 2.0, 3.0]]


class TestGutGranules:
    """Tests for find_gut_granules."""

    def test_granule_block_marked_zero(self):
        """Test that a bright dense block is marked 0 in the exclusion mask."""
        vol = np.zeros((30, 30, 10))
        vol[10:20, 10:20, 3:7] = 2000
        mask = find_gut_granules(vol, 1000, 0.5, (3, 3, 1))
        assert mask.dtype == np.uint8
        assert mask[15, 15, 5] == 0
        assert mask[0, 0, 0] == 1
        assert mask.shape == vol.shape

    def test_no_granules(self):
        """Test that an empty volume has no granules."""
        mask = find_gut_granules(np.zeros((8, 8, 4)), 1000, 0.5, (3, 3, 1))
        assert (mask == 1).all()

    def test_with_config(self):
        """Test the GutConfig wrapper."""
        vol = np.full((8, 8, 4), 5000.0)
        config = GutConfig(DensityParams(1000, 0.5, (3, 3, 1)))
        assert (find_gut_granules_with_config(vol, config) == 0).all()


class TestFindHsn:
    """Tests for the two-pass HSN detector."""

    def test_soma_found(self, hsn_volume):
        """Test that the soma is chosen over the neuropil block."""
        location = find_hsn(hsn_volume, hsn_config())
        assert location is not None
        x, y, z = location
        assert 30 <= x < 34 and 30 <= y < 34 and 8 <= z < 12

    def test_largest_region_policy(self, hsn_volume):
        """Test that the largest-region policy returns the soma centroid."""
        location = find_hsn(hsn_volume, hsn_config("largest_region"))
        assert np.allclose(location, (31.5, 31.5, 9.5))

    def test_explicit_policy_overrides_config(self, hsn_volume):
        """Test that an explicit policy takes precedence over the config."""
        location = find_hsn(hsn_volume, hsn_config("count"), policy=LargestRegionPolicy(3))
        assert np.allclose(location, (31.5, 31.5, 9.5))

    def test_neuropil_interior_excluded(self, hsn_volume):
        """Test that the outer pass removes the over-dense neuropil."""
        candidates = hsn_candidates(hsn_volume, hsn_config())
        assert not candidates.mask[15, 15, 10]
        assert candidates.mask[31, 31, 9]

    def test_soma_embedded_in_speckled_neuropil(self, embedded_hsn_volume):
        """Test that a dense soma inside a sparser bright neuropil is the one selected."""
        config = HsnConfig(
            outer=DensityParams(threshold=50, density=0.5, radius=(5, 5, 3)),
            inner=DensityParams(threshold=80, density=0.5, radius=(1, 1, 1)),
            radius_detection=3,
        )
        location = find_hsn(embedded_hsn_volume, config)
        assert location is not None
        x, y, z = (int(v) for v in location)
        assert 18 <= x < 22 and 18 <= y < 22 and 8 <= z < 12
        assert embedded_hsn_volume[x, y, z] == 200

    def test_speckled_neuropil_fails_inner_pass(self, embedded_hsn_volume):
        """Test that isolated neuropil voxels are not dense enough to survive."""
        config = HsnConfig(
            outer=DensityParams(threshold=50, density=0.5, radius=(5, 5, 3)),
            inner=DensityParams(threshold=80, density=0.5, radius=(1, 1, 1)),
            radius_detection=3,
        )
        candidates = hsn_candidates(embedded_hsn_volume, config)
        assert embedded_hsn_volume[8, 8, 5] == 100
        assert not candidates.mask[8, 8, 5]
        assert candidates.mask[19, 19, 9]

    def test_nothing_survives(self):
        """Test that an empty volume gives no HSN location."""
        assert find_hsn(np.zeros((20, 20, 10)), hsn_config()) is None

    def test_returns_floats(self, hsn_volume):
        """Test that the location is a tuple of floats."""
        location = find_hsn(hsn_volume, hsn_config())
        assert all(isinstance(v, float) for v in location)


class TestFindNerveRing:
    """Tests for find_nerve_ring."""

    @pytest.fixture
    def ring_volume(self):
        vol = np.zeros((40, 40, 20))
        vol[10:14, 10:14, 5:8] = 2000
        vol[30, 30, 10] = 2000
        return vol

    def test_densest_cluster_wins(self, ring_volume):
        """Test that the densest bright cluster is chosen."""
        x, y, z = find_nerve_ring(ring_volume, 1000, 3)
        assert 10 <= x < 14 and 10 <= y < 14 and 5 <= z < 8

    def test_region_restricts_search(self, ring_volume):
        """Test that the search box excludes voxels outside it."""
        location = find_nerve_ring(ring_volume, 1000, 3, region=((20, 40), (20, 40), (0, 20)))
        assert location == (30.0, 30.0, 10.0)

    def test_not_found(self, ring_volume):
        """Test that nothing above threshold gives None."""
        assert find_nerve_ring(ring_volume, 5000, 3) is None

    def test_region_dimension_mismatch(self, ring_volume):
        """Test that a 2D search box on a 3D volume is rejected."""
        with pytest.raises(DimensionMismatchError):
            find_nerve_ring(ring_volume, 1000, 3, region=((0, 10), (0, 10)))

    def test_with_config(self, ring_volume):
        """Test the NerveRingConfig wrapper."""
        config = NerveRingConfig(threshold=1000, radius=3, region=[[20, 40], [20, 40], [0, 20]])
        assert find_nerve_ring_with_config(ring_volume, config) == (30.0, 30.0, 10.0)


class TestRegionSelector:
    """Tests for RegionSelector and the selection policies."""

    def test_partition_largest_first(self):
        """Test that regions are returned largest first."""
        pts = [[0, 0], [1, 0], [2, 0], [20, 20], [21, 20]]
        regions = RegionSelector(1.5).partition(pts)
        assert [r.size for r in regions] == [3, 2]

    def test_select_largest(self):
        """Test that select returns the largest linked group."""
        pts = [[20, 20], [0, 0], [1, 0], [2, 0]]
        region = RegionSelector(1.5).select(pts)
        assert sorted(region.indices.tolist()) == [1, 2, 3]
        assert np.allclose(region.centroid, [1.0, 0.0])

    def test_tie_broken_by_reference(self):
        """Test that equally sized groups are resolved by distance to the reference."""
        pts = [[0, 0], [1, 0], [50, 0], [51, 0]]
        region = RegionSelector(1.5).select(pts, reference=[45, 0])
        assert np.allclose(region.centroid, [50.5, 0.0])

    def test_empty(self):
        """Test that selectors and policies return None for no points."""
        assert RegionSelector(1.0).select(np.empty((0, 3))) is None
        assert NeighborCountPolicy(1.0).select(np.empty((0, 3))) is None
        assert LargestRegionPolicy(1.0).select(np.empty((0, 3))) is None

    def test_single_point(self):
        """Test that a single point forms a region of size one."""
        region = RegionSelector(1.0).select([[3, 4, 5]])
        assert region.size == 1

    def test_neighbor_count_policy(self):
        """Test that the point with most neighbors wins."""
        pts = np.array([[0, 0], [0.8, 0], [-0.8, 0], [10, 10]])
        assert NeighborCountPolicy(1.0).select(pts).tolist() == [0.0, 0.0]

    def test_neighbor_count_tie_break_is_deterministic(self):
        """Test that count ties go to the point nearest the centroid."""
        pts = np.array([[0, 0], [10, 0], [4, 0]])
        # All counts are 1; (4, 0) is nearest to the centroid (4.67, 0)
        assert NeighborCountPolicy(1.0).select(pts).tolist() == [4.0, 0.0]

    def test_create_policy(self):
        """Test policy lookup by name."""
        assert create_policy("count", 2).name == "count"
        assert create_policy("largest_region", 2).name == "largest_region"
        with pytest.raises(PreconditionViolation):
            create_policy("brightest", 2)

    def test_negative_radius(self):
        """Test that a negative link radius is rejected."""
        with pytest.raises(PreconditionViolation):
            RegionSelector(-1)
