"""
Landmark detectors built on ``dense_mask``.

- ``find_gut_granules``: mask with 0 on gut granules (bright *and* locally
  dense voxels) and 1 elsewhere, for excluding them from neuron finding.
- ``find_hsn``: HSN soma location. Pass 1 removes over-dense regions
  (neuropil, gut); pass 2 keeps only voxels with high local density; the
  selection policy picks one location among the survivors.
- ``find_nerve_ring``: nerve-ring location inside a caller-restricted
  search box; the voxel with the most above-threshold voxels within
  ``radius`` wins.

Locations are ``(x, y, z)`` voxel coordinates as float tuples. When no voxel
survives filtering the detectors return None; whether that is fatal for a
frame is the caller's decision.
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from wormfeatures.detection.density import DensityVolume, dense_mask
from wormfeatures.detection.region import NeighborCountPolicy, SelectionPolicy, create_policy
from wormfeatures.errors import DimensionMismatchError
from wormfeatures.utils.config import GutConfig, HsnConfig, NerveRingConfig
from wormfeatures.utils.logging import get_logger

logger = get_logger(__name__)

Location = Tuple[float, ...]


def find_gut_granules(volume: np.ndarray, threshold: float, density: float,
                      radius: Sequence[int]) -> np.ndarray:
    """
    Gut-granule exclusion mask.

    Args:
        volume: Intensity volume ``[x, y, z]``
        threshold: Pixels below this intensity are never granules
        density: Fraction of nearby voxels that must meet ``threshold``
        radius: ``(rx, ry, rz)`` neighborhood half-widths

    Returns:
        uint8 array: 1 where the voxel is *not* a gut granule, 0 where it is
    """
    granules = dense_mask(volume, threshold, density, radius)
    logger.debug("Gut granules: %d of %d voxels", int(granules.sum()), granules.size)
    return (~granules).astype(np.uint8)


def find_gut_granules_with_config(volume: np.ndarray, config: GutConfig) -> np.ndarray:
    p = config.params
    return find_gut_granules(volume, p.threshold, p.density, p.radius)


def hsn_candidates(volume: np.ndarray, config: HsnConfig) -> DensityVolume:
    """
    Voxels that survive both HSN filtering passes.

    Returns:
        DensityVolume whose mask marks the surviving voxels
    """
    volume = np.asarray(volume)
    outer, inner = config.outer, config.inner
    too_dense = dense_mask(volume, outer.threshold, outer.density, outer.radius)
    dense_enough = dense_mask(volume, inner.threshold, inner.density, inner.radius)
    survivors = dense_enough & ~too_dense
    survivors.setflags(write=False)
    logger.debug("HSN filter: %d excluded as over-dense, %d dense enough, %d survive",
                 int(too_dense.sum()), int(dense_enough.sum()), int(survivors.sum()))
    return DensityVolume(intensity=volume, mask=survivors)


def find_hsn(volume: np.ndarray, config: HsnConfig,
             policy: Optional[SelectionPolicy] = None) -> Optional[Location]:
    """
    Locate the HSN soma in one frame.

    Args:
        volume: Intensity volume ``[x, y, z]``
        config: Two-pass filter parameters and ``radius_detection``
        policy: Selection policy; defaults to the one named in ``config``

    Returns:
        ``(x, y, z)`` location, or None if nothing survives filtering
    """
    if policy is None:
        policy = create_policy(config.selection, config.radius_detection)
    candidates = hsn_candidates(volume, config)
    if candidates.n_dense == 0:
        logger.warning("HSN: no voxels survive the two-pass filter")
        return None
    location = policy.select(candidates.dense_points())
    logger.debug("HSN: %d candidates, %s policy chose %s",
                 candidates.n_dense, policy.name, location)
    return tuple(float(v) for v in location)


def _region_slices(region, shape) -> Tuple[Tuple[slice, ...], np.ndarray]:
    if region is None:
        return tuple(slice(0, s) for s in shape), np.zeros(len(shape))
    if len(region) != len(shape):
        raise DimensionMismatchError(
            f"Search region has {len(region)} axes but the volume is {len(shape)}D"
        )
    slices = tuple(slice(int(lo), min(int(hi), s)) for (lo, hi), s in zip(region, shape))
    origin = np.array([sl.start for sl in slices], dtype=np.float64)
    return slices, origin


def find_nerve_ring(volume: np.ndarray, threshold: float, radius: float,
                    region=None) -> Optional[Location]:
    """
    Locate the nerve ring in one frame.

    Args:
        volume: Intensity volume ``[x, y, z]``
        threshold: Voxels below this intensity are ignored
        radius: The voxel with the most above-threshold voxels within this
            distance is chosen
        region: Optional ``((x0, x1), (y0, y1), (z0, z1))`` half-open box to
            search; should include the nerve ring and exclude confounders
            such as gut granules and the HSN soma

    Returns:
        ``(x, y, z)`` location in full-volume coordinates, or None
    """
    volume = np.asarray(volume)
    slices, origin = _region_slices(region, volume.shape)
    sub = volume[slices]
    points = np.argwhere(sub >= threshold).astype(np.float64)
    if len(points) == 0:
        logger.warning("Nerve ring: no voxels >= %s in search region", threshold)
        return None
    location = NeighborCountPolicy(radius).select(points) + origin
    logger.debug("Nerve ring: %d candidates, chose %s", len(points), location)
    return tuple(float(v) for v in location)


def find_nerve_ring_with_config(volume: np.ndarray, config: NerveRingConfig) -> Optional[Location]:
    return find_nerve_ring(volume, config.threshold, config.radius, config.region)
