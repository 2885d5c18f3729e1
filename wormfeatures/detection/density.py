"""
Local-density thresholding over 3D intensity volumes.

Volumes are indexed ``volume[x, y, z]`` and radii are given as
``(rx, ry, rz)`` half-widths in voxels, so ``radius[i]`` applies to axis
``i``. A voxel is *dense* when its own intensity meets ``threshold`` and the
fraction of voxels in its ``(2*rx+1, 2*ry+1, 2*rz+1)`` box that also meet
``threshold`` is at least ``density``. Boxes are clipped at the volume
border and the fraction is taken over in-bounds voxels only.

The gut-granule, HSN and nerve-ring detectors are all built on
``dense_mask``; they differ only in parameters and in how the surviving
voxels are used.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy.ndimage import uniform_filter

from wormfeatures.errors import DimensionMismatchError, PreconditionViolation

# Tolerance for comparing box-mean fractions against ``density``
_FRACTION_EPS = 1e-9


def _validate(volume: np.ndarray, density: float, radius: Sequence[int]) -> tuple:
    if volume.ndim != len(radius):
        raise DimensionMismatchError(
            f"radius has {len(radius)} components but the volume is {volume.ndim}D"
        )
    if not 0.0 <= density <= 1.0:
        raise PreconditionViolation(f"density must be in [0, 1], got {density}")
    radius = tuple(int(r) for r in radius)
    if any(r < 0 for r in radius):
        raise PreconditionViolation(f"radius components must be >= 0, got {radius}")
    return radius


def neighbor_fraction(above: np.ndarray, radius: Sequence[int]) -> np.ndarray:
    """
    Fraction of in-bounds voxels in each voxel's box that are set in ``above``.

    Args:
        above: Boolean volume
        radius: Box half-widths per axis

    Returns:
        float64 array, same shape as ``above``, values in [0, 1]
    """
    size = tuple(2 * int(r) + 1 for r in radius)
    hits = uniform_filter(above.astype(np.float64), size=size, mode='constant', cval=0.0)
    support = uniform_filter(np.ones(above.shape, dtype=np.float64), size=size,
                             mode='constant', cval=0.0)
    return hits / support


def dense_mask(volume: np.ndarray, threshold: float, density: float,
               radius: Sequence[int]) -> np.ndarray:
    """
    Boolean mask of locally dense voxels.

    Args:
        volume: Intensity volume (2D or 3D)
        threshold: Minimum intensity for a voxel to count
        density: Minimum fraction of box voxels meeting ``threshold``
        radius: Box half-widths, one per volume axis

    Returns:
        Boolean array, same shape as ``volume``
    """
    volume = np.asarray(volume)
    radius = _validate(volume, density, radius)
    above = volume >= threshold
    if not above.any():
        return above
    return above & (neighbor_fraction(above, radius) >= density - _FRACTION_EPS)


@dataclass(frozen=True, eq=False)
class DensityVolume:
    """
    An intensity volume together with its (read-only) density mask.

    The mask is computed once in ``from_volume`` and frozen; detectors never
    write to it afterwards.
    """
    intensity: np.ndarray
    mask: np.ndarray

    @classmethod
    def from_volume(cls, volume: np.ndarray, threshold: float, density: float,
                    radius: Sequence[int]) -> "DensityVolume":
        volume = np.asarray(volume)
        mask = dense_mask(volume, threshold, density, radius)
        mask.setflags(write=False)
        return cls(intensity=volume, mask=mask)

    @property
    def n_dense(self) -> int:
        return int(self.mask.sum())

    def dense_points(self) -> np.ndarray:
        """Coordinates of dense voxels as an ``(N, ndim)`` float array."""
        return np.argwhere(self.mask).astype(np.float64)
