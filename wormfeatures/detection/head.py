"""
Head/tail localization from neuron centroids.

The worm is approximated by three local convex hulls of increasing
generosity (see ``HeadConfig``):

1. Hulls 1 and 2 give the orientation. The strict hull 1 keeps only the
   densest part of the worm (the head ganglia), hull 2 extends over the
   body, so the offset from the hull-2 centroid to the hull-1 centroid
   tells which end of the body axis is the head.
2. The body axis is the first principal component of the hull-3 members.
   The hull-3 boundary point farthest along the oriented axis is the tip
   of the nose.
3. Hulls 2 and 3 each imply a head and a tail; if they disagree by more
   than ``hd_threshold`` / ``vc_threshold`` the time point is flagged.

Problems with the data never raise: they are reported through
``HeadResult.quality_flags`` and a best-effort result is always returned,
so a batch over a time series keeps going.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Sequence, Tuple

import numpy as np
from sklearn.decomposition import PCA

from wormfeatures.errors import DimensionMismatchError
from wormfeatures.geometry.convex_hull import ConvexHullApproximation, compute_local_hull
from wormfeatures.geometry.spatial_index import as_point_cloud
from wormfeatures.utils.config import HeadConfig
from wormfeatures.utils.logging import get_logger

logger = get_logger(__name__)

# Below this projection the two hull centroids are considered coincident
_ORIENTATION_EPS = 1e-6


class QualityFlag(str, Enum):
    """Non-fatal annotations marking a head result as unreliable."""
    HEAD_MISMATCH = "head_mismatch"
    TAIL_MISMATCH = "tail_mismatch"
    LOW_POPULATION = "low_population"
    NEAR_EDGE = "near_edge"


ALL_FLAGS: FrozenSet[QualityFlag] = frozenset(QualityFlag)


@dataclass(frozen=True, eq=False)
class HeadResult:
    """
    Head detection output for one time point.

    Attributes:
        head_pos: Tip of the nose, same dimensionality as the centroids
        quality_flags: Empty iff no threshold was violated
        crop_x, crop_y: Inclusive ``(lo, hi)`` pixel ranges containing the worm
        crop_z: Inclusive z range, or None for 2D data
        theta: Rotation (radians, counter-clockwise) that maps the
            tail-to-head axis onto +x
        centroid: Centroid of the worm
        tail_pos: Tail end implied by the most generous hull
    """
    head_pos: Tuple[float, ...]
    quality_flags: FrozenSet[QualityFlag] = field(default_factory=frozenset)
    crop_x: Tuple[int, int] = (0, 0)
    crop_y: Tuple[int, int] = (0, 0)
    crop_z: Optional[Tuple[int, int]] = None
    theta: float = float('nan')
    centroid: Tuple[float, ...] = ()
    tail_pos: Optional[Tuple[float, ...]] = None

    @property
    def is_clean(self) -> bool:
        return not self.quality_flags

    @property
    def has_position(self) -> bool:
        return not any(math.isnan(v) for v in self.head_pos)

    def rotation_matrix(self) -> np.ndarray:
        """2x2 matrix rotating x-y offsets by ``theta``."""
        c, s = math.cos(self.theta), math.sin(self.theta)
        return np.array([[c, -s], [s, c]])

    def to_dict(self) -> Dict[str, Any]:
        """Plain-Python representation (flags as sorted strings)."""
        return {
            'head_pos': list(self.head_pos),
            'quality_flags': sorted(f.value for f in self.quality_flags),
            'crop_x': list(self.crop_x),
            'crop_y': list(self.crop_y),
            'crop_z': list(self.crop_z) if self.crop_z is not None else None,
            'theta': self.theta,
            'centroid': list(self.centroid),
            'tail_pos': list(self.tail_pos) if self.tail_pos is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeadResult":
        """Inverse of ``to_dict``; JSON nulls in coordinates become NaN."""
        def floats(values):
            return tuple(float('nan') if v is None else float(v) for v in values)

        theta = data.get('theta')
        return cls(
            head_pos=floats(data['head_pos']),
            quality_flags=frozenset(QualityFlag(f) for f in data.get('quality_flags', [])),
            crop_x=tuple(int(v) for v in data['crop_x']),
            crop_y=tuple(int(v) for v in data['crop_y']),
            crop_z=tuple(int(v) for v in data['crop_z']) if data.get('crop_z') is not None else None,
            theta=float('nan') if theta is None else float(theta),
            centroid=floats(data.get('centroid', ())),
            tail_pos=floats(data['tail_pos']) if data.get('tail_pos') is not None else None,
        )


def _full_frame(imsize: Sequence[int]) -> Tuple[Tuple[int, int], ...]:
    return tuple((0, int(s) - 1) for s in imsize)


def _empty_result(imsize: Sequence[int], ndim: int) -> HeadResult:
    frame = _full_frame(imsize)
    nan = (float('nan'),) * ndim
    return HeadResult(
        head_pos=nan,
        quality_flags=ALL_FLAGS,
        crop_x=frame[0],
        crop_y=frame[1],
        crop_z=frame[2] if ndim == 3 and len(frame) > 2 else None,
        theta=float('nan'),
        centroid=nan,
        tail_pos=None,
    )


def _body_axis(points: np.ndarray) -> np.ndarray:
    """Unit vector along the first principal component (x axis if undefined)."""
    if len(points) < 2 or np.allclose(points, points[0]):
        return np.array([1.0, 0.0])
    axis = PCA(n_components=1).fit(points).components_[0]
    return axis / np.linalg.norm(axis)


def _crop_range(values: np.ndarray, margin: int, size: int) -> Tuple[int, int]:
    lo = max(int(math.floor(values.min())) - margin, 0)
    hi = min(int(math.ceil(values.max())) + margin, int(size) - 1)
    return lo, hi


def _usable(hull: ConvexHullApproximation, fallback: ConvexHullApproximation) -> ConvexHullApproximation:
    return fallback if hull.is_empty else hull


def find_head(centroids, imsize: Sequence[int], config: Optional[HeadConfig] = None) -> HeadResult:
    """
    Find the tip of the worm's nose and flag unreliable time points.

    Args:
        centroids: ``(N, 2)`` or ``(N, 3)`` neuron centroids ``[x, y(, z)]``
        imsize: Image size ``(X, Y[, Z])`` in pixels
        config: Hull schedule and flag thresholds (defaults if None)

    Returns:
        HeadResult. With zero centroids the position is NaN and every flag
        is set.
    """
    if config is None:
        config = HeadConfig()
    if len(imsize) < 2:
        raise DimensionMismatchError(f"imsize needs at least (X, Y), got {imsize}")

    cloud = as_point_cloud(centroids)
    n, ndim = cloud.shape
    if n == 0:
        logger.warning("No centroids; returning sentinel head result")
        return _empty_result(imsize, min(len(imsize), 3))
    if len(imsize) < ndim:
        raise DimensionMismatchError(
            f"{ndim}D centroids need a {ndim}D image size, got {tuple(imsize)}"
        )

    flags = set()
    if n < config.num_centroids_threshold:
        flags.add(QualityFlag.LOW_POPULATION)

    xy = cloud[:, :2]
    hulls = [
        compute_local_hull(xy, level.density_divisor, level.max_distance, level=i + 1)
        for i, level in enumerate(config.schedule)
    ]
    # Every point, used wherever a hull comes back empty
    raw = ConvexHullApproximation(0, float('inf'), float('inf'), xy,
                                  np.arange(n), np.arange(n))
    hull3 = _usable(hulls[2], raw)
    hull2 = _usable(hulls[1], hull3)
    hull1 = _usable(hulls[0], hull2)

    axis = _body_axis(hull3.members)
    offset = hull1.centroid() - hull2.centroid()
    along = float(offset @ axis)
    if along < 0:
        axis = -axis
    if abs(along) < _ORIENTATION_EPS:
        # Hulls 1 and 2 coincide: head and tail cannot be told apart
        logger.debug("Orientation undetermined (hull centroids coincide)")
        flags.update((QualityFlag.HEAD_MISMATCH, QualityFlag.TAIL_MISMATCH))

    head_idx = hull3.extremum_index(axis)
    tail_idx = hull3.extremum_index(-axis)
    head2 = xy[hull2.extremum_index(axis)]
    tail2 = xy[hull2.extremum_index(-axis)]

    head_gap = float(np.linalg.norm(head2 - xy[head_idx]))
    tail_gap = float(np.linalg.norm(tail2 - xy[tail_idx]))
    if head_gap > config.hd_threshold:
        flags.add(QualityFlag.HEAD_MISMATCH)
    if tail_gap > config.vc_threshold:
        flags.add(QualityFlag.TAIL_MISMATCH)

    body = cloud[hull3.member_indices]
    lo, hi = body[:, :2].min(axis=0), body[:, :2].max(axis=0)
    edge = config.edge_threshold
    if (np.any(lo < edge)
            or hi[0] > imsize[0] - 1 - edge
            or hi[1] > imsize[1] - 1 - edge):
        flags.add(QualityFlag.NEAR_EDGE)

    margin = config.crop_margin
    crop_x = _crop_range(body[:, 0], margin, imsize[0])
    crop_y = _crop_range(body[:, 1], margin, imsize[1])
    crop_z = None
    if ndim == 3 and len(imsize) > 2:
        crop_z = _crop_range(body[:, 2], margin, imsize[2])

    theta = -math.atan2(axis[1], axis[0])

    result = HeadResult(
        head_pos=tuple(float(v) for v in cloud[head_idx]),
        quality_flags=frozenset(flags),
        crop_x=crop_x,
        crop_y=crop_y,
        crop_z=crop_z,
        theta=theta,
        centroid=tuple(float(v) for v in body.mean(axis=0)),
        tail_pos=tuple(float(v) for v in cloud[tail_idx]),
    )

    if flags:
        logger.warning("Head result flagged %s (head gap %.1f, tail gap %.1f, n=%d)",
                       sorted(f.value for f in flags), head_gap, tail_gap, n)
    else:
        logger.debug("Head at %s, theta=%.3f rad", result.head_pos, theta)
    return result
