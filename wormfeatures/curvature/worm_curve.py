"""
Worm body curve fitting.

``fit_worm_curve`` approximates the worm's centerline in the x-y plane by
``num_points`` equally spaced points traced from the head toward the tail:

1. Max-project the volume along z and block-average it down by
   ``2 ** downscale``.
2. Threshold the body (Otsu unless a threshold is given) and keep the
   largest connected component.
3. Starting at the head, repeatedly step ``L / num_points`` toward the
   intensity-weighted centroid of the body pixels lying ahead at roughly
   one step's distance, where ``L`` is the distance from the head to the
   farthest body pixel.

Tracing stops early when no body pixels lie ahead, so the curve may hold
fewer than ``num_points + 1`` points; scorers reject such curves.
Coordinates are returned at native resolution.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from skimage.filters import threshold_otsu
from skimage.transform import downscale_local_mean

from wormfeatures.errors import DimensionMismatchError
from wormfeatures.utils.logging import get_logger
from wormfeatures.utils.mask_cleanup import get_largest_connected_component

logger = get_logger(__name__)

# Body pixels between these multiples of the step length count as "one step away"
_RING_INNER = 0.5
_RING_OUTER = 1.5


@dataclass(frozen=True, eq=False)
class WormCurve:
    """Ordered x-y curve points; index 0 is the head. Arrays are read-only."""
    x: np.ndarray
    y: np.ndarray

    def __post_init__(self):
        x = np.array(self.x, dtype=np.float64)
        y = np.array(self.y, dtype=np.float64)
        if x.shape != y.shape or x.ndim != 1:
            raise DimensionMismatchError(
                f"Curve x and y must be 1D arrays of equal length, got {x.shape} and {y.shape}"
            )
        x.setflags(write=False)
        y.setflags(write=False)
        object.__setattr__(self, "x", x)
        object.__setattr__(self, "y", y)

    @classmethod
    def from_points(cls, points) -> "WormCurve":
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        return cls(x=points[:, 0], y=points[:, 1])

    def __len__(self) -> int:
        return len(self.x)

    @property
    def points(self) -> np.ndarray:
        return np.column_stack([self.x, self.y])

    def allclose(self, other: "WormCurve", atol: float = 1e-9) -> bool:
        return len(self) == len(other) and np.allclose(self.points, other.points, atol=atol)


def project_and_downscale(volume: np.ndarray, downscale: int) -> np.ndarray:
    """Max-project a ``[x, y, z]`` volume along z and block-average by ``2**downscale``."""
    volume = np.asarray(volume, dtype=np.float64)
    if volume.ndim == 3:
        image = volume.max(axis=2)
    elif volume.ndim == 2:
        image = volume
    else:
        raise DimensionMismatchError(f"Expected a 2D or 3D volume, got {volume.ndim}D")
    factor = 2 ** int(downscale)
    if factor > 1:
        image = downscale_local_mean(image, (factor, factor))
    return image


def fit_worm_curve(volume: np.ndarray, head_pos, num_points: int = 9, downscale: int = 3,
                   threshold: Optional[float] = None) -> WormCurve:
    """
    Fit the worm's body curve starting from the head.

    Args:
        volume: Filtered intensity volume ``[x, y, z]`` (or a 2D image)
        head_pos: Head position in native pixel coordinates; only x and y are used
        num_points: Number of curve points not counting the head
        downscale: log2 of the downscaling factor used while fitting
        threshold: Body threshold on the downscaled projection; Otsu if None

    Returns:
        WormCurve with at most ``num_points + 1`` points
    """
    factor = 2 ** int(downscale)
    shift = (factor - 1) / 2.0
    image = project_and_downscale(volume, downscale)

    head_native = np.asarray(head_pos, dtype=np.float64)[:2]
    head = (head_native - shift) / factor
    curve = [head]

    if image.max() == image.min():
        logger.warning("Flat image; worm curve contains only the head")
        return WormCurve.from_points(np.array(curve) * factor + shift)

    if threshold is None:
        threshold = threshold_otsu(image)
    body = get_largest_connected_component(image > threshold)
    pts = np.argwhere(body).astype(np.float64)
    if len(pts) == 0:
        logger.warning("No body pixels above %.3g; worm curve contains only the head", threshold)
        return WormCurve.from_points(np.array(curve) * factor + shift)
    weights = image[body] - threshold

    length = float(np.linalg.norm(pts - head, axis=1).max())
    step = length / num_points
    current = head
    direction = None
    for _ in range(num_points):
        rel = pts - current
        dist = np.linalg.norm(rel, axis=1)
        ahead = (dist >= _RING_INNER * step) & (dist <= _RING_OUTER * step)
        if direction is not None:
            ahead &= rel @ direction > 0
        if not ahead.any():
            break
        target = np.average(pts[ahead], axis=0, weights=weights[ahead])
        heading = target - current
        norm = np.linalg.norm(heading)
        if norm == 0:
            break
        direction = heading / norm
        current = current + step * direction
        curve.append(current)

    if len(curve) < num_points + 1:
        logger.debug("Curve tracing stopped after %d of %d points", len(curve) - 1, num_points)
    return WormCurve.from_points(np.array(curve) * factor + shift)
