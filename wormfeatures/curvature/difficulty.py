"""
Registration difficulty heuristics between two time points.

Both heuristics compare a geometric descriptor at ``t1`` with the same
descriptor at ``t2`` and return a non-negative ``DifficultyScore``; larger
means the deformable registration between the two frames is expected to
be harder.

- Worm curvature: the two body curves are rigidly aligned on their
  mid-body segment ``[headpt, tailpt]``; whatever still differs after that
  alignment is bending that the registration would have to undo.
- HSN / nerve ring: how far the two landmarks moved, nerve ring weighted
  by ``nr_weight``.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union

import numpy as np

from wormfeatures.curvature.cache import CurveCache
from wormfeatures.curvature.worm_curve import WormCurve, fit_worm_curve
from wormfeatures.errors import CurveTooShortError, PreconditionViolation
from wormfeatures.utils.config import CurveConfig
from wormfeatures.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DifficultyScore:
    """A difficulty value plus the intermediate metrics that produced it."""
    value: float
    metrics: Dict[str, float] = field(default_factory=dict, compare=False)

    def __float__(self) -> float:
        return self.value


def _as_points(curve: Union[WormCurve, np.ndarray, Sequence]) -> np.ndarray:
    if isinstance(curve, WormCurve):
        return curve.points
    return np.asarray(curve, dtype=np.float64).reshape(-1, 2)


def _kabsch(moving: np.ndarray, fixed: np.ndarray):
    """Rotation ``R`` and translation ``t`` minimizing ``|moving @ R.T + t - fixed|``."""
    c_moving = moving.mean(axis=0)
    c_fixed = fixed.mean(axis=0)
    h = (moving - c_moving).T @ (fixed - c_fixed)
    u, _, vt = np.linalg.svd(h)
    d = np.sign(np.linalg.det(vt.T @ u.T)) or 1.0
    rotation = vt.T @ np.diag([1.0, d]) @ u.T
    return rotation, c_fixed - c_moving @ rotation.T


def curve_distance(curve1, curve2, headpt: int = 4, tailpt: int = 7) -> DifficultyScore:
    """
    Difficulty from worm unbending between two curves.

    ``curve2`` is rigidly aligned onto ``curve1`` using only the points
    ``headpt..tailpt``; the score is the summed distance between
    corresponding points of the aligned curves over their common length.
    The score is symmetric in its two curves.

    Args:
        curve1, curve2: WormCurve or ``(N, 2)`` arrays ordered from the head
        headpt: First curve index used for alignment
        tailpt: Last curve index used for alignment

    Returns:
        DifficultyScore with metrics ``segment_residual``, ``mean_residual``,
        ``rotation_deg`` and ``n_points``

    Raises:
        CurveTooShortError: If either curve has fewer than ``tailpt + 1`` points
        PreconditionViolation: If ``headpt >= tailpt``
    """
    if not 0 <= headpt < tailpt:
        raise PreconditionViolation(f"Need 0 <= headpt < tailpt, got {headpt}, {tailpt}")
    p1 = _as_points(curve1)
    p2 = _as_points(curve2)
    for pts in (p1, p2):
        if len(pts) < tailpt + 1:
            raise CurveTooShortError(len(pts), tailpt)

    seg = slice(headpt, tailpt + 1)
    rotation, translation = _kabsch(p2[seg], p1[seg])
    aligned = p2 @ rotation.T + translation

    n = min(len(p1), len(p2))
    residuals = np.linalg.norm(aligned[:n] - p1[:n], axis=1)
    value = float(residuals.sum())
    return DifficultyScore(
        value=value,
        metrics={
            'segment_residual': float(residuals[seg].sum()),
            'mean_residual': float(residuals.mean()),
            'rotation_deg': math.degrees(math.atan2(rotation[1, 0], rotation[0, 0])),
            'n_points': n,
        },
    )


def _head_xy(head) -> np.ndarray:
    pos = getattr(head, 'head_pos', head)
    return np.asarray(pos, dtype=np.float64)[:2]


def wormcurve_difficulty(
    cache: CurveCache,
    img1: np.ndarray,
    img2: np.ndarray,
    t1: int,
    t2: int,
    head1,
    head2,
    channel: int = 0,
    config: Optional[CurveConfig] = None,
    max_fixed_t: Optional[int] = None,
    figure_sink=None,
) -> DifficultyScore:
    """
    Worm-curvature registration difficulty between ``t1`` and ``t2``.

    Curves are looked up in ``cache`` under ``(t, channel)`` and fitted from
    the images on a miss. Images should already be filtered (e.g.
    total-variation denoised) and the head position known for both frames.

    Args:
        cache: Shared curve cache
        img1, img2: Volumes at t1 (fixed) and t2 (moving)
        t1, t2: Time points
        head1, head2: HeadResult or head positions
        channel: Channel the images come from
        config: Curve parameters (defaults if None)
        max_fixed_t: When fixed and moving frames come from two datasets,
            the moving frame is cached under ``t2 + max_fixed_t``
        figure_sink: Optional object with ``save_worm_curves``; figures are
            only produced when one is injected

    Raises:
        CurveTooShortError: If a fitted curve is shorter than ``tailpt + 1``
    """
    if config is None:
        config = CurveConfig()
    key1 = (t1, channel)
    key2 = (t2 + (max_fixed_t or 0), channel)

    def fitter(img, head) -> Callable[[], WormCurve]:
        return lambda: fit_worm_curve(img, _head_xy(head), config.num_points, config.downscale)

    curve1 = cache.get_or_compute(key1, fitter(img1, head1))
    curve2 = cache.get_or_compute(key2, fitter(img2, head2))
    for key, curve in ((key1, curve1), (key2, curve2)):
        if len(curve) < config.tailpt + 1:
            raise CurveTooShortError(len(curve), config.tailpt, key)

    score = curve_distance(curve1, curve2, config.headpt, config.tailpt)
    logger.debug("Worm-curve difficulty %s -> %s: %.3f", key1, key2, score.value)
    if figure_sink is not None:
        figure_sink.save_worm_curves(t1, t2, curve1, curve2, score)
    return score


def _lookup(locations: Mapping[int, Any], frame: int):
    pos = locations.get(frame)
    if pos is None:
        return None
    pos = np.asarray(getattr(pos, 'position', pos), dtype=np.float64)
    return None if np.any(np.isnan(pos)) else pos


def hsn_nr_difficulty(
    frame1: int,
    frame2: int,
    hsn_locations: Mapping[int, Any],
    nr_locations: Mapping[int, Any],
    nr_weight: float = 1.0,
    max_fixed_t: Optional[int] = None,
) -> Optional[DifficultyScore]:
    """
    Landmark-distance registration difficulty between two frames.

    Args:
        frame1, frame2: Fixed and moving frames
        hsn_locations, nr_locations: Frame -> location (or LandmarkRecord)
        nr_weight: Weight of nerve-ring displacement relative to HSN
        max_fixed_t: Offset added to ``frame2`` before lookup when the
            moving frames come from a second, concatenated dataset

    Returns:
        DifficultyScore, or None when a landmark is missing in either frame
    """
    if nr_weight < 0:
        raise PreconditionViolation(f"nr_weight must be >= 0, got {nr_weight}")
    moving = frame2 + (max_fixed_t or 0)

    hsn1, hsn2 = _lookup(hsn_locations, frame1), _lookup(hsn_locations, moving)
    nr1, nr2 = _lookup(nr_locations, frame1), _lookup(nr_locations, moving)
    missing = [name for name, pos in (("hsn@%d" % frame1, hsn1), ("hsn@%d" % moving, hsn2),
                                      ("nr@%d" % frame1, nr1), ("nr@%d" % moving, nr2))
               if pos is None]
    if missing:
        logger.warning("Cannot score %d -> %d: missing %s", frame1, moving, ", ".join(missing))
        return None

    hsn_dist = float(np.linalg.norm(hsn1 - hsn2))
    nr_dist = float(np.linalg.norm(nr1 - nr2))
    return DifficultyScore(
        value=hsn_dist + nr_weight * nr_dist,
        metrics={'hsn_distance': hsn_dist, 'nr_distance': nr_dist, 'nr_weight': nr_weight},
    )
